"""oslo.config options describing the release being rendered.

Image references and the release version used to come straight from the
process environment.  They are registered here as options in the
``[render]`` group whose defaults are taken from those same environment
variables, and :func:`build_render_settings` freezes the parsed values into
the :class:`~netspec.config.RenderSettings` handed to the providers.
"""

import os

from oslo_config import cfg

from netspec.config import RenderSettings

RENDER_GROUP = 'render'

# Option name -> environment variable providing its default.
IMAGE_OPTS = {
    'kuryr_daemon_image': 'KURYR_DAEMON_IMAGE',
    'kuryr_controller_image': 'KURYR_CONTROLLER_IMAGE',
    'cni_plugins_image': 'CNI_PLUGINS_IMAGE',
    'kube_proxy_image': 'KUBE_PROXY_IMAGE',
    'multus_image': 'MULTUS_IMAGE',
    'cni_plugins_supported_image': 'CNI_PLUGINS_SUPPORTED_IMAGE',
    'cni_plugins_unsupported_image': 'CNI_PLUGINS_UNSUPPORTED_IMAGE',
    'multus_admission_controller_image': 'MULTUS_ADMISSION_CONTROLLER_IMAGE',
    'kube_rbac_proxy_image': 'KUBE_RBAC_PROXY_IMAGE',
    'multus_networkpolicy_image': 'MULTUS_NETWORKPOLICY_IMAGE',
    'ovn_image': 'OVN_IMAGE',
}


def list_render_opts(environ=None):
    """Build the ``[render]`` options, reading defaults from ``environ``."""
    env = os.environ if environ is None else environ
    opts = [
        cfg.StrOpt('release_version',
                   default=env.get('RELEASE_VERSION', ''),
                   help='Version of the release being rendered.'),
        cfg.StrOpt('kubernetes_service_host',
                   default=env.get('KUBERNETES_SERVICE_HOST', ''),
                   help='API server host the rendered workloads talk to.'),
        cfg.StrOpt('kubernetes_service_port',
                   default=env.get('KUBERNETES_SERVICE_PORT', ''),
                   help='API server port the rendered workloads talk to.'),
        cfg.StrOpt('cni_conf_dir',
                   default='/etc/kubernetes/cni/net.d',
                   help='Host directory holding CNI network configuration.'),
        cfg.StrOpt('cni_bin_dir',
                   default='/var/lib/cni/bin',
                   help='Host directory holding CNI plugin binaries.'),
    ]
    for name, variable in sorted(IMAGE_OPTS.items()):
        opts.append(cfg.StrOpt(name,
                               default=env.get(variable, ''),
                               help=f'Image reference (defaults to ${variable}).'))
    return opts


def register_render_opts(conf=None, environ=None):
    """Register the ``[render]`` options on ``conf`` (the global CONF by default)."""
    conf = cfg.CONF if conf is None else conf
    conf.register_group(cfg.OptGroup(
        name=RENDER_GROUP,
        title='Render options',
        help='Release-wide values used when rendering network objects.',
    ))
    conf.register_opts(list_render_opts(environ), group=RENDER_GROUP)
    return conf


def build_render_settings(conf):
    """Freeze the parsed ``[render]`` options into :class:`RenderSettings`."""
    group = conf.render
    return RenderSettings(
        release_version=group.release_version,
        images={name: getattr(group, name) for name in IMAGE_OPTS},
        kubernetes_service_host=group.kubernetes_service_host,
        kubernetes_service_port=group.kubernetes_service_port,
        cni_conf_dir=group.cni_conf_dir,
        cni_bin_dir=group.cni_bin_dir,
    )
