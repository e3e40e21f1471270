"""OpenStack-integrated SDN provider (Kuryr).

Kuryr attaches pods directly to Neutron ports and implements services with
Octavia load balancers.  The Neutron/Octavia resources are created while
bootstrapping, so the service subnet override cannot move afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List

import yaml

from netspec import names, objects, subnet, versions
from netspec.config import BootstrapFacts, KuryrConfig, KuryrFacts, NetworkSpec, NetworkType, RenderSettings
from netspec.errors import (
    DiscoveryUnavailableError,
    NetworkConfigError,
    RenderContractError,
    SemanticConfigError,
    StructuralConfigError,
    UnsafeChangeError,
)
from netspec.objects import ObjectSpec

from .base import NetworkProvider, RenderResult

LOG = logging.getLogger(__name__)

DEFAULT_DAEMON_PROBES_PORT = 8090
DEFAULT_CONTROLLER_PROBES_PORT = 8091
DEFAULT_POOL_MIN_PORTS = 1
DEFAULT_POOL_BATCH_PORTS = 3

MIN_MTU = 576
MAX_MTU = 65535

OVN_OCTAVIA_PROVIDER = "ovn"

# Octavia API versions introducing the features Kuryr can make use of.
MULTIPLE_LISTENERS_VERSION = (2, 11)
HTTPS_MONITORS_VERSION = (2, 10)
TIMEOUTS_VERSION = (2, 1)

CRDS = (
    ("KuryrNetwork", "kuryrnetworks"),
    ("KuryrPort", "kuryrports"),
    ("KuryrNetworkPolicy", "kuryrnetworkpolicies"),
    ("KuryrLoadBalancer", "kuryrloadbalancers"),
)
CRD_GROUP = "openstack.org"

CLUSTER_ROLE_RULES = (
    {"apiGroups": [""], "resources": ["pods", "services", "endpoints", "namespaces", "nodes"],
     "verbs": ["get", "list", "watch", "update", "patch"]},
    {"apiGroups": ["discovery.k8s.io"], "resources": ["endpointslices"],
     "verbs": ["get", "list", "watch"]},
    {"apiGroups": ["networking.k8s.io"], "resources": ["networkpolicies"],
     "verbs": ["get", "list", "watch", "update", "patch"]},
    {"apiGroups": [CRD_GROUP], "resources": [plural for _, plural in CRDS], "verbs": ["*"]},
)


class KuryrProvider(NetworkProvider):
    """Provider rendering the Kuryr controller, CNI daemon and DNS admission webhook."""

    name = NetworkType.KURYR.value

    # ------------------------------------------------------------------
    # Defaults
    # ------------------------------------------------------------------
    def fill_defaults(self, spec: NetworkSpec) -> NetworkSpec:
        kc = spec.default_network.kuryr_config or KuryrConfig()

        if kc.daemon_probes_port is None:
            kc = replace(kc, daemon_probes_port=DEFAULT_DAEMON_PROBES_PORT)
        if kc.controller_probes_port is None:
            kc = replace(kc, controller_probes_port=DEFAULT_CONTROLLER_PROBES_PORT)
        if not kc.openstack_service_network and spec.service_network:
            try:
                service_net = subnet.parse_cidr(spec.service_network[0])
                kc = replace(kc, openstack_service_network=str(subnet.expand(service_net)))
            except ValueError:
                # Left unset; validation reports the unparseable service network.
                LOG.debug("not defaulting openStackServiceNetwork from %r", spec.service_network[0])
        if not kc.pool_min_ports:
            kc = replace(kc, pool_min_ports=DEFAULT_POOL_MIN_PORTS)
        if kc.pool_batch_ports is None:
            kc = replace(kc, pool_batch_ports=DEFAULT_POOL_BATCH_PORTS)

        return replace(spec, default_network=replace(spec.default_network, kuryr_config=kc))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self, spec: NetworkSpec) -> List[NetworkConfigError]:
        errors: List[NetworkConfigError] = []
        kc = spec.default_network.kuryr_config or KuryrConfig()

        if len(spec.service_network) != 1:
            errors.append(StructuralConfigError("serviceNetwork must have exactly 1 entry"))
        if len(spec.cluster_network) != 1:
            errors.append(StructuralConfigError("clusterNetwork must have exactly 1 entry"))

        service_net = None
        if spec.service_network:
            try:
                service_net = subnet.parse_cidr(spec.service_network[0])
            except ValueError:
                errors.append(SemanticConfigError("cannot parse serviceNetwork[0] CIDR"))

        cluster_net = None
        if spec.cluster_network:
            try:
                cluster_net = subnet.parse_cidr(spec.cluster_network[0].cidr)
            except ValueError:
                errors.append(SemanticConfigError("cannot parse clusterNetwork[0].cidr CIDR"))

        override = None
        override_ok = True
        if kc.openstack_service_network:
            try:
                override = subnet.parse_cidr(kc.openstack_service_network)
            except ValueError:
                override_ok = False
                errors.append(
                    SemanticConfigError("cannot parse kuryrConfig.openStackServiceNetwork CIDR")
                )

        errors.extend(_validate_port_pools(kc))

        if kc.mtu is not None and not MIN_MTU <= kc.mtu <= MAX_MTU:
            errors.append(
                SemanticConfigError(f"invalid MTU {kc.mtu}, must be between {MIN_MTU} and {MAX_MTU}")
            )

        if service_net is not None and override_ok:
            try:
                errors.extend(subnet.validate_service_network_sizing(service_net, override, cluster_net))
            except ValueError as exc:
                errors.append(SemanticConfigError(str(exc)))
        return errors

    def _unsafe_changes(self, previous: NetworkSpec, proposed: NetworkSpec) -> List[NetworkConfigError]:
        old = previous.default_network.kuryr_config or KuryrConfig()
        new = proposed.default_network.kuryr_config or KuryrConfig()
        if old == new:
            return []
        if old.openstack_service_network != new.openstack_service_network:
            return [UnsafeChangeError("cannot change kuryr openStackServiceNetwork")]
        return []

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render(self, spec: NetworkSpec, facts: BootstrapFacts, settings: RenderSettings) -> RenderResult:
        kc = spec.default_network.kuryr_config
        if kc is None or kc.daemon_probes_port is None or kc.controller_probes_port is None:
            raise RenderContractError("kuryr configuration reached render without defaults")
        b = facts.kuryr

        data = _render_data(spec, kc, b, settings)
        objs: List[ObjectSpec] = [objects.namespace(names.KURYR_NAMESPACE, {"name": names.KURYR_NAMESPACE})]
        objs.extend(objects.custom_resource_definition(CRD_GROUP, kind, plural) for kind, plural in CRDS)
        objs.extend(
            [
                objects.service_account("kuryr", names.KURYR_NAMESPACE),
                objects.cluster_role("kuryr", CLUSTER_ROLE_RULES),
                objects.cluster_role_binding("kuryr", "kuryr", "kuryr", names.KURYR_NAMESPACE),
                objects.config_map("kuryr-config", names.KURYR_NAMESPACE, {"kuryr.conf": render_kuryr_conf(data)}),
                objects.secret(
                    "kuryr-config-credentials",
                    names.KURYR_NAMESPACE,
                    {"clouds.yaml": _clouds_yaml(b)},
                ),
                _controller(data),
                _daemon(data),
            ]
        )

        if data["admission_controller"]:
            try:
                objs.extend(_admission_controller(b, settings))
            except DiscoveryUnavailableError as exc:
                LOG.warning("Withholding kuryr DNS admission controller: %s", exc)

        LOG.debug("Rendered %d kuryr objects", len(objs))
        return RenderResult(objects=objs, data=data)


def _validate_port_pools(kc: KuryrConfig) -> List[NetworkConfigError]:
    errors: List[NetworkConfigError] = []
    if kc.pool_min_ports and kc.pool_max_ports and kc.pool_min_ports > kc.pool_max_ports:
        errors.append(SemanticConfigError("poolMinPorts cannot be set above poolMaxPorts"))
    if kc.pool_batch_ports is None:
        return errors
    if kc.pool_batch_ports > 0:
        if kc.pool_min_ports > 0 and kc.pool_batch_ports < kc.pool_min_ports:
            errors.append(SemanticConfigError("poolBatchPorts cannot be set below poolMinPorts"))
        if kc.pool_max_ports > 0 and kc.pool_batch_ports > kc.pool_max_ports:
            errors.append(SemanticConfigError("poolBatchPorts cannot be set above poolMaxPorts"))
    else:
        errors.append(SemanticConfigError("poolBatchPorts has to have at least value of 1"))
    return errors


def octavia_features(b: KuryrFacts) -> Dict[str, bool]:
    """Return the Octavia capabilities Kuryr may rely on for the discovered API version."""

    multiple = b.octavia_multiple_listeners
    if multiple is None:
        multiple = versions.at_least(b.octavia_version, *MULTIPLE_LISTENERS_VERSION)
    return {
        "multiple_listeners": multiple,
        "https_monitors": versions.at_least(b.octavia_version, *HTTPS_MONITORS_VERSION),
        "timeouts": versions.at_least(b.octavia_version, *TIMEOUTS_VERSION),
    }


def _render_data(spec: NetworkSpec, kc: KuryrConfig, b: KuryrFacts, settings: RenderSettings) -> Dict[str, Any]:
    features = octavia_features(b)
    if b.octavia_provider == OVN_OCTAVIA_PROVIDER:
        octavia = {"member_mode": "L2", "sg_mode": "create", "sg_enforce": False, "lb_algorithm": "SOURCE_IP_PORT"}
    else:
        octavia = {"member_mode": "L3", "sg_mode": "update", "sg_enforce": True, "lb_algorithm": "ROUND_ROBIN"}

    verify = b.openstack_cloud.get("verify")
    return {
        "release_version": settings.release_version,
        "openstack_cloud": dict(b.openstack_cloud),
        "user_ca_certificate": b.user_ca_cert,
        "resource_tags": f"openshiftClusterID={b.cluster_id}",
        "pod_security_groups": ",".join(b.pod_security_groups),
        "worker_nodes_subnets": ",".join(b.worker_nodes_subnets),
        "worker_nodes_router": b.worker_nodes_router,
        "pod_subnetpool": b.pod_subnetpool,
        "service_subnet": b.service_subnet,
        "external_network": b.external_network,
        "openstack_insecure_api": verify is False,
        "debug": spec.log_level not in ("", "Normal"),
        "enable_port_pools_prepopulation": kc.enable_port_pools_prepopulation,
        "pool_max_ports": kc.pool_max_ports,
        "pool_min_ports": kc.pool_min_ports,
        "pool_batch_ports": kc.pool_batch_ports,
        "admission_controller": not features["multiple_listeners"],
        "octavia_provider": b.octavia_provider,
        "octavia_version": b.octavia_version,
        "octavia_member_mode": octavia["member_mode"],
        "octavia_sg_mode": octavia["sg_mode"],
        "octavia_sg_enforce": octavia["sg_enforce"],
        "octavia_lb_algorithm": octavia["lb_algorithm"],
        "octavia_https_monitors": features["https_monitors"],
        "octavia_timeouts": features["timeouts"],
        "daemon_probes_port": kc.daemon_probes_port,
        "controller_probes_port": kc.controller_probes_port,
        "cni_plugins_image": settings.image("cni_plugins_image"),
        "daemon_image": settings.image("kuryr_daemon_image"),
        "controller_image": settings.image("kuryr_controller_image"),
        "kubernetes_service_host": settings.kubernetes_service_host,
        "kubernetes_service_port": settings.kubernetes_service_port,
        "cni_conf_dir": settings.cni_conf_dir,
        "cni_bin_dir": settings.cni_bin_dir,
        "nodes_network_mtu": kc.mtu or b.nodes_network_mtu,
        "https_proxy": b.https_proxy,
        "http_proxy": b.http_proxy,
        "no_proxy": b.no_proxy,
    }


def render_kuryr_conf(data: Dict[str, Any]) -> str:
    """Render the ``kuryr.conf`` text shared by the controller and the daemon."""

    def flag(value: Any) -> str:
        return "true" if value else "false"

    host = data["kubernetes_service_host"]
    if ":" in host:
        host = f"[{host}]"
    lines = [
        "[DEFAULT]",
        f"debug = {flag(data['debug'])}",
        "",
        "[kubernetes]",
        f"api_root = https://{host}:{data['kubernetes_service_port']}",
        "ssl_ca_crt_file = /var/run/secrets/kubernetes.io/serviceaccount/ca.crt",
        "token_file = /var/run/secrets/kubernetes.io/serviceaccount/token",
        "pod_vif_driver = nested-vlan",
        "vif_pool_driver = nested",
        "enabled_handlers = vif,kuryrport,service,endpoints,kuryrloadbalancer,namespace,"
        "kuryrnetwork,policy,kuryrnetworkpolicy,pod_label",
        "",
        "[neutron_defaults]",
        f"resource_tags = {data['resource_tags']}",
        f"external_svc_net = {data['external_network']}",
        f"pod_security_groups = {data['pod_security_groups']}",
        f"service_subnet = {data['service_subnet']}",
        f"network_device_mtu = {data['nodes_network_mtu']}",
        "",
        "[namespace_subnet]",
        f"pod_subnet_pool = {data['pod_subnetpool']}",
        f"pod_router = {data['worker_nodes_router']}",
        "",
        "[pod_vif_nested]",
        f"worker_nodes_subnets = {data['worker_nodes_subnets']}",
        "",
        "[octavia_defaults]",
        f"member_mode = {data['octavia_member_mode']}",
        f"enforce_sg_rules = {flag(data['octavia_sg_enforce'])}",
        f"lb_algorithm = {data['octavia_lb_algorithm']}",
        f"sg_mode = {data['octavia_sg_mode']}",
        "",
        "[vif_pool]",
        f"ports_pool_max = {data['pool_max_ports']}",
        f"ports_pool_min = {data['pool_min_ports']}",
        f"ports_pool_batch = {data['pool_batch_ports']}",
        "",
        "[cni_daemon]",
        "docker_mode = true",
        "netns_proc_dir = /host/proc",
        "",
        "[health_server]",
        f"port = {data['controller_probes_port']}",
        "",
        "[cni_health_server]",
        f"port = {data['daemon_probes_port']}",
    ]
    if data["enable_port_pools_prepopulation"]:
        lines.insert(lines.index("[vif_pool]") + 1, "ports_pool_update_frequency = 30")
        lines.append("")
        lines.append("[kubernetes_prepopulation]")
        lines.append("port_pool_prepopulation = true")
    return "\n".join(lines) + "\n"


def _clouds_yaml(b: KuryrFacts) -> str:
    cloud = dict(b.openstack_cloud)
    if b.user_ca_cert:
        cloud["cacert"] = "/etc/ssl/certs/user-ca-bundle/ca-bundle.crt"
    return yaml.safe_dump({"clouds": {"openstack": cloud}}, default_flow_style=False, sort_keys=True)


def _proxy_env(data: Dict[str, Any]) -> Dict[str, Any]:
    env = {
        "KUBERNETES_SERVICE_HOST": data["kubernetes_service_host"],
        "KUBERNETES_SERVICE_PORT": data["kubernetes_service_port"],
    }
    for key in ("https_proxy", "http_proxy", "no_proxy"):
        if data[key]:
            env[key.upper()] = data[key]
    return env


def _controller(data: Dict[str, Any]) -> ObjectSpec:
    ctr = objects.container(
        "controller",
        data["controller_image"],
        command=["kuryr-k8s-controller", "--config-file", "/etc/kuryr/kuryr.conf"],
        env=_proxy_env(data),
        volume_mounts=[("config-volume", "/etc/kuryr"), ("credentials-volume", "/etc/kuryr/credentials")],
        probe_port=data["controller_probes_port"],
    )
    return objects.deployment(
        "kuryr-controller",
        names.KURYR_NAMESPACE,
        [ctr],
        "kuryr",
        replicas=1,
        volumes=[
            objects.config_map_volume("config-volume", "kuryr-config"),
            objects.secret_volume("credentials-volume", "kuryr-config-credentials"),
        ],
        host_network=True,
        node_selector={"node-role.kubernetes.io/master": ""},
    )


def _daemon(data: Dict[str, Any]) -> ObjectSpec:
    ctr = objects.container(
        "kuryr-cni",
        data["daemon_image"],
        command=["kuryr-daemon", "--config-file", "/etc/kuryr/kuryr.conf"],
        env=_proxy_env(data),
        volume_mounts=[
            ("bin", "/opt/cni/bin"),
            ("net-conf", "/etc/cni/net.d"),
            ("config-volume", "/etc/kuryr"),
            ("proc", "/host/proc"),
        ],
        probe_port=data["daemon_probes_port"],
    )
    return objects.daemon_set(
        "kuryr-cni",
        names.KURYR_NAMESPACE,
        [ctr],
        "kuryr",
        volumes=[
            objects.host_path_volume("bin", data["cni_bin_dir"]),
            objects.host_path_volume("net-conf", data["cni_conf_dir"]),
            objects.config_map_volume("config-volume", "kuryr-config"),
            objects.host_path_volume("proc", "/proc"),
        ],
    )


def _admission_controller(b: KuryrFacts, settings: RenderSettings) -> List[ObjectSpec]:
    """Objects for the DNS mutating webhook used when Octavia lacks multiple listeners."""

    if not b.webhook_ca:
        raise DiscoveryUnavailableError("kuryr webhook CA has not been generated yet")
    if not (b.webhook_cert and b.webhook_key):
        raise DiscoveryUnavailableError("kuryr webhook certificate or key is missing")

    name = "kuryr-dns-admission-controller"
    ctr = objects.container(
        "webhook",
        settings.image("kuryr_controller_image"),
        command=["kuryr-dns-webhook", "--tls-cert-file", "/etc/webhook/tls.crt",
                 "--tls-private-key-file", "/etc/webhook/tls.key"],
        ports=[6443],
        volume_mounts=[("webhook-certs", "/etc/webhook")],
    )
    return [
        objects.secret(
            names.KURYR_ADMISSION_CONTROLLER_SECRET,
            names.KURYR_NAMESPACE,
            {"tls.crt": b.webhook_cert, "tls.key": b.webhook_key},
            secret_type="kubernetes.io/tls",
        ),
        objects.daemon_set(
            name,
            names.KURYR_NAMESPACE,
            [ctr],
            "kuryr",
            volumes=[objects.secret_volume("webhook-certs", names.KURYR_ADMISSION_CONTROLLER_SECRET)],
            host_network=False,
            node_selector={"node-role.kubernetes.io/master": ""},
        ),
        objects.service(name, names.KURYR_NAMESPACE, {"app": name}, [{"port": 443, "targetPort": 6443}]),
        objects.webhook_configuration(
            "MutatingWebhookConfiguration",
            name,
            names.KURYR_NAMESPACE,
            service_name=name,
            path="/mutate",
            ca_bundle=b.webhook_ca,
            rules=[
                {
                    "apiGroups": [""],
                    "apiVersions": ["v1"],
                    "operations": ["CREATE"],
                    "resources": ["pods"],
                }
            ],
        ),
    ]

