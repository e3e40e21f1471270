from dataclasses import replace

import yaml

from netspec.config import (
    BootstrapFacts,
    ClusterNetworkEntry,
    DefaultNetwork,
    NetworkSpec,
    ProxyConfig,
    RenderSettings,
)
from netspec.objects import ObjectSpec
from netspec_operator.providers.kube_proxy import KubeProxyProvider, kube_proxy_configuration


def find(objects, kind: str, namespace: str, name: str) -> ObjectSpec:
    return next((o for o in objects if o.identity == (kind, namespace, name)), None)


def build_spec(network_type="External", proxy=None, cluster="10.128.0.0/14", deploy=None) -> NetworkSpec:
    return NetworkSpec(
        service_network=("172.30.0.0/16",),
        cluster_network=(ClusterNetworkEntry(cluster, 23),),
        default_network=DefaultNetwork(type=network_type),
        kube_proxy_config=proxy,
        deploy_kube_proxy=deploy,
    )


SETTINGS = RenderSettings(release_version="4.14.0", images={"kube_proxy_image": "quay.io/kube-proxy:4.14"})


def test_deploy_defaults_by_network_type():
    provider = KubeProxyProvider()

    kuryr = provider.fill_defaults(build_spec("Kuryr"))
    external = provider.fill_defaults(build_spec("External"))

    assert kuryr.deploy_kube_proxy is False
    assert kuryr.kube_proxy_config is None
    assert external.deploy_kube_proxy is True
    assert external.kube_proxy_config.bind_address == "0.0.0.0"


def test_bind_address_follows_cluster_family():
    spec = KubeProxyProvider().fill_defaults(build_spec(cluster="fd01::/48"))

    assert spec.kube_proxy_config.bind_address == "::"


def test_explicit_values_are_kept():
    spec = KubeProxyProvider().fill_defaults(
        build_spec("Kuryr", proxy=ProxyConfig(bind_address="10.0.0.1"), deploy=True)
    )

    assert spec.deploy_kube_proxy is True
    assert spec.kube_proxy_config.bind_address == "10.0.0.1"


def test_self_proxying_network_rejects_options():
    provider = KubeProxyProvider()

    rejected = provider.validate(build_spec("Kuryr", proxy=ProxyConfig(iptables_sync_period="30s")))
    defaults_only = provider.validate(build_spec("Kuryr", proxy=ProxyConfig(bind_address="0.0.0.0")))

    assert len(rejected) == 1
    assert "does not allow specifying kube-proxy options" in str(rejected[0])
    assert defaults_only == []


def test_invalid_proxy_options():
    provider = KubeProxyProvider()
    spec = provider.fill_defaults(
        build_spec(
            proxy=ProxyConfig(
                bind_address="not-an-ip",
                iptables_sync_period="soon",
                proxy_arguments={"metrics-port": ("9102",), "healthz-port": ("10256",)},
            )
        )
    )

    messages = [str(e) for e in provider.validate(spec)]

    assert any("IptablesSyncPeriod is not a valid duration" in m for m in messages)
    assert "BindAddress must be a valid IP address" in messages
    assert "kube-proxy --metrics-port cannot be overridden" in messages
    assert not any("healthz-port" in m for m in messages)


def test_unknown_proxy_argument_is_reported():
    provider = KubeProxyProvider()
    spec = provider.fill_defaults(build_spec(proxy=ProxyConfig(proxy_arguments={"no-such-flag": ("1",)})))

    messages = [str(e) for e in provider.validate(spec)]

    assert any("unused arguments: no-such-flag" in m for m in messages)


def test_every_change_is_safe():
    provider = KubeProxyProvider()
    spec = provider.fill_defaults(build_spec())
    changed = replace(spec, kube_proxy_config=ProxyConfig(bind_address="10.0.0.1", iptables_sync_period="1m"))

    assert provider.is_change_safe(spec, spec) == []
    assert provider.is_change_safe(spec, changed) == []


def test_argument_precedence():
    spec = build_spec(proxy=ProxyConfig(bind_address="0.0.0.0", proxy_arguments={"proxy-mode": ("ipvs", "iptables")}))

    from_user = yaml.safe_load(kube_proxy_configuration({"proxy-mode": ["userspace"]}, spec, None))
    overridden = yaml.safe_load(kube_proxy_configuration({"proxy-mode": ["userspace"]}, spec, {"proxy-mode": ["nftables"]}))

    assert from_user["mode"] == "iptables"
    assert overridden["mode"] == "nftables"


def test_render_standalone_proxy():
    provider = KubeProxyProvider()
    spec = provider.fill_defaults(
        build_spec(proxy=ProxyConfig(proxy_arguments={"iptables-min-sync-period": ("10s",)}))
    )

    result = provider.render(spec, BootstrapFacts(), SETTINGS)
    objs = result.objects

    assert objs[0].kind == "Namespace"
    assert objs[0].name == "openshift-kube-proxy"
    config = yaml.safe_load(find(objs, "ConfigMap", "openshift-kube-proxy", "proxy-config").body["data"]["kube-proxy-config.yaml"])
    assert config["clusterCIDR"] == "10.128.0.0/14"
    assert config["metricsBindAddress"] == "0.0.0.0:9102"
    assert config["healthzBindAddress"] == "0.0.0.0:10255"
    assert config["iptables"]["minSyncPeriod"] == "10s"
    assert find(objs, "DaemonSet", "openshift-kube-proxy", "openshift-kube-proxy") is not None
    assert result.data["metrics_port"] == "9102"


def test_render_nothing_when_not_deployed():
    provider = KubeProxyProvider()
    spec = provider.fill_defaults(build_spec("Kuryr"))

    result = provider.render(spec, BootstrapFacts(), SETTINGS)

    assert result.objects == []
    assert result.data == {}
