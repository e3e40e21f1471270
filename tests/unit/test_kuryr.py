import logging
from dataclasses import replace

import pytest
import yaml

from netspec.config import (
    BootstrapFacts,
    ClusterNetworkEntry,
    DefaultNetwork,
    KuryrConfig,
    KuryrFacts,
    NetworkSpec,
    RenderSettings,
)
from netspec.errors import RenderContractError, StructuralConfigError, UnsafeChangeError
from netspec.objects import ObjectSpec
from netspec_operator.providers.kuryr import KuryrProvider, octavia_features


def find(objects, kind: str, namespace: str, name: str) -> ObjectSpec:
    return next((o for o in objects if o.identity == (kind, namespace, name)), None)


def build_spec(kuryr_config=None, service=("172.30.0.0/16",), cluster=("10.128.0.0/15",)) -> NetworkSpec:
    return NetworkSpec(
        service_network=tuple(service),
        cluster_network=tuple(ClusterNetworkEntry(c) for c in cluster),
        default_network=DefaultNetwork(type="Kuryr", kuryr_config=kuryr_config),
    )


def build_facts(**overrides) -> BootstrapFacts:
    kuryr = KuryrFacts(
        service_subnet="svc-subnet-id",
        pod_subnetpool="pod-pool-id",
        worker_nodes_router="router-id",
        worker_nodes_subnets=("workers-id",),
        pod_security_groups=("sg-1", "sg-2"),
        external_network="ext-net",
        cluster_id="cluster-abc",
        octavia_provider="default",
        octavia_version="v2.11",
        openstack_cloud={"auth": {"auth_url": "https://keystone:5000"}, "region_name": "RegionOne"},
        nodes_network_mtu=1450,
    )
    return BootstrapFacts(kuryr=replace(kuryr, **overrides))


SETTINGS = RenderSettings(
    release_version="4.14.0",
    images={"kuryr_daemon_image": "quay.io/kuryr-cni:4.14", "kuryr_controller_image": "quay.io/kuryr-controller:4.14"},
    kubernetes_service_host="api-int.example.com",
    kubernetes_service_port="6443",
)


def test_fill_defaults_sets_every_unset_field():
    spec = KuryrProvider().fill_defaults(build_spec())
    kc = spec.default_network.kuryr_config

    assert kc.daemon_probes_port == 8090
    assert kc.controller_probes_port == 8091
    assert kc.openstack_service_network == "172.30.0.0/15"
    assert kc.pool_min_ports == 1
    assert kc.pool_batch_ports == 3
    assert kc.pool_max_ports == 0


def test_fill_defaults_keeps_explicit_values_and_input():
    explicit = KuryrConfig(
        daemon_probes_port=9000,
        openstack_service_network="172.28.0.0/14",
        pool_min_ports=5,
        pool_batch_ports=10,
    )
    original = build_spec(explicit)

    kc = KuryrProvider().fill_defaults(original).default_network.kuryr_config

    assert kc.daemon_probes_port == 9000
    assert kc.controller_probes_port == 8091
    assert kc.openstack_service_network == "172.28.0.0/14"
    assert (kc.pool_min_ports, kc.pool_batch_ports) == (5, 10)
    assert original.default_network.kuryr_config == explicit


def test_defaulted_spec_is_valid():
    provider = KuryrProvider()

    assert provider.validate(provider.fill_defaults(build_spec())) == []


def test_override_of_equal_size_is_rejected():
    spec = build_spec(KuryrConfig(openstack_service_network="172.30.0.0/16"))

    errors = KuryrProvider().validate(spec)

    assert any("is too small" in str(e) for e in errors)


def test_arity_and_parse_errors_accumulate():
    spec = build_spec(service=(), cluster=("not-a-cidr",))

    errors = KuryrProvider().validate(spec)

    assert len(errors) >= 2
    assert isinstance(errors[0], StructuralConfigError)
    assert any("cannot parse clusterNetwork" in str(e) for e in errors)


def test_two_service_networks_still_checks_first_entry():
    spec = build_spec(
        KuryrConfig(openstack_service_network="172.30.0.0/16"),
        service=("172.30.0.0/16", "fd02::/112"),
    )

    messages = [str(e) for e in KuryrProvider().validate(spec)]

    assert "serviceNetwork must have exactly 1 entry" in messages
    assert any("is too small" in m for m in messages)


@pytest.mark.parametrize(
    "config, text",
    [
        (KuryrConfig(pool_batch_ports=0), "at least value of 1"),
        (KuryrConfig(pool_min_ports=5, pool_batch_ports=3), "below poolMinPorts"),
        (KuryrConfig(pool_max_ports=2, pool_batch_ports=3), "above poolMaxPorts"),
        (KuryrConfig(pool_min_ports=5, pool_max_ports=2), "poolMinPorts cannot be set above"),
        (KuryrConfig(mtu=100), "invalid MTU"),
        (KuryrConfig(openstack_service_network="bogus"), "cannot parse"),
    ],
)
def test_invalid_kuryr_settings(config: KuryrConfig, text: str):
    errors = KuryrProvider().validate(build_spec(config))

    assert any(text in str(e) for e in errors)


def test_change_safety():
    provider = KuryrProvider()
    spec = provider.fill_defaults(build_spec())
    kc = spec.default_network.kuryr_config

    assert provider.is_change_safe(spec, spec) == []

    more_ports = replace(spec, default_network=replace(spec.default_network, kuryr_config=replace(kc, pool_max_ports=20)))
    assert provider.is_change_safe(spec, more_ports) == []

    moved = replace(
        spec,
        default_network=replace(spec.default_network, kuryr_config=replace(kc, openstack_service_network="172.28.0.0/14")),
    )
    errors = provider.is_change_safe(spec, moved)
    assert len(errors) == 1
    assert isinstance(errors[0], UnsafeChangeError)
    assert "openStackServiceNetwork" in str(errors[0])


def test_render_objects():
    provider = KuryrProvider()
    spec = provider.fill_defaults(build_spec())

    result = provider.render(spec, build_facts(), SETTINGS)
    objs = result.objects

    assert objs[0].kind == "Namespace"
    assert objs[0].name == "openshift-kuryr"
    assert len([o for o in objs if o.kind == "CustomResourceDefinition"]) == 4

    conf = find(objs, "ConfigMap", "openshift-kuryr", "kuryr-config").body["data"]["kuryr.conf"]
    assert "ports_pool_batch = 3" in conf
    assert "resource_tags = openshiftClusterID=cluster-abc" in conf
    assert "api_root = https://api-int.example.com:6443" in conf

    creds = find(objs, "Secret", "openshift-kuryr", "kuryr-config-credentials").body["stringData"]
    assert yaml.safe_load(creds["clouds.yaml"])["clouds"]["openstack"]["region_name"] == "RegionOne"

    daemon = find(objs, "DaemonSet", "openshift-kuryr", "kuryr-cni")
    container = daemon.body["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "quay.io/kuryr-cni:4.14"
    assert container["livenessProbe"]["httpGet"]["port"] == 8090
    assert find(objs, "Deployment", "openshift-kuryr", "kuryr-controller") is not None

    assert result.data["release_version"] == "4.14.0"
    assert result.data["admission_controller"] is False
    assert find(objs, "MutatingWebhookConfiguration", "", "kuryr-dns-admission-controller") is None


def test_render_is_pure():
    provider = KuryrProvider()
    spec = provider.fill_defaults(build_spec())
    facts = build_facts()

    first = provider.render(spec, facts, SETTINGS)
    second = provider.render(spec, facts, SETTINGS)

    assert first.objects == second.objects
    assert first.data == second.data


def test_admission_controller_for_old_octavia():
    provider = KuryrProvider()
    spec = provider.fill_defaults(build_spec())
    facts = build_facts(octavia_version="v2.10", webhook_ca="CA", webhook_cert="CERT", webhook_key="KEY")

    objs = provider.render(spec, facts, SETTINGS).objects

    webhook = find(objs, "MutatingWebhookConfiguration", "", "kuryr-dns-admission-controller")
    assert webhook is not None
    assert webhook.body["webhooks"][0]["clientConfig"]["caBundle"] == "CA"
    assert find(objs, "DaemonSet", "openshift-kuryr", "kuryr-dns-admission-controller") is not None


def test_admission_controller_withheld_without_ca(caplog):
    provider = KuryrProvider()
    spec = provider.fill_defaults(build_spec())
    facts = build_facts(octavia_version="v2.10")

    with caplog.at_level(logging.WARNING):
        result = provider.render(spec, facts, SETTINGS)

    assert result.data["admission_controller"] is True
    assert all(o.name != "kuryr-dns-admission-controller" for o in result.objects)
    assert "Withholding kuryr DNS admission controller" in caplog.text


def test_explicit_multiple_listener_fact_wins():
    features = octavia_features(KuryrFacts(octavia_version="v2.5", octavia_multiple_listeners=True))

    assert features == {"multiple_listeners": True, "https_monitors": False, "timeouts": True}


def test_ovn_octavia_provider_uses_l2_members():
    provider = KuryrProvider()
    spec = provider.fill_defaults(build_spec())

    data = provider.render(spec, build_facts(octavia_provider="ovn"), SETTINGS).data

    assert data["octavia_member_mode"] == "L2"
    assert data["octavia_lb_algorithm"] == "SOURCE_IP_PORT"


def test_render_without_defaults_is_a_contract_error():
    with pytest.raises(RenderContractError):
        KuryrProvider().render(build_spec(), build_facts(), SETTINGS)
