from dataclasses import replace

import pytest

from netspec.config import (
    BootstrapFacts,
    ClusterNetworkEntry,
    DefaultNetwork,
    KuryrConfig,
    KuryrFacts,
    NetworkSpec,
    RenderSettings,
)
from netspec.errors import UnsafeChangeError, UnsupportedTypeError
from netspec.names import CONFIG_HASH_ANNOTATION
from netspec.objects import ObjectSpec
from netspec.versions import VersionChange
from netspec_operator import ReconcileState, Reconciler


def find(objects, kind: str, namespace: str, name: str) -> ObjectSpec:
    return next((o for o in objects if o.identity == (kind, namespace, name)), None)


def build_spec(network_type="Kuryr", kuryr_config=None, service=("172.30.0.0/16",)) -> NetworkSpec:
    return NetworkSpec(
        service_network=tuple(service),
        cluster_network=(ClusterNetworkEntry("10.128.0.0/15"),),
        default_network=DefaultNetwork(type=network_type, kuryr_config=kuryr_config),
    )


FACTS = BootstrapFacts(
    kuryr=KuryrFacts(
        service_subnet="svc-subnet-id",
        pod_subnetpool="pod-pool-id",
        worker_nodes_router="router-id",
        worker_nodes_subnets=("workers-id",),
        cluster_id="cluster-abc",
        octavia_provider="default",
        octavia_version="v2.11",
        nodes_network_mtu=1450,
    ),
    applied_release_version="4.13.2",
)


def build_reconciler(release="4.14.0") -> Reconciler:
    return Reconciler(settings=RenderSettings(release_version=release))


def test_kuryr_end_to_end():
    result = build_reconciler().reconcile(build_spec(), FACTS)

    assert result.state is ReconcileState.RENDERED
    assert result.accepted
    assert result.errors == []
    kc = result.spec.default_network.kuryr_config
    assert kc.openstack_service_network == "172.30.0.0/15"
    assert (kc.pool_min_ports, kc.pool_batch_ports) == (1, 3)
    assert result.spec.deploy_kube_proxy is False
    assert result.spec.disable_multi_network is False

    assert result.objects[0].kind == "Namespace"
    assert find(result.objects, "DaemonSet", "openshift-kube-proxy", "openshift-kube-proxy") is None
    controller = find(result.objects, "Deployment", "openshift-kuryr", "kuryr-controller")
    assert controller.annotations[CONFIG_HASH_ANNOTATION] == result.hashes["Kuryr"]
    pod_annotations = controller.body["spec"]["template"]["metadata"]["annotations"]
    assert pod_annotations[CONFIG_HASH_ANNOTATION] == result.hashes["Kuryr"]
    assert set(result.hashes) == {"Kuryr", "multus"}
    assert result.version_change is VersionChange.UPGRADE
    assert result.applied_spec() is result.spec


def test_namespaces_and_crds_come_first():
    kinds = [o.kind for o in build_reconciler().reconcile(build_spec(), FACTS).objects]

    first_other = next(i for i, k in enumerate(kinds) if k not in ("Namespace", "CustomResourceDefinition"))
    assert "Namespace" not in kinds[first_other:]
    assert "CustomResourceDefinition" not in kinds[first_other:]
    assert kinds.index("CustomResourceDefinition") > max(i for i, k in enumerate(kinds) if k == "Namespace")


def test_unknown_type_raises():
    with pytest.raises(UnsupportedTypeError):
        build_reconciler().reconcile(build_spec("OpenShiftSDN"), FACTS)


def test_invalid_spec_collects_every_error():
    result = build_reconciler().reconcile(build_spec(service=("not-a-cidr",)), FACTS)

    assert result.state is ReconcileState.REJECTED
    assert not result.accepted
    assert len(result.errors) >= 2
    assert result.objects == []
    assert result.applied_spec() is None


def test_unsafe_change_is_rejected():
    reconciler = build_reconciler()
    previous = reconciler.reconcile(build_spec(), FACTS).applied_spec()

    result = reconciler.reconcile(
        build_spec(kuryr_config=KuryrConfig(openstack_service_network="172.28.0.0/14")), FACTS, previous
    )

    assert result.state is ReconcileState.REJECTED
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], UnsafeChangeError)
    assert result.objects == []


def test_unchanged_spec_against_raw_previous():
    reconciler = build_reconciler()

    result = reconciler.reconcile(build_spec(), FACTS, previous=build_spec())

    assert result.state is ReconcileState.RENDERED


def test_type_change_reports_single_error():
    reconciler = build_reconciler()
    previous = reconciler.reconcile(build_spec(), FACTS).applied_spec()

    result = reconciler.reconcile(build_spec("External"), FACTS, previous)

    assert result.state is ReconcileState.REJECTED
    assert [str(e) for e in result.errors] == ["cannot change default network type"]


def test_kuryr_config_is_inert_for_other_types():
    spec = build_spec("External", kuryr_config=KuryrConfig(mtu=10))

    result = build_reconciler().reconcile(spec, FACTS)

    assert result.state is ReconcileState.RENDERED
    assert result.spec.default_network.kuryr_config == KuryrConfig(mtu=10)
    assert result.spec.deploy_kube_proxy is True
    assert not any(o.namespace == "openshift-kuryr" for o in result.objects)
    assert find(result.objects, "DaemonSet", "openshift-kube-proxy", "openshift-kube-proxy") is not None


def test_hash_follows_release_version():
    first = build_reconciler("4.14.0").reconcile(build_spec(), FACTS)
    second = build_reconciler("4.14.1").reconcile(build_spec(), FACTS)
    same = build_reconciler("4.14.0").reconcile(build_spec(), FACTS)

    assert first.hashes["Kuryr"] != second.hashes["Kuryr"]
    assert first.hashes == same.hashes


def test_version_change_directions():
    downgrade = build_reconciler("4.12.0").reconcile(build_spec(), FACTS)
    unknown = build_reconciler("4.14.0").reconcile(build_spec(), replace(FACTS, applied_release_version="garbage"))

    assert downgrade.version_change is VersionChange.DOWNGRADE
    assert unknown.version_change is VersionChange.UNKNOWN


def test_hash_follows_cloud_credentials():
    def with_password(password):
        kuryr = replace(FACTS.kuryr, openstack_cloud={"auth": {"password": password}})
        return build_reconciler().reconcile(build_spec(), replace(FACTS, kuryr=kuryr))

    old = with_password("old")
    new = with_password("new")

    assert old.hashes["Kuryr"] != new.hashes["Kuryr"]
    assert old.hashes["multus"] == new.hashes["multus"]


def test_previous_type_no_longer_registered():
    result = build_reconciler().reconcile(build_spec("External"), FACTS, previous=build_spec("OpenShiftSDN"))

    assert result.state is ReconcileState.REJECTED
    assert [str(e) for e in result.errors] == ["cannot change default network type"]
