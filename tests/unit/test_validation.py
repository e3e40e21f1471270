from dataclasses import replace

from netspec.config import ClusterNetworkEntry, DefaultNetwork, NetworkSpec
from netspec.errors import SemanticConfigError, StructuralConfigError, UnsafeChangeError
from netspec.validation import is_network_change_safe, validate_ip_pools


def build_spec(service=("172.30.0.0/16",), cluster=(("10.128.0.0/14", 23),), network_type="External") -> NetworkSpec:
    return NetworkSpec(
        service_network=tuple(service),
        cluster_network=tuple(ClusterNetworkEntry(cidr, prefix) for cidr, prefix in cluster),
        default_network=DefaultNetwork(type=network_type),
    )


def messages(errors):
    return [str(e) for e in errors]


def test_valid_pools():
    assert validate_ip_pools(build_spec()) == []


def test_dual_stack_pools():
    spec = build_spec(
        service=("172.30.0.0/16", "fd02::/112"),
        cluster=(("10.128.0.0/14", 23), ("fd01::/48", 64)),
    )

    assert validate_ip_pools(spec) == []


def test_multiple_errors_reported_together():
    spec = build_spec(service=(), cluster=(("not-a-cidr", 0),))

    errors = validate_ip_pools(spec)

    assert len(errors) >= 2
    assert any(isinstance(e, StructuralConfigError) for e in errors)
    assert any(isinstance(e, SemanticConfigError) for e in errors)


def test_overlapping_pools():
    spec = build_spec(service=("10.0.0.0/16",), cluster=(("10.0.0.0/14", 23),))

    assert any("overlap" in m for m in messages(validate_ip_pools(spec)))


def test_two_ipv4_service_networks():
    spec = build_spec(service=("172.30.0.0/16", "172.31.0.0/16"))

    errors = validate_ip_pools(spec)

    assert [type(e) for e in errors] == [StructuralConfigError]


def test_host_prefix_bounds():
    too_small = build_spec(cluster=(("10.128.0.0/14", 12),))
    too_large = build_spec(cluster=(("10.128.0.0/14", 31),))

    assert any("hostPrefix 12" in m for m in messages(validate_ip_pools(too_small)))
    assert any("hostPrefix 31" in m for m in messages(validate_ip_pools(too_large)))


def test_host_prefix_required_when_asked():
    spec = build_spec(cluster=(("10.128.0.0/14", 0),))

    assert validate_ip_pools(spec) == []
    assert validate_ip_pools(spec, require_host_prefix=True) != []


def test_family_mismatch():
    spec = build_spec(service=("172.30.0.0/16",), cluster=(("fd01::/48", 64),))

    assert any("dual-stack" in m for m in messages(validate_ip_pools(spec)))


def test_change_safety_reflexive():
    spec = build_spec()

    assert is_network_change_safe(spec, spec) == []
    assert is_network_change_safe(spec, replace(spec, log_level="Debug")) == []


def test_unsafe_cluster_wide_changes():
    spec = build_spec()

    changed_type = is_network_change_safe(spec, replace(spec, default_network=DefaultNetwork("Kuryr")))
    changed_service = is_network_change_safe(spec, replace(spec, service_network=("172.31.0.0/16",)))
    changed_prefix = is_network_change_safe(
        spec, replace(spec, cluster_network=(ClusterNetworkEntry("10.128.0.0/14", 24),))
    )

    for errors, text in (
        (changed_type, "default network type"),
        (changed_service, "ServiceNetwork"),
        (changed_prefix, "ClusterNetwork"),
    ):
        assert len(errors) == 1
        assert isinstance(errors[0], UnsafeChangeError)
        assert text in str(errors[0])


def test_equivalent_cidr_spelling_is_safe():
    spec = build_spec(service=("172.30.0.0/16",))

    assert is_network_change_safe(spec, replace(spec, service_network=("172.30.0.1/16",))) == []
