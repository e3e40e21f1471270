"""Cluster-wide checks on the service and cluster IP pools.

These run for every provider before the provider's own checks and cover the
rules that hold regardless of which default network is selected.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from . import subnet
from .config import NetworkSpec
from .errors import NetworkConfigError, SemanticConfigError, StructuralConfigError, UnsafeChangeError


def validate_ip_pools(spec: NetworkSpec, require_host_prefix: bool = False) -> List[NetworkConfigError]:
    """Return every problem found in ``spec.service_network`` / ``spec.cluster_network``."""

    errors: List[NetworkConfigError] = []
    pools: List[Tuple[str, subnet.IPNetwork]] = []

    service_families = {4: 0, 6: 0}
    for cidr in spec.service_network:
        try:
            net = subnet.parse_cidr(cidr)
        except ValueError:
            errors.append(SemanticConfigError(f"could not parse spec.serviceNetwork {cidr}"))
            continue
        service_families[net.version] += 1
        pools.append((f"spec.serviceNetwork {cidr}", net))

    if not spec.service_network:
        errors.append(StructuralConfigError("spec.serviceNetwork must have at least 1 entry"))
    elif service_families[4] > 1 or service_families[6] > 1:
        errors.append(
            StructuralConfigError(
                "spec.serviceNetwork must contain at most one IPv4 and one IPv6 network"
            )
        )

    cluster_families = {4: 0, 6: 0}
    for entry in spec.cluster_network:
        try:
            net = subnet.parse_cidr(entry.cidr)
        except ValueError:
            errors.append(SemanticConfigError(f"could not parse spec.clusterNetwork {entry.cidr}"))
            continue
        cluster_families[net.version] += 1
        pools.append((f"spec.clusterNetwork {entry.cidr}", net))

        if entry.host_prefix or require_host_prefix:
            errors.extend(_check_host_prefix(entry.cidr, net, entry.host_prefix))

    if not spec.cluster_network:
        errors.append(StructuralConfigError("spec.clusterNetwork must have at least 1 entry"))

    for i, (name_a, net_a) in enumerate(pools):
        for name_b, net_b in pools[i + 1:]:
            if subnet.overlaps(net_a, net_b):
                errors.append(SemanticConfigError(f"CIDRs {name_a} and {name_b} overlap"))

    if not errors:
        for version in (4, 6):
            if bool(service_families[version]) != bool(cluster_families[version]):
                errors.append(
                    SemanticConfigError(
                        "spec.clusterNetwork and spec.serviceNetwork must either both be "
                        "IPv4-only, both be IPv6-only, or both be dual-stack"
                    )
                )
                break
    return errors


def _check_host_prefix(cidr: str, net: subnet.IPNetwork, host_prefix: int) -> List[NetworkConfigError]:
    if host_prefix < net.prefixlen:
        return [
            SemanticConfigError(
                f"hostPrefix {host_prefix} is smaller than the prefix of clusterNetwork {cidr}"
            )
        ]
    if host_prefix > net.max_prefixlen - 2:
        return [
            SemanticConfigError(
                f"hostPrefix {host_prefix} is too large for clusterNetwork {cidr}"
            )
        ]
    return []


def _canonical(cidr: str) -> Optional[subnet.IPNetwork]:
    try:
        return subnet.parse_cidr(cidr)
    except ValueError:
        return None


def is_network_change_safe(previous: NetworkSpec, proposed: NetworkSpec) -> List[NetworkConfigError]:
    """Report changes to cluster-wide fields that cannot be applied in place."""

    if previous == proposed:
        return []

    errors: List[NetworkConfigError] = []
    if previous.default_network.type != proposed.default_network.type:
        errors.append(UnsafeChangeError("cannot change default network type"))

    if [_canonical(c) for c in previous.service_network] != [
        _canonical(c) for c in proposed.service_network
    ]:
        errors.append(UnsafeChangeError("cannot change ServiceNetwork"))

    old_cluster = [(_canonical(e.cidr), e.host_prefix) for e in previous.cluster_network]
    new_cluster = [(_canonical(e.cidr), e.host_prefix) for e in proposed.cluster_network]
    if old_cluster != new_cluster:
        errors.append(UnsafeChangeError("cannot change ClusterNetwork"))

    return errors
