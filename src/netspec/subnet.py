"""Subnet arithmetic used by network validation and defaulting.

All helpers operate on :mod:`ipaddress` network objects.  Networks of
different address families never include or overlap each other.
"""

from __future__ import annotations

import ipaddress
from typing import List, Optional, Union

from .errors import SemanticConfigError

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_cidr(value: str) -> IPNetwork:
    """Parse ``value`` as a CIDR, masking any host bits.

    ``10.128.1.7/15`` parses as ``10.128.0.0/15``.  A bare address without a
    prefix length is rejected.
    """

    if not isinstance(value, str) or "/" not in value:
        raise ValueError(f"invalid CIDR address: {value!r}")
    return ipaddress.ip_network(value.strip(), strict=False)


def is_ipv6_cidr(value: str) -> bool:
    return parse_cidr(value).version == 6


def expand(net: IPNetwork) -> IPNetwork:
    """Return the network one prefix bit shorter (twice the address space).

    Raises :class:`ValueError` for a ``/0`` network.
    """

    if net.prefixlen == 0:
        raise ValueError(f"cannot expand {net}: prefix length is already 0")
    return net.supernet(prefixlen_diff=1)


def includes(a: IPNetwork, b: IPNetwork) -> bool:
    """True iff every address of ``b`` lies within ``a``."""

    if a.version != b.version:
        return False
    return b.network_address in a and b.broadcast_address in a


def overlaps(a: IPNetwork, b: IPNetwork) -> bool:
    """True iff ``a`` and ``b`` share at least one address."""

    if a.version != b.version:
        return False
    return (
        b.network_address in a
        or b.broadcast_address in a
        or a.network_address in b
        or a.broadcast_address in b
    )


def validate_service_network_sizing(
    service: IPNetwork,
    override: Optional[IPNetwork],
    cluster: Optional[IPNetwork],
) -> List[SemanticConfigError]:
    """Check that ``override`` is a valid enlargement of ``service``.

    ``override`` falls back to ``expand(service)`` when unset.  The three
    checks are independent and every violation is returned.
    """

    if override is None:
        override = expand(service)

    errors: List[SemanticConfigError] = []
    if cluster is not None and overlaps(override, cluster):
        errors.append(
            SemanticConfigError(
                f"openStackServiceNetwork {override} will overlap with cluster network {cluster}"
            )
        )
    if not includes(override, service):
        errors.append(
            SemanticConfigError(
                f"openStackServiceNetwork {override} does not include serviceNetwork {service} "
                "(the openStackServiceNetwork needs to be twice the size of serviceNetwork "
                "and include it)"
            )
        )
    if override.prefixlen >= service.prefixlen:
        errors.append(
            SemanticConfigError(
                f"openStackServiceNetwork {override} is too small comparing to serviceNetwork "
                f"{service} (the openStackServiceNetwork needs to be twice the size of the "
                "serviceNetwork and include it)"
            )
        )
    return errors
