"""kube-proxy argument merging and KubeProxyConfiguration generation.

Proxy options arrive as command-line style ``name -> [values]`` mappings from
three sources (plugin defaults, the user, plugin overrides).  They are merged
so only the last value of each argument survives and then converted into a
``kubeproxy.config.k8s.io/v1alpha1`` document.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

ProxyArguments = Mapping[str, Sequence[str]]

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


class ProxyArgumentError(ValueError):
    """One or more proxy arguments could not be turned into configuration."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def parse_duration(value: str) -> int:
    """Parse a Go-style duration (``1h2m3.5s``, ``300ms``) into nanoseconds."""

    text = value.strip()
    if not text:
        raise ValueError("invalid duration \"\"")
    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return sign * int(round(total))


def format_duration(nanoseconds: int) -> str:
    """Format nanoseconds the way Go prints a ``time.Duration``."""

    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    ns = abs(nanoseconds)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_trim(ns / 1_000)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_trim(ns / 1_000_000)}ms"

    hours, rem = divmod(ns, 3600 * 1_000_000_000)
    minutes, rem = divmod(rem, 60 * 1_000_000_000)
    seconds = _trim(rem / 1_000_000_000)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def _trim(value: float) -> str:
    text = f"{value:.9f}".rstrip("0").rstrip(".")
    return text or "0"


def merge_proxy_arguments(
    defaults: Optional[ProxyArguments],
    overrides: Optional[ProxyArguments],
) -> Dict[str, List[str]]:
    """Merge two argument maps keeping only the last value of each argument."""

    args: Dict[str, List[str]] = {}
    for source in (defaults or {}, overrides or {}):
        for key, values in source.items():
            if values:
                args[key] = [values[-1]]
    return args


class _ArgumentReader:
    """Consumes arguments while converting them, remembering every failure."""

    def __init__(self, args: ProxyArguments) -> None:
        self._args = merge_proxy_arguments(args, None)
        self.errors: List[str] = []

    def unused(self) -> List[str]:
        return sorted(self._args)

    def get(self, key: str) -> str:
        values = self._args.pop(key, None)
        return values[0] if values else ""

    def string(self, key: str) -> str:
        return self.get(key)

    def address(self, key: str) -> str:
        value = self.get(key)
        if value and not _is_ip(value):
            self.errors.append(f"invalid {key} {value!r} (not an IP address)")
            return ""
        return value

    def address_and_port(self, address_key: str, port_key: str, default_port: str) -> str:
        address = self.get(address_key)
        port = self.get(port_key)
        if not address and not port:
            return ""
        if address:
            if not _is_ip(address):
                self.errors.append(f"invalid {address_key} {address!r} (not an IP address)")
                return ""
        else:
            address = "0.0.0.0"
        if port:
            if not port.isdigit() or int(port) > 65535:
                self.errors.append(f"invalid {port_key} {port!r} (not a port number)")
                return ""
        else:
            port = default_port
        if ":" in address:
            return f"[{address}]:{port}"
        return f"{address}:{port}"

    def cidr(self, key: str) -> str:
        value = self.get(key)
        if value and not _is_cidr(value):
            self.errors.append(f"invalid {key} {value!r} (not a CIDR)")
            return ""
        return value

    def cidr_list(self, key: str) -> Optional[List[str]]:
        value = self.get(key)
        if not value:
            return None
        values = value.split(",")
        for item in values:
            if not _is_cidr(item):
                self.errors.append(f"invalid {key} {value!r} (not a CIDR list)")
                return None
        return values

    def optional_int(self, key: str) -> Optional[int]:
        value = self.get(key)
        if not value:
            return None
        try:
            number = int(value, 10)
        except ValueError:
            self.errors.append(f"invalid {key} {value!r} (not an integer)")
            return None
        if not -(2**31) <= number < 2**31:
            self.errors.append(f"invalid {key} {value!r} (out of range)")
            return None
        return number

    def boolean(self, key: str) -> bool:
        value = self.get(key)
        if not value:
            return False
        lowered = value.lower()
        if lowered in ("1", "t", "true"):
            return True
        if lowered in ("0", "f", "false"):
            return False
        self.errors.append(f"invalid {key} {value!r} (not a boolean)")
        return False

    def duration(self, key: str) -> int:
        value = self.get(key)
        if not value:
            return 0
        try:
            return parse_duration(value)
        except ValueError as exc:
            self.errors.append(f"invalid {key} {value!r} ({exc})")
            return 0

    def port_range(self, key: str) -> str:
        value = self.get(key)
        if value and not _is_port_range(value):
            self.errors.append(f"invalid {key} {value!r} (not a port range)")
            return ""
        return value


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _is_cidr(value: str) -> bool:
    if "/" not in value:
        return False
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError:
        return False
    return True


def _is_port_range(value: str) -> bool:
    match = re.fullmatch(r"(\d+)(?:([-+])(\d+))?", value.strip())
    if match is None:
        return False
    base = int(match.group(1))
    if match.group(2) is None:
        return base <= 65535
    other = int(match.group(3))
    upper = base + other if match.group(2) == "+" else other
    return base <= upper <= 65535


def _optional_duration(nanoseconds: int) -> Optional[str]:
    return format_duration(nanoseconds) if nanoseconds else None


def build_kube_proxy_configuration(args: ProxyArguments) -> Dict[str, Any]:
    """Convert merged proxy arguments into a KubeProxyConfiguration mapping.

    Raises :class:`ProxyArgumentError` listing every malformed or unknown
    argument.
    """

    reader = _ArgumentReader(args)
    config: Dict[str, Any] = {
        "apiVersion": "kubeproxy.config.k8s.io/v1alpha1",
        "kind": "KubeProxyConfiguration",
        "bindAddress": reader.address("bind-address"),
        "healthzBindAddress": reader.address_and_port("healthz-bind-address", "healthz-port", "10256"),
        "metricsBindAddress": reader.address_and_port("metrics-bind-address", "metrics-port", "10249"),
        "clusterCIDR": reader.cidr("cluster-cidr"),
        "iptables": {
            "masqueradeBit": reader.optional_int("iptables-masquerade-bit"),
            "masqueradeAll": reader.boolean("masquerade-all"),
            "syncPeriod": format_duration(reader.duration("iptables-sync-period")),
            "minSyncPeriod": format_duration(reader.duration("iptables-min-sync-period")),
        },
        "ipvs": {
            "syncPeriod": format_duration(reader.duration("ipvs-sync-period")),
            "minSyncPeriod": format_duration(reader.duration("ipvs-min-sync-period")),
            "scheduler": reader.string("ipvs-scheduler"),
            "excludeCIDRs": reader.cidr_list("ipvs-exclude-cidrs"),
        },
        "mode": reader.string("proxy-mode"),
        "portRange": reader.port_range("proxy-port-range"),
        "udpIdleTimeout": format_duration(reader.duration("udp-timeout")),
        "conntrack": {
            "maxPerCore": reader.optional_int("conntrack-max-per-core"),
            "min": reader.optional_int("conntrack-min"),
            "tcpEstablishedTimeout": _optional_duration(
                reader.duration("conntrack-tcp-timeout-established")
            ),
            "tcpCloseWaitTimeout": _optional_duration(
                reader.duration("conntrack-tcp-timeout-close-wait")
            ),
        },
        "configSyncPeriod": format_duration(reader.duration("config-sync-period")),
        "nodePortAddresses": reader.cidr_list("node-port-addresses"),
    }

    if reader.errors:
        raise ProxyArgumentError(reader.errors)
    unused = reader.unused()
    if unused:
        raise ProxyArgumentError([f"unused arguments: {', '.join(unused)}"])
    return config


def generate_kube_proxy_configuration(args: ProxyArguments) -> str:
    """Return the YAML text of the KubeProxyConfiguration for ``args``."""

    return yaml.safe_dump(
        build_kube_proxy_configuration(args),
        default_flow_style=False,
        sort_keys=True,
    )
