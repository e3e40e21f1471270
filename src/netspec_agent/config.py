"""YAML loaders for the network spec, bootstrap facts and applied state.

Documents use the camelCase field names of the cluster Network resource.  A
spec document may be either the bare ``spec`` mapping or a full resource
with the mapping under a top-level ``spec`` key.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import yaml

from netspec.config import (
    AdditionalNetwork,
    APIServer,
    BootstrapFacts,
    ClusterNetworkEntry,
    ControlPlaneTopology,
    DefaultNetwork,
    HostedControlPlane,
    InfraFacts,
    IPAMConfig,
    KuryrConfig,
    KuryrFacts,
    NetworkSpec,
    NodeIdentityFacts,
    ProxyConfig,
    SimpleMacvlanConfig,
    StaticIPAMAddress,
    StaticIPAMConfig,
    StaticIPAMDNS,
    StaticIPAMRoute,
)
from netspec.objects import ObjectSpec

# Field name used in documents -> dataclass attribute.
_KURYR_CONFIG_FIELDS = {
    "daemonProbesPort": "daemon_probes_port",
    "controllerProbesPort": "controller_probes_port",
    "openStackServiceNetwork": "openstack_service_network",
    "enablePortPoolsPrepopulation": "enable_port_pools_prepopulation",
    "poolMaxPorts": "pool_max_ports",
    "poolMinPorts": "pool_min_ports",
    "poolBatchPorts": "pool_batch_ports",
    "mtu": "mtu",
}

_KURYR_FACT_FIELDS = {
    "serviceSubnet": "service_subnet",
    "podSubnetpool": "pod_subnetpool",
    "workerNodesRouter": "worker_nodes_router",
    "workerNodesSubnets": "worker_nodes_subnets",
    "podSecurityGroups": "pod_security_groups",
    "externalNetwork": "external_network",
    "clusterID": "cluster_id",
    "octaviaProvider": "octavia_provider",
    "octaviaVersion": "octavia_version",
    "octaviaMultipleListeners": "octavia_multiple_listeners",
    "openStackCloud": "openstack_cloud",
    "userCACert": "user_ca_cert",
    "webhookCA": "webhook_ca",
    "webhookCert": "webhook_cert",
    "webhookKey": "webhook_key",
    "nodesNetworkMTU": "nodes_network_mtu",
    "httpsProxy": "https_proxy",
    "httpProxy": "http_proxy",
    "noProxy": "no_proxy",
}


def _mapping(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{what}' must be a mapping")
    return value


def _list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{what}' must be a list")
    return value


def _optional_int(value: Any, what: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"'{what}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{what}' must be an integer") from None


def _optional_bool(value: Any, what: str) -> Optional[bool]:
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"'{what}' must be a boolean")
    return value


def _flag(value: Any, what: str, default: bool) -> bool:
    parsed = _optional_bool(value, what)
    return default if parsed is None else parsed


def _rename(section: Mapping[str, Any], names: Mapping[str, str], what: str) -> Dict[str, Any]:
    unknown = sorted(set(section) - set(names))
    if unknown:
        raise ValueError(f"unknown {what} field(s): {', '.join(unknown)}")
    return {names[key]: value for key, value in section.items()}


# ----------------------------------------------------------------------
# NetworkSpec
# ----------------------------------------------------------------------
def _parse_cluster_network(entries: Iterable[Any]) -> List[ClusterNetworkEntry]:
    out: List[ClusterNetworkEntry] = []
    for entry in entries:
        entry = _mapping(entry, "clusterNetwork[]")
        if "cidr" not in entry:
            raise ValueError("clusterNetwork entry missing 'cidr'")
        out.append(
            ClusterNetworkEntry(
                cidr=str(entry["cidr"]),
                host_prefix=_optional_int(entry.get("hostPrefix"), "hostPrefix") or 0,
            )
        )
    return out


def _parse_kuryr_config(section: Optional[dict]) -> Optional[KuryrConfig]:
    if section is None:
        return None
    values = _rename(_mapping(section, "kuryrConfig"), _KURYR_CONFIG_FIELDS, "kuryrConfig")
    for key in ("daemon_probes_port", "controller_probes_port", "pool_batch_ports", "mtu"):
        if key in values:
            values[key] = _optional_int(values[key], key)
    for key in ("pool_max_ports", "pool_min_ports"):
        if key in values:
            values[key] = _optional_int(values[key], key) or 0
    if "enable_port_pools_prepopulation" in values:
        values["enable_port_pools_prepopulation"] = _flag(
            values["enable_port_pools_prepopulation"], "enablePortPoolsPrepopulation", False
        )
    if "openstack_service_network" in values:
        values["openstack_service_network"] = str(values["openstack_service_network"] or "")
    return KuryrConfig(**values)


def _parse_default_network(section: Any) -> DefaultNetwork:
    section = _mapping(section, "defaultNetwork")
    if not section.get("type"):
        raise ValueError("defaultNetwork missing 'type'")
    return DefaultNetwork(
        type=str(section["type"]),
        kuryr_config=_parse_kuryr_config(section.get("kuryrConfig")),
    )


def _parse_proxy_config(section: Optional[dict]) -> Optional[ProxyConfig]:
    if section is None:
        return None
    section = _mapping(section, "kubeProxyConfig")
    arguments = {}
    for key, values in _mapping(section.get("proxyArguments"), "proxyArguments").items():
        if isinstance(values, (str, int)):
            values = [values]
        arguments[str(key)] = tuple(str(v) for v in _list(values, f"proxyArguments.{key}"))
    return ProxyConfig(
        bind_address=str(section.get("bindAddress") or ""),
        iptables_sync_period=str(section.get("iptablesSyncPeriod") or ""),
        proxy_arguments=arguments,
    )


def _parse_static_ipam(section: Any) -> StaticIPAMConfig:
    section = _mapping(section, "staticIPAMConfig")
    addresses = []
    for entry in _list(section.get("addresses"), "staticIPAMConfig.addresses"):
        entry = _mapping(entry, "staticIPAMConfig.addresses[]")
        addresses.append(
            StaticIPAMAddress(address=str(entry.get("address") or ""), gateway=str(entry.get("gateway") or ""))
        )
    routes = []
    for entry in _list(section.get("routes"), "staticIPAMConfig.routes"):
        entry = _mapping(entry, "staticIPAMConfig.routes[]")
        routes.append(
            StaticIPAMRoute(destination=str(entry.get("destination") or ""), gateway=str(entry.get("gateway") or ""))
        )
    dns = None
    if section.get("dns") is not None:
        dns_section = _mapping(section["dns"], "staticIPAMConfig.dns")
        dns = StaticIPAMDNS(
            nameservers=tuple(str(v) for v in _list(dns_section.get("nameservers"), "dns.nameservers")),
            domain=str(dns_section.get("domain") or ""),
            search=tuple(str(v) for v in _list(dns_section.get("search"), "dns.search")),
        )
    return StaticIPAMConfig(addresses=tuple(addresses), routes=tuple(routes), dns=dns)


def _parse_simple_macvlan(section: Optional[dict]) -> Optional[SimpleMacvlanConfig]:
    if section is None:
        return None
    section = _mapping(section, "simpleMacvlanConfig")
    ipam = None
    if section.get("ipamConfig") is not None:
        ipam_section = _mapping(section["ipamConfig"], "ipamConfig")
        static = ipam_section.get("staticIPAMConfig")
        ipam = IPAMConfig(
            type=str(ipam_section.get("type") or "DHCP"),
            static_ipam_config=None if static is None else _parse_static_ipam(static),
        )
    return SimpleMacvlanConfig(
        master=str(section.get("master") or ""),
        ipam_config=ipam,
        mode=str(section.get("mode") or ""),
        mtu=_optional_int(section.get("mtu"), "simpleMacvlanConfig.mtu") or 0,
    )


def _parse_additional_networks(entries: Iterable[Any]) -> List[AdditionalNetwork]:
    out: List[AdditionalNetwork] = []
    for entry in entries:
        entry = _mapping(entry, "additionalNetworks[]")
        out.append(
            AdditionalNetwork(
                name=str(entry.get("name") or ""),
                namespace=str(entry.get("namespace") or "default"),
                type=str(entry.get("type") or "Raw"),
                raw_cni_config=str(entry.get("rawCNIConfig") or ""),
                simple_macvlan_config=_parse_simple_macvlan(entry.get("simpleMacvlanConfig")),
            )
        )
    return out


def parse_network_spec(data: Any) -> NetworkSpec:
    """Convert a decoded YAML document into a :class:`NetworkSpec`."""

    data = _mapping(data, "network spec")
    if "spec" in data and isinstance(data["spec"], dict):
        data = data["spec"]
    if "defaultNetwork" not in data:
        raise ValueError("network spec missing 'defaultNetwork'")

    return NetworkSpec(
        service_network=tuple(str(c) for c in _list(data.get("serviceNetwork"), "serviceNetwork")),
        cluster_network=tuple(_parse_cluster_network(_list(data.get("clusterNetwork"), "clusterNetwork"))),
        default_network=_parse_default_network(data["defaultNetwork"]),
        kube_proxy_config=_parse_proxy_config(data.get("kubeProxyConfig")),
        deploy_kube_proxy=_optional_bool(data.get("deployKubeProxy"), "deployKubeProxy"),
        disable_multi_network=_optional_bool(data.get("disableMultiNetwork"), "disableMultiNetwork"),
        use_multi_network_policy=_optional_bool(data.get("useMultiNetworkPolicy"), "useMultiNetworkPolicy"),
        additional_networks=tuple(
            _parse_additional_networks(_list(data.get("additionalNetworks"), "additionalNetworks"))
        ),
        log_level=str(data.get("logLevel") or ""),
    )


def load_network_spec(path: Path) -> NetworkSpec:
    return parse_network_spec(yaml.safe_load(Path(path).read_text()))


def _simple_macvlan_to_dict(mc: SimpleMacvlanConfig) -> Dict[str, Any]:
    out: Dict[str, Any] = {"master": mc.master, "mode": mc.mode, "mtu": mc.mtu}
    if mc.ipam_config is not None:
        ipam: Dict[str, Any] = {"type": mc.ipam_config.type}
        static = mc.ipam_config.static_ipam_config
        if static is not None:
            ipam["staticIPAMConfig"] = {
                "addresses": [{"address": a.address, "gateway": a.gateway} for a in static.addresses],
                "routes": [{"destination": r.destination, "gateway": r.gateway} for r in static.routes],
            }
            if static.dns is not None:
                ipam["staticIPAMConfig"]["dns"] = {
                    "nameservers": list(static.dns.nameservers),
                    "domain": static.dns.domain,
                    "search": list(static.dns.search),
                }
        out["ipamConfig"] = ipam
    return out


def _additional_network_to_dict(an: AdditionalNetwork) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": an.name, "namespace": an.namespace, "type": an.type}
    if an.raw_cni_config:
        out["rawCNIConfig"] = an.raw_cni_config
    if an.simple_macvlan_config is not None:
        out["simpleMacvlanConfig"] = _simple_macvlan_to_dict(an.simple_macvlan_config)
    return out


def network_spec_to_dict(spec: NetworkSpec) -> Dict[str, Any]:
    """Inverse of :func:`parse_network_spec`; unset optional fields are omitted."""

    default_network: Dict[str, Any] = {"type": spec.default_network.type}
    kc = spec.default_network.kuryr_config
    if kc is not None:
        reverse = {attr: key for key, attr in _KURYR_CONFIG_FIELDS.items()}
        default_network["kuryrConfig"] = {
            reverse[f.name]: getattr(kc, f.name)
            for f in fields(kc)
            if getattr(kc, f.name) is not None
        }

    out: Dict[str, Any] = {
        "serviceNetwork": list(spec.service_network),
        "clusterNetwork": [
            {"cidr": e.cidr, "hostPrefix": e.host_prefix} if e.host_prefix else {"cidr": e.cidr}
            for e in spec.cluster_network
        ],
        "defaultNetwork": default_network,
    }
    if spec.kube_proxy_config is not None:
        p = spec.kube_proxy_config
        out["kubeProxyConfig"] = {
            "bindAddress": p.bind_address,
            "iptablesSyncPeriod": p.iptables_sync_period,
            "proxyArguments": {k: list(v) for k, v in p.proxy_arguments.items()},
        }
    for key, value in (
        ("deployKubeProxy", spec.deploy_kube_proxy),
        ("disableMultiNetwork", spec.disable_multi_network),
        ("useMultiNetworkPolicy", spec.use_multi_network_policy),
    ):
        if value is not None:
            out[key] = value
    if spec.additional_networks:
        out["additionalNetworks"] = [
            _additional_network_to_dict(an) for an in spec.additional_networks
        ]
    if spec.log_level:
        out["logLevel"] = spec.log_level
    return out


def dump_applied_spec(spec: NetworkSpec, path: Path) -> None:
    Path(path).write_text(yaml.safe_dump(network_spec_to_dict(spec), default_flow_style=False, sort_keys=True))


def dump_objects(objects: Sequence[ObjectSpec], path: Path) -> None:
    """Write ``objects`` as a multi-document YAML stream, in order."""

    Path(path).write_text(
        yaml.safe_dump_all([o.to_dict() for o in objects], default_flow_style=False, sort_keys=False)
    )


# ----------------------------------------------------------------------
# BootstrapFacts
# ----------------------------------------------------------------------
def _topology(value: Any, what: str) -> ControlPlaneTopology:
    try:
        return ControlPlaneTopology(value)
    except ValueError:
        raise ValueError(f"unsupported {what} {value!r}") from None


def _parse_kuryr_facts(section: Any) -> KuryrFacts:
    values = _rename(_mapping(section, "kuryr"), _KURYR_FACT_FIELDS, "kuryr")
    for key in ("worker_nodes_subnets", "pod_security_groups"):
        if key in values:
            values[key] = tuple(str(v) for v in _list(values[key], key))
    if "openstack_cloud" in values:
        values["openstack_cloud"] = dict(_mapping(values["openstack_cloud"], "openStackCloud"))
    if "octavia_multiple_listeners" in values:
        values["octavia_multiple_listeners"] = _optional_bool(
            values["octavia_multiple_listeners"], "octaviaMultipleListeners"
        )
    if "nodes_network_mtu" in values:
        values["nodes_network_mtu"] = _optional_int(values["nodes_network_mtu"], "nodesNetworkMTU") or 0
    for key, value in list(values.items()):
        if key in ("worker_nodes_subnets", "pod_security_groups", "openstack_cloud",
                   "octavia_multiple_listeners", "nodes_network_mtu"):
            continue
        values[key] = "" if value is None else str(value)
    return KuryrFacts(**values)


def _parse_hosted_control_plane(section: Optional[dict]) -> Optional[HostedControlPlane]:
    if section is None:
        return None
    section = _mapping(section, "hostedControlPlane")
    if not section.get("namespace"):
        raise ValueError("hostedControlPlane missing 'namespace'")
    return HostedControlPlane(
        namespace=str(section["namespace"]),
        ca_config_map=str(section.get("caConfigMap", "openshift-service-ca.crt")),
        ca_config_map_key=str(section.get("caConfigMapKey", "service-ca.crt")),
        availability_policy=_topology(
            section.get("availabilityPolicy", ControlPlaneTopology.HIGHLY_AVAILABLE.value),
            "availabilityPolicy",
        ),
        node_selector={str(k): str(v) for k, v in _mapping(section.get("nodeSelector"), "nodeSelector").items()},
        release_image=str(section.get("releaseImage") or ""),
        control_plane_image=str(section.get("controlPlaneImage") or ""),
    )


def _parse_infra(section: Any) -> InfraFacts:
    section = _mapping(section, "infra")
    api_servers = {}
    for name, server in _mapping(section.get("apiServers"), "apiServers").items():
        server = _mapping(server, f"apiServers.{name}")
        if "host" not in server:
            raise ValueError(f"apiServers.{name} missing 'host'")
        api_servers[str(name)] = APIServer(host=str(server["host"]), port=str(server.get("port", "6443")))
    return InfraFacts(
        platform_type=str(section.get("platformType") or ""),
        control_plane_topology=_topology(
            section.get("controlPlaneTopology", ControlPlaneTopology.HIGHLY_AVAILABLE.value),
            "controlPlaneTopology",
        ),
        api_servers=api_servers,
        node_identity_enabled=_flag(section.get("nodeIdentityEnabled"), "nodeIdentityEnabled", False),
        bootstrap_complete=_flag(section.get("bootstrapComplete"), "bootstrapComplete", True),
        hosted_control_plane=_parse_hosted_control_plane(section.get("hostedControlPlane")),
    )


def _parse_node_identity(section: Any) -> NodeIdentityFacts:
    section = _mapping(section, "nodeIdentity")
    ca_bundle = section.get("caBundle")
    return NodeIdentityFacts(
        ca_bundle=None if ca_bundle is None else str(ca_bundle),
        webhook_ready=_flag(section.get("webhookReady"), "webhookReady", False),
    )


def parse_bootstrap_facts(data: Any) -> BootstrapFacts:
    data = _mapping(data, "bootstrap facts")
    return BootstrapFacts(
        kuryr=_parse_kuryr_facts(data.get("kuryr")),
        infra=_parse_infra(data.get("infra")),
        node_identity=_parse_node_identity(data.get("nodeIdentity")),
        applied_release_version=str(data.get("appliedReleaseVersion") or ""),
    )


def load_bootstrap_facts(path: Optional[Path]) -> BootstrapFacts:
    """Load facts from ``path``; a missing path yields empty facts."""

    if path is None:
        return BootstrapFacts()
    return parse_bootstrap_facts(yaml.safe_load(Path(path).read_text()))
