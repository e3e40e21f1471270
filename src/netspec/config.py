"""Data structures describing the desired cluster network and discovered facts.

Everything here is an immutable value.  Defaulting produces new instances via
:func:`dataclasses.replace` so a previously-accepted spec can never be altered
by work done on the proposed one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Sequence, Tuple


class NetworkType(str, Enum):
    """Default network providers understood by the operator."""

    # OpenStack-integrated SDN backed by Neutron and Octavia.
    KURYR = "Kuryr"
    # Default CNI installed and managed outside the operator.
    EXTERNAL = "External"


class ControlPlaneTopology(str, Enum):
    HIGHLY_AVAILABLE = "HighlyAvailable"
    SINGLE_REPLICA = "SingleReplica"
    EXTERNAL = "External"


@dataclass(frozen=True)
class ClusterNetworkEntry:
    """A pod network CIDR and the per-node subnet size carved out of it."""

    cidr: str
    host_prefix: int = 0


@dataclass(frozen=True)
class ProxyConfig:
    """Service proxy settings.

    Attributes
    ----------
    bind_address:
        Address the proxy binds to; defaulted from the cluster network family.
    iptables_sync_period:
        Go-style duration string such as ``30s`` or ``1m30s``.
    proxy_arguments:
        Raw command-line style overrides, ``name -> [values]``.  Only the last
        value of each list is used.
    """

    bind_address: str = ""
    iptables_sync_period: str = ""
    proxy_arguments: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class KuryrConfig:
    """Settings for the OpenStack-integrated SDN.

    ``None``, ``0`` and ``""`` all mean "unset" and are eligible for defaults.
    """

    daemon_probes_port: Optional[int] = None
    controller_probes_port: Optional[int] = None
    openstack_service_network: str = ""
    enable_port_pools_prepopulation: bool = False
    pool_max_ports: int = 0
    pool_min_ports: int = 0
    pool_batch_ports: Optional[int] = None
    mtu: Optional[int] = None


@dataclass(frozen=True)
class StaticIPAMAddress:
    address: str
    gateway: str = ""


@dataclass(frozen=True)
class StaticIPAMRoute:
    destination: str
    gateway: str = ""


@dataclass(frozen=True)
class StaticIPAMDNS:
    nameservers: Sequence[str] = ()
    domain: str = ""
    search: Sequence[str] = ()


@dataclass(frozen=True)
class StaticIPAMConfig:
    addresses: Sequence[StaticIPAMAddress] = ()
    routes: Sequence[StaticIPAMRoute] = ()
    dns: Optional[StaticIPAMDNS] = None


@dataclass(frozen=True)
class IPAMConfig:
    """Address management for a SimpleMacvlan network: ``DHCP`` or ``Static``."""

    type: str = "DHCP"
    static_ipam_config: Optional[StaticIPAMConfig] = None


@dataclass(frozen=True)
class SimpleMacvlanConfig:
    master: str = ""
    ipam_config: Optional[IPAMConfig] = None
    mode: str = ""
    mtu: int = 0


@dataclass(frozen=True)
class AdditionalNetwork:
    """A secondary network attached to pods through the multi-network daemon.

    ``Raw`` networks carry their CNI configuration verbatim in
    ``raw_cni_config``; ``SimpleMacvlan`` networks have it generated from
    ``simple_macvlan_config``.
    """

    name: str
    namespace: str = "default"
    type: str = "Raw"
    raw_cni_config: str = ""
    simple_macvlan_config: Optional[SimpleMacvlanConfig] = None


@dataclass(frozen=True)
class DefaultNetwork:
    type: str
    kuryr_config: Optional[KuryrConfig] = None


@dataclass(frozen=True)
class NetworkSpec:
    """Desired cluster-wide network state for one reconcile pass."""

    service_network: Sequence[str]
    cluster_network: Sequence[ClusterNetworkEntry]
    default_network: DefaultNetwork
    kube_proxy_config: Optional[ProxyConfig] = None
    deploy_kube_proxy: Optional[bool] = None
    disable_multi_network: Optional[bool] = None
    use_multi_network_policy: Optional[bool] = None
    additional_networks: Sequence[AdditionalNetwork] = ()
    log_level: str = ""


# ----------------------------------------------------------------------
# Bootstrap facts: discovered before Render and fixed for the whole pass
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class KuryrFacts:
    """OpenStack resources discovered or created while bootstrapping Kuryr."""

    service_subnet: str = ""
    pod_subnetpool: str = ""
    worker_nodes_router: str = ""
    worker_nodes_subnets: Sequence[str] = ()
    pod_security_groups: Sequence[str] = ()
    external_network: str = ""
    cluster_id: str = ""
    octavia_provider: str = ""
    octavia_version: str = ""
    octavia_multiple_listeners: Optional[bool] = None
    openstack_cloud: Mapping[str, object] = field(default_factory=dict)
    user_ca_cert: str = ""
    webhook_ca: str = ""
    webhook_cert: str = ""
    webhook_key: str = ""
    nodes_network_mtu: int = 0
    https_proxy: str = ""
    http_proxy: str = ""
    no_proxy: str = ""


@dataclass(frozen=True)
class APIServer:
    host: str
    port: str = "6443"

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"https://{host}:{self.port}"


@dataclass(frozen=True)
class HostedControlPlane:
    """Describes a control plane hosted in a separate management cluster."""

    namespace: str
    ca_config_map: str = "openshift-service-ca.crt"
    ca_config_map_key: str = "service-ca.crt"
    availability_policy: ControlPlaneTopology = ControlPlaneTopology.HIGHLY_AVAILABLE
    node_selector: Mapping[str, str] = field(default_factory=dict)
    release_image: str = ""
    control_plane_image: str = ""


@dataclass(frozen=True)
class InfraFacts:
    platform_type: str = ""
    control_plane_topology: ControlPlaneTopology = ControlPlaneTopology.HIGHLY_AVAILABLE
    api_servers: Mapping[str, APIServer] = field(default_factory=dict)
    node_identity_enabled: bool = False
    bootstrap_complete: bool = True
    hosted_control_plane: Optional[HostedControlPlane] = None


@dataclass(frozen=True)
class NodeIdentityFacts:
    """State of the node-identity webhook observed before rendering."""

    ca_bundle: Optional[str] = None
    webhook_ready: bool = False


@dataclass(frozen=True)
class BootstrapFacts:
    kuryr: KuryrFacts = field(default_factory=KuryrFacts)
    infra: InfraFacts = field(default_factory=InfraFacts)
    node_identity: NodeIdentityFacts = field(default_factory=NodeIdentityFacts)
    applied_release_version: str = ""


@dataclass(frozen=True)
class RenderSettings:
    """Release-wide values that Render would otherwise read from the environment."""

    release_version: str = ""
    images: Mapping[str, str] = field(default_factory=dict)
    kubernetes_service_host: str = ""
    kubernetes_service_port: str = ""
    cni_conf_dir: str = "/etc/kubernetes/cni/net.d"
    cni_bin_dir: str = "/var/lib/cni/bin"

    def image(self, key: str) -> str:
        return self.images.get(key, "")

