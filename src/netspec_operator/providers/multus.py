"""Multi-network attachment daemon (Multus) provider.

Multus chains the default network with any number of additional networks
described by NetworkAttachmentDefinitions.  It also runs an admission
controller that validates those definitions and, optionally, the
MultiNetworkPolicy controller.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Set, Tuple

from netspec import names, objects, subnet
from netspec.config import (
    AdditionalNetwork,
    BootstrapFacts,
    ControlPlaneTopology,
    InfraFacts,
    IPAMConfig,
    NetworkSpec,
    RenderSettings,
    SimpleMacvlanConfig,
    StaticIPAMConfig,
)
from netspec.errors import (
    NetworkConfigError,
    RenderContractError,
    SemanticConfigError,
    StructuralConfigError,
    UnsafeChangeError,
)
from netspec.objects import ObjectSpec

from .base import NetworkProvider, RenderResult

LOG = logging.getLogger(__name__)

NAD_GROUP = "k8s.cni.cncf.io"
NAD_API_VERSION = f"{NAD_GROUP}/v1"
MACVLAN_MODES = ("Bridge", "Private", "VEPA", "Passthru")
IPAM_DHCP = "DHCP"
IPAM_STATIC = "Static"

ADMISSION_CONTROLLER = "multus-admission-controller"
NETWORK_POLICY_CONTROLLER = "multus-networkpolicy"


def admission_controller_replicas(infra: InfraFacts) -> int:
    """Replica count of the admission controller for the detected topology."""

    if infra.control_plane_topology == ControlPlaneTopology.EXTERNAL:
        hcp = infra.hosted_control_plane
        if hcp is not None and hcp.availability_policy == ControlPlaneTopology.SINGLE_REPLICA:
            return 1
        return 2
    if infra.control_plane_topology == ControlPlaneTopology.SINGLE_REPLICA:
        return 1
    return 2


def validate_additional_network(an: AdditionalNetwork) -> List[NetworkConfigError]:
    if an.type == "Raw":
        return _validate_raw(an)
    if an.type == "SimpleMacvlan":
        return _validate_simple_macvlan(an)
    return [SemanticConfigError(f"unknown or unsupported NetworkType: {an.type}")]


def _validate_raw(an: AdditionalNetwork) -> List[NetworkConfigError]:
    errors: List[NetworkConfigError] = []
    if not an.name:
        errors.append(StructuralConfigError("Additional Network Name cannot be nil"))
    try:
        raw = json.loads(an.raw_cni_config)
    except ValueError:
        raw = None
    if not isinstance(raw, dict):
        errors.append(
            SemanticConfigError(f"Failed to Unmarshal RawCNIConfig of additional network {an.name!r}")
        )
    return errors


def _validate_simple_macvlan(an: AdditionalNetwork) -> List[NetworkConfigError]:
    errors: List[NetworkConfigError] = []
    if not an.name:
        errors.append(StructuralConfigError("Additional Network Name cannot be nil"))

    mc = an.simple_macvlan_config
    if mc is None:
        return errors
    if mc.ipam_config is not None:
        errors.extend(_validate_ipam(mc.ipam_config))
    if mc.mode and mc.mode not in MACVLAN_MODES:
        errors.append(SemanticConfigError(f"invalid Macvlan mode: {mc.mode}"))
    return errors


def _validate_ipam(ipam: IPAMConfig) -> List[NetworkConfigError]:
    if ipam.type == IPAM_DHCP:
        return []
    if ipam.type != IPAM_STATIC:
        return [SemanticConfigError(f"invalid IPAM type: {ipam.type}")]

    static = ipam.static_ipam_config or StaticIPAMConfig()
    errors: List[NetworkConfigError] = []
    for addr in static.addresses:
        if not _is_cidr(addr.address):
            errors.append(SemanticConfigError(f"invalid static address: {addr.address!r}"))
        if addr.gateway and not _is_ip(addr.gateway):
            errors.append(SemanticConfigError(f"invalid gateway: {addr.gateway}"))
    for route in static.routes:
        if not _is_cidr(route.destination):
            errors.append(SemanticConfigError(f"invalid route destination: {route.destination!r}"))
        if route.gateway and not _is_ip(route.gateway):
            errors.append(SemanticConfigError(f"invalid gateway: {route.gateway}"))
    return errors


def _is_cidr(value: str) -> bool:
    try:
        subnet.parse_cidr(value)
    except ValueError:
        return False
    return True


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def ipam_config(ipam: Optional[IPAMConfig]) -> Dict[str, Any]:
    """CNI ``ipam`` section for a SimpleMacvlan network; DHCP when unset."""

    if ipam is None or ipam.type == IPAM_DHCP:
        return {"type": "dhcp"}
    if ipam.type != IPAM_STATIC:
        raise RenderContractError(f"failed to render IPAM config of type {ipam.type!r}")

    static = ipam.static_ipam_config or StaticIPAMConfig()
    out: Dict[str, Any] = {"type": "static", "routes": []}
    addresses = []
    for addr in static.addresses:
        entry = {"address": addr.address}
        if addr.gateway:
            entry["gateway"] = addr.gateway
        addresses.append(entry)
    if addresses:
        out["addresses"] = addresses
    for route in static.routes:
        try:
            dst = subnet.parse_cidr(route.destination)
        except ValueError as exc:
            raise RenderContractError(f"failed to parse macvlan route: {exc}") from exc
        entry = {"dst": str(dst)}
        if route.gateway:
            entry["gw"] = route.gateway
        out["routes"].append(entry)

    dns: Dict[str, Any] = {}
    if static.dns is not None:
        if static.dns.nameservers:
            dns["nameservers"] = list(static.dns.nameservers)
        if static.dns.domain:
            dns["domain"] = static.dns.domain
        if static.dns.search:
            dns["search"] = list(static.dns.search)
    out["dns"] = dns
    return out


def simple_macvlan_cni_config(an: AdditionalNetwork) -> str:
    """Generate the CNI configuration of a SimpleMacvlan network."""

    mc = an.simple_macvlan_config or SimpleMacvlanConfig()
    config: Dict[str, Any] = {"cniVersion": "0.3.1", "name": an.name, "type": "macvlan"}
    if mc.master:
        config["master"] = mc.master
    if mc.mode:
        config["mode"] = mc.mode.lower()
    if mc.mtu:
        config["mtu"] = mc.mtu
    config["ipam"] = ipam_config(mc.ipam_config)
    return json.dumps(config, sort_keys=True)


class MultusProvider(NetworkProvider):
    """Always-present component rendering Multus unless multi-network is disabled."""

    name = "multus"

    def fill_defaults(self, spec: NetworkSpec) -> NetworkSpec:
        if spec.disable_multi_network is None:
            spec = replace(spec, disable_multi_network=False)
        if spec.use_multi_network_policy is None:
            spec = replace(spec, use_multi_network_policy=False)
        return spec

    def validate(self, spec: NetworkSpec) -> List[NetworkConfigError]:
        if spec.disable_multi_network and spec.additional_networks:
            return [
                StructuralConfigError("additional networks cannot be specified without deploying Multus")
            ]

        errors: List[NetworkConfigError] = []
        seen: Set[Tuple[str, str]] = set()
        for an in spec.additional_networks:
            errors.extend(validate_additional_network(an))
            key = (an.namespace, an.name)
            if an.name and key in seen:
                errors.append(
                    SemanticConfigError(
                        f"additional network {an.name!r} is defined more than once in namespace {an.namespace!r}"
                    )
                )
            seen.add(key)
        return errors

    def _unsafe_changes(self, previous: NetworkSpec, proposed: NetworkSpec) -> List[NetworkConfigError]:
        if bool(previous.disable_multi_network) != bool(proposed.disable_multi_network):
            return [UnsafeChangeError("cannot change DisableMultiNetwork")]
        return []

    def render(self, spec: NetworkSpec, facts: BootstrapFacts, settings: RenderSettings) -> RenderResult:
        if spec.disable_multi_network is None or spec.use_multi_network_policy is None:
            raise RenderContractError("multus settings reached render without defaults")
        if spec.disable_multi_network:
            LOG.debug("Multus is disabled; rendering nothing")
            return RenderResult()

        replicas = admission_controller_replicas(facts.infra)
        data: Dict[str, Any] = {
            "release_version": settings.release_version,
            "multus_image": settings.image("multus_image"),
            "cni_plugins_supported_image": settings.image("cni_plugins_supported_image"),
            "cni_plugins_unsupported_image": settings.image("cni_plugins_unsupported_image"),
            "admission_controller_image": settings.image("multus_admission_controller_image"),
            "kube_rbac_proxy_image": settings.image("kube_rbac_proxy_image"),
            "network_policy_image": settings.image("multus_networkpolicy_image"),
            "replicas": replicas,
            "external_control_plane": facts.infra.control_plane_topology == ControlPlaneTopology.EXTERNAL,
            "use_multi_network_policy": spec.use_multi_network_policy,
            "cni_conf_dir": settings.cni_conf_dir,
            "cni_bin_dir": settings.cni_bin_dir,
            "kubernetes_service_host": settings.kubernetes_service_host,
            "kubernetes_service_port": settings.kubernetes_service_port,
        }

        ns = names.MULTUS_NAMESPACE
        objs: List[ObjectSpec] = [
            objects.namespace(ns, {"openshift.io/run-level": "0"}),
            objects.custom_resource_definition(NAD_GROUP, "NetworkAttachmentDefinition", "network-attachment-definitions"),
            objects.service_account("multus", ns),
            objects.cluster_role(
                "multus",
                [
                    {"apiGroups": [NAD_GROUP], "resources": ["*"], "verbs": ["*"]},
                    {"apiGroups": [""], "resources": ["pods", "pods/status"], "verbs": ["get", "update"]},
                ],
            ),
            objects.cluster_role_binding("multus", "multus", "multus", ns),
            objects.config_map("multus-daemon-config", ns, {"daemon-config.json": _daemon_config(data)}),
            _multus_daemon(data),
            _additional_cni_plugins(data),
        ]
        objs.extend(_admission_controller(data))
        if spec.use_multi_network_policy:
            objs.extend(_network_policy(data))
        objs.extend(_attachment_definition(an) for an in spec.additional_networks)

        LOG.debug("Rendered %d multus objects", len(objs))
        return RenderResult(objects=objs, data=data)


def _daemon_config(data: Dict[str, Any]) -> str:
    config = {
        "cniVersion": "0.3.1",
        "chrootDir": "/hostroot",
        "logToStderr": True,
        "logLevel": "verbose",
        "binDir": data["cni_bin_dir"],
        "cniConfigDir": "/host/etc/cni/net.d",
        "multusConfigFile": "auto",
        "multusAutoconfigDir": "/host/run/multus/cni/net.d",
        "namespaceIsolation": True,
        "globalNamespaces": "default,openshift-multus,openshift-sriov-network-operator",
        "readinessindicatorfile": "",
        "daemonSocketDir": "/run/multus/socket",
        "socketDir": "/host/run/multus/socket",
    }
    return json.dumps(config, indent=2, sort_keys=True)


def _multus_daemon(data: Dict[str, Any]) -> ObjectSpec:
    ctr = objects.container(
        "kube-multus",
        data["multus_image"],
        command=["/usr/src/multus-cni/bin/multus-daemon"],
        env={
            "KUBERNETES_SERVICE_HOST": data["kubernetes_service_host"],
            "KUBERNETES_SERVICE_PORT": data["kubernetes_service_port"],
        },
        volume_mounts=[
            ("system-cni-dir", "/host/etc/cni/net.d"),
            ("cnibin", "/host/opt/cni/bin"),
            ("multus-daemon-config", "/etc/cni/net.d/multus.d"),
        ],
    )
    return objects.daemon_set(
        "multus",
        names.MULTUS_NAMESPACE,
        [ctr],
        "multus",
        volumes=[
            objects.host_path_volume("system-cni-dir", data["cni_conf_dir"]),
            objects.host_path_volume("cnibin", data["cni_bin_dir"]),
            objects.config_map_volume("multus-daemon-config", "multus-daemon-config"),
        ],
    )


def _additional_cni_plugins(data: Dict[str, Any]) -> ObjectSpec:
    containers = [
        objects.container(
            "cni-plugins",
            data["cni_plugins_supported_image"],
            command=["/entrypoint/cnibincopy.sh"],
            volume_mounts=[("cnibin", "/host/opt/cni/bin")],
        ),
        objects.container(
            "cni-plugins-unsupported",
            data["cni_plugins_unsupported_image"],
            command=["/entrypoint/cnibincopy.sh"],
            volume_mounts=[("cnibin", "/host/opt/cni/bin")],
        ),
    ]
    return objects.daemon_set(
        "multus-additional-cni-plugins",
        names.MULTUS_NAMESPACE,
        containers,
        "multus",
        volumes=[objects.host_path_volume("cnibin", data["cni_bin_dir"])],
    )


def _admission_controller(data: Dict[str, Any]) -> List[ObjectSpec]:
    ns = names.MULTUS_NAMESPACE
    ctr = objects.container(
        ADMISSION_CONTROLLER,
        data["admission_controller_image"],
        command=[
            "/usr/bin/webhook",
            "-bind-address=0.0.0.0",
            "-port=6443",
            "-tls-cert-file=/etc/webhook/tls.crt",
            "-tls-private-key-file=/etc/webhook/tls.key",
        ],
        ports=[6443],
        volume_mounts=[("webhook-certs", "/etc/webhook")],
    )
    deployment = objects.deployment(
        ADMISSION_CONTROLLER,
        ns,
        [ctr],
        "multus-ac",
        replicas=data["replicas"],
        volumes=[objects.secret_volume("webhook-certs", "multus-admission-controller-secret")],
        node_selector=None if data["external_control_plane"] else {"node-role.kubernetes.io/master": ""},
    )
    svc = objects.service(ADMISSION_CONTROLLER, ns, {"app": ADMISSION_CONTROLLER}, [{"name": "webhook", "port": 443, "targetPort": 6443}])
    svc = svc.with_annotations({"service.beta.openshift.io/serving-cert-secret-name": "multus-admission-controller-secret"})
    webhook = objects.webhook_configuration(
        "ValidatingWebhookConfiguration",
        names.MULTUS_VALIDATING_WEBHOOK,
        ns,
        service_name=ADMISSION_CONTROLLER,
        path="/validate",
        ca_bundle="",
        rules=[
            {
                "apiGroups": [NAD_GROUP],
                "apiVersions": ["v1"],
                "operations": ["CREATE", "UPDATE"],
                "resources": ["network-attachment-definitions"],
            }
        ],
    ).with_annotations({"service.beta.openshift.io/inject-cabundle": "true"})
    return [objects.service_account("multus-ac", ns), deployment, svc, webhook]


def _network_policy(data: Dict[str, Any]) -> List[ObjectSpec]:
    ns = names.MULTUS_NAMESPACE
    ctr = objects.container(
        NETWORK_POLICY_CONTROLLER,
        data["network_policy_image"],
        command=["/usr/bin/multi-networkpolicy-iptables", "--host-prefix=/host"],
    )
    return [
        objects.custom_resource_definition(
            "k8s.cni.cncf.io", "MultiNetworkPolicy", "multi-networkpolicies", version="v1beta1"
        ),
        objects.deployment(NETWORK_POLICY_CONTROLLER, ns, [ctr], "multus", replicas=1),
    ]


def _attachment_definition(an: AdditionalNetwork) -> ObjectSpec:
    if an.type == "SimpleMacvlan":
        config = simple_macvlan_cni_config(an)
    else:
        config = an.raw_cni_config
    return ObjectSpec(
        NAD_API_VERSION,
        "NetworkAttachmentDefinition",
        an.name,
        an.namespace,
        body={"spec": {"config": config}},
    )
