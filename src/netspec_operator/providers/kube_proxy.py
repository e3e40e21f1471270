"""Standalone service-proxy (kube-proxy) provider.

kube-proxy is rendered only for default networks that do not handle services
themselves.  Its configuration is assembled from command-line style arguments
and converted into a KubeProxyConfiguration document.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence

from netspec import kubeproxy, names, objects, subnet
from netspec.config import BootstrapFacts, NetworkSpec, NetworkType, ProxyConfig, RenderSettings
from netspec.errors import NetworkConfigError, RenderContractError, SemanticConfigError

from .base import NetworkProvider, RenderResult

LOG = logging.getLogger(__name__)

# Network types that implement services on their own.
SELF_PROXYING_TYPES = frozenset({NetworkType.KURYR.value})

# Older releases documented these values; they remain accepted verbatim.
LEGACY_METRICS_PORT = "9101"
LEGACY_HEALTHZ_PORT = "10256"

DEFAULT_METRICS_PORT = "9102"
DEFAULT_HEALTHZ_PORT = "10255"

PLUGIN_DEFAULTS: Mapping[str, Sequence[str]] = {
    "metrics-bind-address": ["0.0.0.0"],
    "metrics-port": [DEFAULT_METRICS_PORT],
    "healthz-port": [DEFAULT_HEALTHZ_PORT],
    "proxy-mode": ["iptables"],
}


def accepts_kube_proxy_config(spec: NetworkSpec) -> bool:
    """True if the default network allows proxy options to be set."""

    return spec.default_network.type not in SELF_PROXYING_TYPES


def no_kube_proxy_config(spec: NetworkSpec) -> bool:
    """True if ``spec`` carries no proxy options beyond the filled-in defaults."""

    p = spec.kube_proxy_config
    if p is None:
        return True
    if p.iptables_sync_period or p.proxy_arguments:
        return False
    return p.bind_address in ("", "0.0.0.0", "::")


def default_deploy_kube_proxy(spec: NetworkSpec) -> bool:
    return spec.default_network.type not in SELF_PROXYING_TYPES


def kube_proxy_configuration(
    plugin_defaults: Optional[Mapping[str, Sequence[str]]],
    spec: NetworkSpec,
    plugin_overrides: Optional[Mapping[str, Sequence[str]]],
) -> str:
    """Build the KubeProxyConfiguration text for ``spec``.

    Precedence, lowest first: ``plugin_defaults``, the user's proxy
    arguments, ``plugin_overrides``.
    """

    p = spec.kube_proxy_config or ProxyConfig()
    args: Dict[str, List[str]] = {
        "bind-address": [p.bind_address],
        "iptables-sync-period": [p.iptables_sync_period],
    }
    if len(spec.cluster_network) == 1:
        args["cluster-cidr"] = [spec.cluster_network[0].cidr]

    args = kubeproxy.merge_proxy_arguments(args, plugin_defaults)
    args = kubeproxy.merge_proxy_arguments(args, p.proxy_arguments)
    args = kubeproxy.merge_proxy_arguments(args, plugin_overrides)
    return kubeproxy.generate_kube_proxy_configuration(args)


class KubeProxyProvider(NetworkProvider):
    """Always-present component that deploys kube-proxy when requested."""

    name = "kube-proxy"

    def fill_defaults(self, spec: NetworkSpec) -> NetworkSpec:
        deploy = spec.deploy_kube_proxy
        if deploy is None:
            deploy = default_deploy_kube_proxy(spec)
            spec = replace(spec, deploy_kube_proxy=deploy)
        if not deploy:
            return spec

        p = spec.kube_proxy_config or ProxyConfig()
        if not p.bind_address and spec.cluster_network:
            try:
                family = subnet.parse_cidr(spec.cluster_network[0].cidr).version
            except ValueError:
                LOG.debug("not defaulting kube-proxy bind address from %r", spec.cluster_network[0].cidr)
            else:
                p = replace(p, bind_address="0.0.0.0" if family == 4 else "::")
        return replace(spec, kube_proxy_config=p)

    def validate(self, spec: NetworkSpec) -> List[NetworkConfigError]:
        p = spec.kube_proxy_config
        if p is None:
            return []
        if not accepts_kube_proxy_config(spec):
            if no_kube_proxy_config(spec):
                return []
            return [
                SemanticConfigError(
                    f"network type {spec.default_network.type!r} does not allow specifying kube-proxy options"
                )
            ]

        errors: List[NetworkConfigError] = []
        if p.iptables_sync_period:
            try:
                kubeproxy.parse_duration(p.iptables_sync_period)
            except ValueError as exc:
                errors.append(SemanticConfigError(f"IptablesSyncPeriod is not a valid duration ({exc})"))

        if p.bind_address:
            try:
                ipaddress.ip_address(p.bind_address)
            except ValueError:
                errors.append(SemanticConfigError("BindAddress must be a valid IP address"))

        for arg, legacy in (("metrics-port", LEGACY_METRICS_PORT), ("healthz-port", LEGACY_HEALTHZ_PORT)):
            if arg in p.proxy_arguments:
                values = list(p.proxy_arguments[arg])
                if values != [legacy]:
                    errors.append(SemanticConfigError(f"kube-proxy --{arg} cannot be overridden"))

        if not errors and spec.deploy_kube_proxy:
            try:
                kube_proxy_configuration(PLUGIN_DEFAULTS, spec, None)
            except kubeproxy.ProxyArgumentError as exc:
                errors.extend(SemanticConfigError(f"invalid kube-proxy arguments: {e}") for e in exc.errors)
        return errors

    def render(self, spec: NetworkSpec, facts: BootstrapFacts, settings: RenderSettings) -> RenderResult:
        if spec.deploy_kube_proxy is None:
            raise RenderContractError("deployKubeProxy reached render without a default")
        if not spec.deploy_kube_proxy:
            return RenderResult()

        p = spec.kube_proxy_config or ProxyConfig()
        metrics_port = _first(p.proxy_arguments.get("metrics-port"), DEFAULT_METRICS_PORT)
        healthz_port = _first(p.proxy_arguments.get("healthz-port"), DEFAULT_HEALTHZ_PORT)
        try:
            kpc = kube_proxy_configuration(PLUGIN_DEFAULTS, spec, None)
        except kubeproxy.ProxyArgumentError as exc:
            raise RenderContractError(f"failed to generate kube-proxy configuration file: {exc}") from exc

        data = {
            "release_version": settings.release_version,
            "kube_proxy_image": settings.image("kube_proxy_image"),
            "kubernetes_service_host": settings.kubernetes_service_host,
            "kubernetes_service_port": settings.kubernetes_service_port,
            "kube_proxy_config": kpc,
            "metrics_port": metrics_port,
            "healthz_port": healthz_port,
        }

        ns = names.KUBE_PROXY_NAMESPACE
        ctr = objects.container(
            "kube-proxy",
            data["kube_proxy_image"],
            command=["openshift-kube-proxy", "--config=/config/kube-proxy-config.yaml", "--hostname-override=$(NODE_NAME)"],
            env={
                "KUBERNETES_SERVICE_HOST": data["kubernetes_service_host"],
                "KUBERNETES_SERVICE_PORT": data["kubernetes_service_port"],
            },
            ports=[int(metrics_port), int(healthz_port)],
            volume_mounts=[("config", "/config")],
        )
        objs = [
            objects.namespace(ns, {"openshift.io/run-level": "0"}),
            objects.service_account("openshift-kube-proxy", ns),
            objects.cluster_role_binding(
                "openshift-kube-proxy", "system:node-proxier", "openshift-kube-proxy", ns
            ),
            objects.config_map("proxy-config", ns, {"kube-proxy-config.yaml": kpc}),
            objects.daemon_set(
                "openshift-kube-proxy",
                ns,
                [ctr],
                "openshift-kube-proxy",
                volumes=[objects.config_map_volume("config", "proxy-config")],
            ),
            objects.service(
                "openshift-kube-proxy",
                ns,
                {"app": "openshift-kube-proxy"},
                [{"name": "metrics", "port": int(metrics_port), "targetPort": int(metrics_port)}],
            ),
        ]
        return RenderResult(objects=objs, data=data)


def _first(values: Optional[Sequence[str]], default: str) -> str:
    return values[-1] if values else default
