"""Node-identity admission provider.

A validating webhook restricts what each node's credentials may change on
node and pod objects.  On self-hosted clusters it runs as a DaemonSet on
the control-plane nodes and listens on loopback; with a hosted control plane
it runs as a Deployment in the management cluster.
"""

from __future__ import annotations

import base64
import copy
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from netspec import names, objects, subnet, versions
from netspec.config import APIServer, BootstrapFacts, ControlPlaneTopology, NetworkSpec, RenderSettings
from netspec.errors import NetworkConfigError, RenderContractError
from netspec.objects import ObjectSpec

from .base import NetworkProvider, RenderResult

LOG = logging.getLogger(__name__)

API_SERVER_DEFAULT = "default"
API_SERVER_DEFAULT_LOCAL = "default-local"

NODE_IDENTITY = "network-node-identity"
HOSTED_HA_REPLICAS = 3
TERMINATION_GRACE_SECONDS = 200

# Releases up to this one shipped without the webhook.
LAST_RELEASE_WITHOUT_WEBHOOK = (4, 13)

WEBHOOK_RULES = (
    {
        "apiGroups": [""],
        "apiVersions": ["v1"],
        "operations": ["UPDATE"],
        "resources": ["nodes/status"],
        "scope": "*",
    },
    {
        "apiGroups": [""],
        "apiVersions": ["v1"],
        "operations": ["UPDATE"],
        "resources": ["pods/status"],
        "scope": "*",
    },
)


def webhook_address(spec: NetworkSpec) -> str:
    """Loopback ``host:port`` of the webhook for the primary service network family."""

    if not spec.service_network:
        raise RenderContractError("serviceNetwork is empty")
    try:
        ipv6 = subnet.is_ipv6_cidr(spec.service_network[0])
    except ValueError as exc:
        raise RenderContractError(f"cannot parse serviceNetwork[0]: {exc}") from exc
    if ipv6:
        return f"[::1]:{names.NODE_IDENTITY_WEBHOOK_PORT}"
    return f"127.0.0.1:{names.NODE_IDENTITY_WEBHOOK_PORT}"


class NodeIdentityProvider(NetworkProvider):
    """Always-present component gated by the ``node_identity_enabled`` fact."""

    name = "node-identity"

    def fill_defaults(self, spec: NetworkSpec) -> NetworkSpec:
        return spec

    def validate(self, spec: NetworkSpec) -> List[NetworkConfigError]:
        return []

    def render(self, spec: NetworkSpec, facts: BootstrapFacts, settings: RenderSettings) -> RenderResult:
        infra = facts.infra
        if not infra.node_identity_enabled:
            LOG.info("Network node identity is disabled")
            return RenderResult()

        ca_bundle = facts.node_identity.ca_bundle or ""
        data: Dict[str, Any] = {
            "release_version": settings.release_version,
            "port": names.NODE_IDENTITY_WEBHOOK_PORT,
            "ca_bundle": base64.urlsafe_b64encode(ca_bundle.encode("utf-8")).decode("ascii"),
        }

        hcp = infra.hosted_control_plane
        if hcp is not None:
            api = infra.api_servers.get(API_SERVER_DEFAULT_LOCAL) or _fallback_api(settings)
            data.update(
                {
                    "namespace": hcp.namespace,
                    "replicas": HOSTED_HA_REPLICAS
                    if hcp.availability_policy == ControlPlaneTopology.HIGHLY_AVAILABLE
                    else 1,
                    "image": hcp.control_plane_image,
                    "release_image": hcp.release_image,
                    "ca_config_map": hcp.ca_config_map,
                    "ca_config_map_key": hcp.ca_config_map_key,
                    "node_selector": dict(hcp.node_selector),
                    "management_cluster_name": names.MANAGEMENT_CLUSTER_NAME,
                    "apiserver": api.url,
                }
            )
            workload = _hosted_deployment(data)
            webhook_url: Optional[str] = None
        else:
            api = infra.api_servers.get(API_SERVER_DEFAULT) or _fallback_api(settings)
            address = webhook_address(spec)
            data.update(
                {
                    "namespace": names.NODE_IDENTITY_NAMESPACE,
                    "image": settings.image("ovn_image"),
                    "address": address,
                    "termination_grace_seconds": TERMINATION_GRACE_SECONDS,
                    "apiserver": api.url,
                }
            )
            workload = _self_hosted_daemon_set(data)
            webhook_url = f"https://{address}/node"

        objs: List[ObjectSpec] = [
            objects.namespace(names.NODE_IDENTITY_NAMESPACE, {"openshift.io/run-level": "0"}),
            objects.service_account(NODE_IDENTITY, data["namespace"]),
            objects.cluster_role(
                NODE_IDENTITY,
                [
                    {"apiGroups": [""], "resources": ["nodes", "pods"], "verbs": ["get", "list", "watch"]},
                    {"apiGroups": ["certificates.k8s.io"], "resources": ["certificatesigningrequests"],
                     "verbs": ["get", "list", "watch"]},
                ],
            ),
            objects.cluster_role_binding(NODE_IDENTITY, NODE_IDENTITY, NODE_IDENTITY, data["namespace"]),
            workload,
        ]
        if hcp is not None:
            objs.append(
                objects.service(NODE_IDENTITY, hcp.namespace, {"app": NODE_IDENTITY},
                                [{"port": 443, "targetPort": int(names.NODE_IDENTITY_WEBHOOK_PORT)}])
            )

        webhook = objects.webhook_configuration(
            "ValidatingWebhookConfiguration",
            names.NODE_IDENTITY_WEBHOOK,
            data["namespace"],
            service_name=NODE_IDENTITY,
            path="/node",
            ca_bundle=data["ca_bundle"],
            rules=WEBHOOK_RULES,
            url=webhook_url,
        )
        if not self._apply_webhook(facts, ca_bundle):
            LOG.info("network-node-identity webhook will not be applied, if it already exists it won't be removed")
            webhook = webhook.with_annotations({names.CREATE_WAIT_ANNOTATION: "true"})
        objs.append(webhook)

        return RenderResult(objects=objs, data=data)

    @staticmethod
    def _apply_webhook(facts: BootstrapFacts, ca_bundle: str) -> bool:
        apply = True
        if not facts.infra.bootstrap_complete:
            LOG.info("network-node-identity webhook will not be applied, bootstrap is not complete")
            apply = False
        if not ca_bundle:
            LOG.warning("network-node-identity webhook will not be applied, CA bundle not found")
            apply = False
        if not facts.node_identity.webhook_ready:
            if facts.applied_release_version and versions.at_most(
                facts.applied_release_version, *LAST_RELEASE_WITHOUT_WEBHOOK
            ):
                LOG.info(
                    "network-node-identity webhook will not be applied, upgrading from %s which did not run it",
                    facts.applied_release_version,
                )
            else:
                LOG.warning("network-node-identity webhook will not be applied, the deployment/daemonset is not ready")
            apply = False
        return apply


def _fallback_api(settings: RenderSettings) -> APIServer:
    return APIServer(settings.kubernetes_service_host, settings.kubernetes_service_port or "6443")


def _self_hosted_daemon_set(data: Dict[str, Any]) -> ObjectSpec:
    ctr = objects.container(
        "webhook",
        data["image"],
        command=[
            "ovnkube-identity",
            f"--k8s-apiserver={data['apiserver']}",
            f"--webhook-host={data['address'].rsplit(':', 1)[0].strip('[]')}",
            f"--webhook-port={data['port']}",
            "--webhook-cert-dir=/etc/webhook-cert",
        ],
        volume_mounts=[("webhook-cert", "/etc/webhook-cert")],
    )
    ds = objects.daemon_set(
        NODE_IDENTITY,
        data["namespace"],
        [ctr],
        NODE_IDENTITY,
        volumes=[objects.secret_volume("webhook-cert", "network-node-identity-cert")],
        node_selector={"node-role.kubernetes.io/master": ""},
    )
    body = copy.deepcopy(dict(ds.body))
    body["spec"]["template"]["spec"]["terminationGracePeriodSeconds"] = data["termination_grace_seconds"]
    return replace(ds, body=body)


def _hosted_deployment(data: Dict[str, Any]) -> ObjectSpec:
    ctr = objects.container(
        "webhook",
        data["image"],
        command=[
            "ovnkube-identity",
            f"--k8s-apiserver={data['apiserver']}",
            "--webhook-host=0.0.0.0",
            f"--webhook-port={data['port']}",
            "--webhook-cert-dir=/etc/webhook-cert",
        ],
        ports=[int(data["port"])],
        volume_mounts=[("webhook-cert", "/etc/webhook-cert"), ("hosted-ca-cert", "/hosted-ca")],
    )
    return objects.deployment(
        NODE_IDENTITY,
        data["namespace"],
        [ctr],
        NODE_IDENTITY,
        replicas=data["replicas"],
        volumes=[
            objects.secret_volume("webhook-cert", "network-node-identity-cert"),
            objects.config_map_volume("hosted-ca-cert", data["ca_config_map"]),
        ],
        node_selector=data["node_selector"] or None,
    )
