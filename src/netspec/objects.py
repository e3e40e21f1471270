"""Infrastructure object specifications produced by Render.

Objects are plain data: an external apply collaborator turns them into live
Kubernetes objects.  The builders below cover the handful of shapes the
providers need and keep the provider modules focused on *what* to render.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

WORKLOAD_KINDS = ("DaemonSet", "Deployment")


@dataclass(frozen=True)
class ObjectSpec:
    """A single rendered object.

    ``body`` holds every top-level field except ``apiVersion``, ``kind`` and
    ``metadata`` (for example ``spec`` or ``data``).
    """

    api_version: str
    kind: str
    name: str
    namespace: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return self.kind, self.namespace, self.name

    @property
    def is_workload(self) -> bool:
        return self.kind in WORKLOAD_KINDS

    def with_annotations(self, extra: Mapping[str, str]) -> "ObjectSpec":
        """Return a copy with ``extra`` merged into the object annotations."""

        merged = dict(self.annotations)
        merged.update(extra)
        return replace(self, annotations=merged)

    def with_pod_annotations(self, extra: Mapping[str, str]) -> "ObjectSpec":
        """Return a copy with ``extra`` merged into the pod template annotations."""

        if not self.is_workload:
            raise TypeError(f"{self.kind} has no pod template")
        body = copy.deepcopy(dict(self.body))
        metadata = body.setdefault("spec", {}).setdefault("template", {}).setdefault("metadata", {})
        annotations = dict(metadata.get("annotations") or {})
        annotations.update(extra)
        metadata["annotations"] = annotations
        return replace(self, body=body)

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        out: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
        }
        out.update(copy.deepcopy(dict(self.body)))
        return out


def order_for_apply(objects: Sequence[ObjectSpec]) -> List[ObjectSpec]:
    """Stable ordering: Namespaces, then CRDs, then everything else."""

    def rank(obj: ObjectSpec) -> int:
        if obj.kind == "Namespace":
            return 0
        if obj.kind == "CustomResourceDefinition":
            return 1
        return 2

    return sorted(objects, key=rank)


# ----------------------------------------------------------------------
# Builders
# ----------------------------------------------------------------------
def namespace(name: str, labels: Optional[Mapping[str, str]] = None) -> ObjectSpec:
    return ObjectSpec("v1", "Namespace", name, labels=dict(labels or {}))


def service_account(name: str, ns: str) -> ObjectSpec:
    return ObjectSpec("v1", "ServiceAccount", name, ns)


def config_map(name: str, ns: str, data: Mapping[str, str]) -> ObjectSpec:
    return ObjectSpec("v1", "ConfigMap", name, ns, body={"data": dict(data)})


def secret(name: str, ns: str, string_data: Mapping[str, str], secret_type: str = "Opaque") -> ObjectSpec:
    return ObjectSpec(
        "v1", "Secret", name, ns, body={"type": secret_type, "stringData": dict(string_data)}
    )


def cluster_role(name: str, rules: Sequence[Mapping[str, Any]]) -> ObjectSpec:
    return ObjectSpec(
        "rbac.authorization.k8s.io/v1", "ClusterRole", name, body={"rules": [dict(r) for r in rules]}
    )


def cluster_role_binding(name: str, role: str, account: str, ns: str) -> ObjectSpec:
    return ObjectSpec(
        "rbac.authorization.k8s.io/v1",
        "ClusterRoleBinding",
        name,
        body={
            "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": "ClusterRole", "name": role},
            "subjects": [{"kind": "ServiceAccount", "name": account, "namespace": ns}],
        },
    )


def service(name: str, ns: str, selector: Mapping[str, str], ports: Sequence[Mapping[str, Any]]) -> ObjectSpec:
    return ObjectSpec(
        "v1",
        "Service",
        name,
        ns,
        body={"spec": {"selector": dict(selector), "ports": [dict(p) for p in ports]}},
    )


def container(
    name: str,
    image: str,
    command: Sequence[str] = (),
    env: Optional[Mapping[str, Any]] = None,
    ports: Sequence[int] = (),
    volume_mounts: Sequence[Tuple[str, str]] = (),
    probe_port: Optional[int] = None,
) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": name, "image": image}
    if command:
        out["command"] = list(command)
    if env:
        out["env"] = [{"name": k, "value": str(v)} for k, v in env.items()]
    if ports:
        out["ports"] = [{"containerPort": int(p)} for p in ports]
    if volume_mounts:
        out["volumeMounts"] = [{"name": n, "mountPath": p} for n, p in volume_mounts]
    if probe_port is not None:
        probe = {"httpGet": {"path": "/alive", "port": int(probe_port)}}
        out["livenessProbe"] = probe
        out["readinessProbe"] = {"httpGet": {"path": "/ready", "port": int(probe_port)}}
    return out


def _pod_template(
    app: str,
    service_account_name: str,
    containers: Sequence[Mapping[str, Any]],
    volumes: Sequence[Mapping[str, Any]],
    host_network: bool,
    node_selector: Optional[Mapping[str, str]],
) -> Dict[str, Any]:
    pod_spec: Dict[str, Any] = {
        "serviceAccountName": service_account_name,
        "containers": [dict(c) for c in containers],
    }
    if volumes:
        pod_spec["volumes"] = [dict(v) for v in volumes]
    if host_network:
        pod_spec["hostNetwork"] = True
    if node_selector:
        pod_spec["nodeSelector"] = dict(node_selector)
    return {"metadata": {"labels": {"app": app}}, "spec": pod_spec}


def daemon_set(
    name: str,
    ns: str,
    containers: Sequence[Mapping[str, Any]],
    service_account_name: str,
    volumes: Sequence[Mapping[str, Any]] = (),
    host_network: bool = True,
    node_selector: Optional[Mapping[str, str]] = None,
) -> ObjectSpec:
    return ObjectSpec(
        "apps/v1",
        "DaemonSet",
        name,
        ns,
        body={
            "spec": {
                "selector": {"matchLabels": {"app": name}},
                "updateStrategy": {"type": "RollingUpdate"},
                "template": _pod_template(
                    name, service_account_name, containers, volumes, host_network, node_selector
                ),
            }
        },
    )


def deployment(
    name: str,
    ns: str,
    containers: Sequence[Mapping[str, Any]],
    service_account_name: str,
    replicas: int = 1,
    volumes: Sequence[Mapping[str, Any]] = (),
    host_network: bool = False,
    node_selector: Optional[Mapping[str, str]] = None,
) -> ObjectSpec:
    return ObjectSpec(
        "apps/v1",
        "Deployment",
        name,
        ns,
        body={
            "spec": {
                "replicas": int(replicas),
                "selector": {"matchLabels": {"app": name}},
                "template": _pod_template(
                    name, service_account_name, containers, volumes, host_network, node_selector
                ),
            }
        },
    )


def config_map_volume(name: str, config_map_name: str) -> Dict[str, Any]:
    return {"name": name, "configMap": {"name": config_map_name}}


def secret_volume(name: str, secret_name: str) -> Dict[str, Any]:
    return {"name": name, "secret": {"secretName": secret_name}}


def host_path_volume(name: str, path: str) -> Dict[str, Any]:
    return {"name": name, "hostPath": {"path": path}}


def custom_resource_definition(
    group: str,
    kind: str,
    plural: str,
    version: str = "v1",
    scope: str = "Namespaced",
) -> ObjectSpec:
    return ObjectSpec(
        "apiextensions.k8s.io/v1",
        "CustomResourceDefinition",
        f"{plural}.{group}",
        body={
            "spec": {
                "group": group,
                "scope": scope,
                "names": {"kind": kind, "plural": plural, "singular": kind.lower()},
                "versions": [
                    {
                        "name": version,
                        "served": True,
                        "storage": True,
                        "schema": {
                            "openAPIV3Schema": {
                                "type": "object",
                                "x-kubernetes-preserve-unknown-fields": True,
                            }
                        },
                    }
                ],
            }
        },
    )


def webhook_configuration(
    kind: str,
    name: str,
    ns: str,
    service_name: str,
    path: str,
    ca_bundle: str,
    rules: Sequence[Mapping[str, Any]],
    port: int = 443,
    url: Optional[str] = None,
) -> ObjectSpec:
    """Build a Validating/MutatingWebhookConfiguration with one webhook.

    When ``url`` is given the webhook is reached directly (for example on a
    loopback address) instead of through ``service_name``.
    """

    if kind not in ("ValidatingWebhookConfiguration", "MutatingWebhookConfiguration"):
        raise ValueError(f"unsupported webhook configuration kind {kind!r}")
    if url:
        client_config: Dict[str, Any] = {"caBundle": ca_bundle, "url": url}
    else:
        client_config = {
            "caBundle": ca_bundle,
            "service": {"name": service_name, "namespace": ns, "path": path, "port": int(port)},
        }
    return ObjectSpec(
        "admissionregistration.k8s.io/v1",
        kind,
        name,
        body={
            "webhooks": [
                {
                    "name": name,
                    "admissionReviewVersions": ["v1"],
                    "sideEffects": "None",
                    "failurePolicy": "Fail",
                    "clientConfig": client_config,
                    "rules": [dict(r) for r in rules],
                }
            ]
        },
    )
