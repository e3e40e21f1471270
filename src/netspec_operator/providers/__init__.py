"""Network providers exposed to the registry and the reconciler."""

from .base import NetworkProvider, RenderResult  # noqa: F401
from .external import ExternalProvider  # noqa: F401
from .kube_proxy import KubeProxyProvider  # noqa: F401
from .kuryr import KuryrProvider  # noqa: F401
from .multus import MultusProvider  # noqa: F401
from .node_identity import NodeIdentityProvider  # noqa: F401

__all__ = [
    "ExternalProvider",
    "KubeProxyProvider",
    "KuryrProvider",
    "MultusProvider",
    "NetworkProvider",
    "NodeIdentityProvider",
    "RenderResult",
]
