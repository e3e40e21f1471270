"""Provider pipeline for the cluster network configuration.

Every provider implements :class:`~netspec_operator.providers.NetworkProvider`.
The default-network provider is picked from a
:class:`~netspec_operator.registry.ProviderRegistry` by type tag; kube-proxy,
Multus and node identity run on every pass and decide for themselves whether
they render anything.
"""

from .reconcile import ReconcileResult, ReconcileState, Reconciler  # noqa: F401
from .registry import ProviderRegistry, build_default_registry  # noqa: F401

__all__ = [
    "ProviderRegistry",
    "ReconcileResult",
    "ReconcileState",
    "Reconciler",
    "build_default_registry",
]
