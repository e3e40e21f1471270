"""Registry mapping default-network type tags to providers."""

from __future__ import annotations

from typing import Dict, List

from netspec.config import NetworkType
from netspec.errors import UnsupportedTypeError

from .providers import (
    ExternalProvider,
    KubeProxyProvider,
    KuryrProvider,
    MultusProvider,
    NetworkProvider,
    NodeIdentityProvider,
)


class ProviderRegistry:
    """Select the default-network provider for a type tag."""

    def __init__(self) -> None:
        self._providers: Dict[str, NetworkProvider] = {}

    def register(self, network_type: str, provider: NetworkProvider) -> None:
        if network_type in self._providers:
            raise ValueError(f"provider '{network_type}' already registered")
        self._providers[network_type] = provider

    def unregister(self, network_type: str) -> None:
        self._providers.pop(network_type, None)

    def resolve(self, network_type: str) -> NetworkProvider:
        try:
            return self._providers[network_type]
        except KeyError:
            raise UnsupportedTypeError(f"unsupported default network type {network_type!r}") from None

    def types(self) -> List[str]:
        return sorted(self._providers)


def build_default_registry() -> ProviderRegistry:
    """Registry with every built-in default-network provider."""

    registry = ProviderRegistry()
    registry.register(NetworkType.KURYR.value, KuryrProvider())
    registry.register(NetworkType.EXTERNAL.value, ExternalProvider())
    return registry


def default_components() -> List[NetworkProvider]:
    """Providers that run on every pass after the default network."""

    return [KubeProxyProvider(), MultusProvider(), NodeIdentityProvider()]
