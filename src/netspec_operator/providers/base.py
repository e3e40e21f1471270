"""Abstract interface shared by every network provider."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from netspec.config import BootstrapFacts, NetworkSpec, RenderSettings
from netspec.errors import NetworkConfigError
from netspec.objects import ObjectSpec


@dataclass
class RenderResult:
    """Objects rendered by one provider and the named values they were built from.

    ``data`` is the render-relevant configuration; its digest is stamped onto
    the provider's workloads.
    """

    objects: List[ObjectSpec] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)


class NetworkProvider(ABC):
    """Base class for providers managed by :class:`ProviderRegistry`.

    Implementations must be side-effect free: every method receives immutable
    values and returns new ones.
    """

    #: Short name used in logs and registry lookups.
    name: str = ""

    @abstractmethod
    def fill_defaults(self, spec: NetworkSpec) -> NetworkSpec:
        """Return ``spec`` with this provider's unset fields filled in."""

    @abstractmethod
    def validate(self, spec: NetworkSpec) -> List[NetworkConfigError]:
        """Return every problem found in ``spec``; an empty list means valid."""

    def is_change_safe(self, previous: NetworkSpec, proposed: NetworkSpec) -> List[NetworkConfigError]:
        """Return the changes from ``previous`` to ``proposed`` that cannot be applied."""

        if previous == proposed:
            return []
        return self._unsafe_changes(previous, proposed)

    def _unsafe_changes(self, previous: NetworkSpec, proposed: NetworkSpec) -> List[NetworkConfigError]:
        return []

    @abstractmethod
    def render(self, spec: NetworkSpec, facts: BootstrapFacts, settings: RenderSettings) -> RenderResult:
        """Turn a validated ``spec`` into object specifications."""
