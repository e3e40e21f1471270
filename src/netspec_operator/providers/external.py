"""Default network installed and managed outside the operator."""

from __future__ import annotations

from typing import List

from netspec.config import BootstrapFacts, NetworkSpec, NetworkType, RenderSettings
from netspec.errors import NetworkConfigError

from .base import NetworkProvider, RenderResult


class ExternalProvider(NetworkProvider):
    """Selected for clusters whose default CNI is deployed by someone else.

    Nothing is rendered for the default network itself; the standalone
    kube-proxy component is deployed by default for this type.
    """

    name = NetworkType.EXTERNAL.value

    def fill_defaults(self, spec: NetworkSpec) -> NetworkSpec:
        return spec

    def validate(self, spec: NetworkSpec) -> List[NetworkConfigError]:
        return []

    def render(self, spec: NetworkSpec, facts: BootstrapFacts, settings: RenderSettings) -> RenderResult:
        return RenderResult()
