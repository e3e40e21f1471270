"""Sequence the provider pipeline for one reconcile pass.

A pass walks ``UNSET -> DEFAULTED -> VALIDATED -> RENDERED`` or stops in
``REJECTED``.  Nothing produced by a rejected pass is returned, so the caller
never applies part of a configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from netspec import hashing, validation, versions
from netspec.config import BootstrapFacts, NetworkSpec, RenderSettings
from netspec.errors import NetworkConfigError, UnsupportedTypeError
from netspec.objects import ObjectSpec, order_for_apply

from .providers import NetworkProvider
from .registry import ProviderRegistry, build_default_registry, default_components

LOG = logging.getLogger(__name__)


class ReconcileState(Enum):
    UNSET = "unset"
    DEFAULTED = "defaulted"
    VALIDATED = "validated"
    RENDERED = "rendered"
    REJECTED = "rejected"


@dataclass
class ReconcileResult:
    """Outcome of a single reconcile pass.

    Attributes
    ----------
    state:
        ``RENDERED`` on success, ``REJECTED`` when validation or the change
        check failed.
    spec:
        The fully defaulted spec the pass worked on.
    objects:
        Objects to apply, Namespaces first, then CRDs, then the rest.  Empty
        for a rejected pass.
    errors:
        Every validation or change-safety error found.
    version_change:
        Direction of the move from the applied release to the target one.
    hashes:
        Content digest per provider name, for providers that rendered data.
    """

    state: ReconcileState
    spec: NetworkSpec
    objects: List[ObjectSpec] = field(default_factory=list)
    errors: List[NetworkConfigError] = field(default_factory=list)
    version_change: Optional[versions.VersionChange] = None
    hashes: Dict[str, str] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.state is ReconcileState.RENDERED

    def applied_spec(self) -> Optional[NetworkSpec]:
        """Spec to keep as ``previous`` for the next pass, if this one was accepted."""

        return self.spec if self.accepted else None


class Reconciler:
    """Runs FillDefaults, Validate, IsChangeSafe and Render across providers."""

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        components: Optional[Sequence[NetworkProvider]] = None,
        settings: Optional[RenderSettings] = None,
    ) -> None:
        self._registry = registry or build_default_registry()
        self._components = list(default_components() if components is None else components)
        self._settings = settings or RenderSettings()

    @property
    def settings(self) -> RenderSettings:
        return self._settings

    def reconcile(
        self,
        spec: NetworkSpec,
        facts: BootstrapFacts,
        previous: Optional[NetworkSpec] = None,
    ) -> ReconcileResult:
        """Run one pass for ``spec``.

        Raises :class:`~netspec.errors.UnsupportedTypeError` when the default
        network type has no registered provider.
        """

        default_provider = self._registry.resolve(spec.default_network.type)
        providers = [default_provider, *self._components]
        LOG.info("Reconciling network type %s", spec.default_network.type)

        spec = self._fill_defaults(spec, providers)
        result = ReconcileResult(state=ReconcileState.DEFAULTED, spec=spec)

        errors: List[NetworkConfigError] = list(validation.validate_ip_pools(spec))
        for provider in providers:
            errors.extend(provider.validate(spec))
        if errors:
            return self._reject(result, errors, "invalid configuration")
        result.state = ReconcileState.VALIDATED

        if previous is not None:
            previous = self._fill_defaults(previous, self._previous_providers(previous))
        if previous is not None and previous != spec:
            errors = list(validation.is_network_change_safe(previous, spec))
            type_changed = previous.default_network.type != spec.default_network.type
            for provider in providers:
                if provider is default_provider and type_changed:
                    continue
                errors.extend(provider.is_change_safe(previous, spec))
            if errors:
                return self._reject(result, errors, "unsafe configuration change")

        result.version_change = versions.compare(
            facts.applied_release_version, self._settings.release_version
        )
        LOG.debug(
            "Release %s -> %s: %s",
            facts.applied_release_version,
            self._settings.release_version,
            result.version_change,
        )

        rendered: List[ObjectSpec] = []
        for provider in providers:
            out = provider.render(spec, facts, self._settings)
            objs = out.objects
            if out.data and objs:
                digest = hashing.calculate_hash(out.data)
                result.hashes[provider.name] = digest
                objs = hashing.attach_hash(objs, digest)
            LOG.debug("%s rendered %d objects", provider.name, len(objs))
            rendered.extend(objs)

        result.objects = order_for_apply(rendered)
        result.state = ReconcileState.RENDERED
        LOG.info("Rendered %d objects", len(result.objects))
        return result

    def _previous_providers(self, previous: NetworkSpec) -> List[NetworkProvider]:
        """Providers that default the previous spec; its type may no longer be registered."""

        try:
            return [self._registry.resolve(previous.default_network.type), *self._components]
        except UnsupportedTypeError:
            LOG.warning(
                "Previous network type %s is not registered; defaulting components only",
                previous.default_network.type,
            )
            return list(self._components)

    @staticmethod
    def _fill_defaults(spec: NetworkSpec, providers: Sequence[NetworkProvider]) -> NetworkSpec:
        for provider in providers:
            LOG.debug("Filling defaults for %s", provider.name)
            spec = provider.fill_defaults(spec)
        return spec

    @staticmethod
    def _reject(result: ReconcileResult, errors: List[NetworkConfigError], reason: str) -> ReconcileResult:
        LOG.error("Rejecting network configuration (%s): %s", reason, "; ".join(str(e) for e in errors))
        result.state = ReconcileState.REJECTED
        result.errors = errors
        return result
