"""Error taxonomy shared by the validation, change-safety and render phases."""

from __future__ import annotations


class NetworkConfigError(Exception):
    """Base class for every error reported about a network configuration."""


class StructuralConfigError(NetworkConfigError):
    """A list has the wrong number of entries or a required field is missing."""


class SemanticConfigError(NetworkConfigError):
    """A value parses badly or violates a containment/overlap/override rule."""


class UnsafeChangeError(NetworkConfigError):
    """A field changed after infrastructure was bootstrapped around its old value."""


class UnsupportedTypeError(NetworkConfigError):
    """The default network type does not name a registered provider."""


class DiscoveryUnavailableError(NetworkConfigError):
    """A bootstrap fact needed by Render is absent or not ready yet.

    Providers catch this while rendering and withhold the objects that depend on
    the missing fact instead of failing the whole pass.
    """


class RenderContractError(RuntimeError):
    """Render received input that should never have passed validation."""
