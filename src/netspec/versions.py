"""Release version comparison.

Versions are semantic versions, optionally prefixed with ``v`` and optionally
missing the minor/patch components (``4.14`` parses as ``4.14.0``).
Pre-release and build suffixes such as ``4.7.0-0.ci-2021-01-16-102811`` are
accepted and only break ties between otherwise equal versions.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import semver

LOG = logging.getLogger(__name__)


class VersionChange(Enum):
    """Direction of a move from one version to another."""

    UPGRADE = "upgrade"
    SAME = "same"
    DOWNGRADE = "downgrade"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


def parse_version(version: str) -> Optional[semver.Version]:
    """Return the parsed version, or ``None`` when ``version`` is not semver."""

    if not isinstance(version, str):
        return None
    candidate = version.strip()
    if candidate[:1] in ("v", "V"):
        candidate = candidate[1:]
    try:
        return semver.Version.parse(candidate, optional_minor_and_patch=True)
    except (ValueError, TypeError):
        return None


def compare(from_version: str, to_version: str) -> VersionChange:
    """Classify the move from ``from_version`` to ``to_version``.

    Identical strings are always :attr:`VersionChange.SAME`, parseable or not.
    Any other unparseable input yields :attr:`VersionChange.UNKNOWN`.
    """

    if from_version == to_version:
        return VersionChange.SAME

    v1 = parse_version(from_version)
    if v1 is None:
        return VersionChange.UNKNOWN
    v2 = parse_version(to_version)
    if v2 is None:
        return VersionChange.UNKNOWN

    result = v1.compare(v2)
    if result < 0:
        return VersionChange.UPGRADE
    if result > 0:
        return VersionChange.DOWNGRADE
    return VersionChange.SAME


def _major_minor(version: str) -> Optional[tuple[int, int]]:
    parsed = parse_version(version)
    if parsed is None:
        LOG.error("failed to parse version %r", version)
        return None
    return parsed.major, parsed.minor


def at_least(version: str, major: int, minor: int) -> bool:
    """True iff ``version``'s major.minor is >= ``major.minor``.

    Patch and suffixes are ignored.  An unparseable version is logged and
    reported as ``False``.
    """

    parts = _major_minor(version)
    if parts is None:
        return False
    return parts >= (major, minor)


def at_most(version: str, major: int, minor: int) -> bool:
    """True iff ``version``'s major.minor is <= ``major.minor``.

    An unparseable version is logged and reported as ``False``, the same as
    :func:`at_least`, so neither direction passes on garbage input.
    """

    parts = _major_minor(version)
    if parts is None:
        return False
    return parts <= (major, minor)
