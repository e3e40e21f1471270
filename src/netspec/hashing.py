"""Content digests for render inputs.

The digest of a provider's named-value mapping is stamped onto its workloads
so the apply side rolls pods exactly when a render-relevant value changes.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, List, Mapping, Sequence

from .names import CONFIG_HASH_ANNOTATION
from .objects import ObjectSpec


def _default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def canonical_json(data: Mapping[str, Any]) -> str:
    """Serialize ``data`` with sorted keys and no insignificant whitespace."""

    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_default)


def calculate_hash(data: Mapping[str, Any]) -> str:
    """Return the hex MD5 of the canonical JSON form of ``data``."""

    return hashlib.md5(canonical_json(data).encode("utf-8")).hexdigest()


def attach_hash(objects: Sequence[ObjectSpec], digest: str) -> List[ObjectSpec]:
    """Stamp ``digest`` on every workload in ``objects`` and its pod template."""

    annotation = {CONFIG_HASH_ANNOTATION: digest}
    out: List[ObjectSpec] = []
    for obj in objects:
        if obj.is_workload:
            obj = obj.with_annotations(annotation).with_pod_annotations(annotation)
        out.append(obj)
    return out
