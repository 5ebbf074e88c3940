from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()

# Top-level keys handled outside the per-field spec policy.
_IDENTITY_KEYS = ("apiVersion", "kind")
_SKIPPED_KEYS = ("metadata", "status", "spec")


class FieldPolicy(str, Enum):
    PREFER_LIVE = "replace-preferring-live"
    PRUNE_TO_DESIRED = "replace-pruning-to-desired"
    DESIRED_WINS = "desired-wins"
    EXTERNALLY_OWNED = "externally-owned"


# (kind, top-level spec field) -> policy. "*" is the kind-wide default.
POLICY_TABLE: Dict[Tuple[str, str], FieldPolicy] = {
    ("HelmRelease", "values"): FieldPolicy.PREFER_LIVE,
    ("HelmRelease", "chart"): FieldPolicy.PREFER_LIVE,
    ("HelmRelease", "*"): FieldPolicy.DESIRED_WINS,
    ("Resource", "interval"): FieldPolicy.EXTERNALLY_OWNED,
    ("Resource", "*"): FieldPolicy.PREFER_LIVE,
    ("WorkspaceType", "*"): FieldPolicy.PRUNE_TO_DESIRED,
    ("APIExport", "*"): FieldPolicy.PRUNE_TO_DESIRED,
}

DEFAULT_POLICY = FieldPolicy.PREFER_LIVE


class MergeError(Exception):
    """Raised when two documents cannot be merged."""


def policy_for(
    kind: str,
    field: str,
    table: Optional[Mapping[Tuple[str, str], FieldPolicy]] = None,
) -> FieldPolicy:
    table = POLICY_TABLE if table is None else table
    if (kind, field) in table:
        return table[(kind, field)]
    return table.get((kind, "*"), DEFAULT_POLICY)


def externally_owned_fields(
    kind: str,
    table: Optional[Mapping[Tuple[str, str], FieldPolicy]] = None,
) -> List[str]:
    """Spec fields of ``kind`` that another controller owns once the object exists."""

    table = POLICY_TABLE if table is None else table
    return sorted(
        field
        for (table_kind, field), policy in table.items()
        if table_kind == kind and field != "*" and policy is FieldPolicy.EXTERNALLY_OWNED
    )


def merge_maps(base: Optional[Dict[str, Any]], overwrite: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Overlay ``overwrite`` onto ``base``.

    Maps merge recursively with ``overwrite`` winning; scalars and lists are
    taken wholesale. Keys only present in ``base`` are kept.
    """

    if overwrite is None:
        return copy.deepcopy(base) if base is not None else {}
    if not isinstance(overwrite, dict):
        raise MergeError(f"cannot merge non-object of type {type(overwrite).__name__}")
    result = copy.deepcopy(overwrite)
    for key, value in (base or {}).items():
        if key not in result:
            result[key] = copy.deepcopy(value)
            continue
        current = result[key]
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = merge_maps(value, current)
        elif isinstance(current, dict) != isinstance(value, dict) and value is not None and current is not None:
            logger.warning("skipped value for %s: object and non-object cannot be merged", key)
    return result


def merge_maps_with_deletion(
    desired: Optional[Dict[str, Any]], live: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Merge preferring live values while pruning every key desired lacks.

    The result's key set (recursively) is exactly ``desired``'s. A missing
    ``desired`` yields an empty document whatever ``live`` holds.
    """

    if desired is None:
        return {}
    live = live or {}
    result: Dict[str, Any] = {}
    for key, wanted in desired.items():
        if key not in live:
            result[key] = copy.deepcopy(wanted)
            continue
        current = live[key]
        if isinstance(wanted, dict) and isinstance(current, dict):
            result[key] = merge_maps_with_deletion(wanted, current)
        elif isinstance(wanted, dict) or isinstance(current, dict):
            # shape changed: desired introduces a new leaf or subtree
            result[key] = copy.deepcopy(wanted)
        else:
            result[key] = copy.deepcopy(current)
    return result


def merge_field(policy: FieldPolicy, desired: Any = _MISSING, live: Any = _MISSING) -> Any:
    """Resolve one top-level field under ``policy``; returns ``_MISSING`` to omit it."""

    if policy is FieldPolicy.EXTERNALLY_OWNED:
        return copy.deepcopy(live) if live is not _MISSING else _MISSING
    if desired is _MISSING:
        if policy is FieldPolicy.PRUNE_TO_DESIRED:
            return _MISSING
        return copy.deepcopy(live) if live is not _MISSING else _MISSING
    if live is _MISSING or policy is FieldPolicy.DESIRED_WINS:
        return copy.deepcopy(desired)
    if policy is FieldPolicy.PRUNE_TO_DESIRED:
        if isinstance(desired, dict) and isinstance(live, dict):
            return merge_maps_with_deletion(desired, live)
        if isinstance(desired, dict) or isinstance(live, dict):
            return copy.deepcopy(desired)
        return copy.deepcopy(live)
    if isinstance(desired, dict) and isinstance(live, dict):
        return merge_maps(desired, live)
    return copy.deepcopy(live)


def merge_spec(
    kind: str,
    desired: Optional[Dict[str, Any]],
    live: Optional[Dict[str, Any]],
    table: Optional[Mapping[Tuple[str, str], FieldPolicy]] = None,
) -> Optional[Dict[str, Any]]:
    if desired is None and live is None:
        return None
    desired = desired or {}
    live = live or {}
    merged: Dict[str, Any] = {}
    for key in list(desired) + [k for k in live if k not in desired]:
        policy = policy_for(kind, key, table)
        wanted = desired.get(key, _MISSING)
        try:
            value = merge_field(policy, wanted, live.get(key, _MISSING))
        except (MergeError, TypeError, ValueError, RecursionError) as exc:
            logger.debug("merge of %s.spec.%s failed, using desired value: %s", kind, key, exc)
            value = copy.deepcopy(wanted)
        if value is not _MISSING:
            merged[key] = value
    return merged


def _overlay_metadata(result: Dict[str, Any], desired: Dict[str, Any]) -> None:
    metadata = result.setdefault("metadata", {})
    wanted = desired.get("metadata") or {}
    for name in ("name", "namespace"):
        if wanted.get(name):
            metadata[name] = wanted[name]
    for name in ("labels", "annotations"):
        if wanted.get(name):
            current = metadata.get(name) or {}
            current.update(wanted[name])
            metadata[name] = current


def compute_object_to_persist(
    desired: Dict[str, Any],
    live: Optional[Dict[str, Any]],
    table: Optional[Mapping[Tuple[str, str], FieldPolicy]] = None,
) -> Dict[str, Any]:
    """Return the document to write for ``desired`` given the current ``live`` object.

    Without a live object the desired document is returned unchanged. With one,
    the live object (resourceVersion included) is the base: ``spec`` is merged
    field by field using the kind's policies, desired metadata labels and
    annotations are overlaid, and every other top-level content key from
    desired (``data``, ``rules``, ``subjects``...) replaces the live value.
    """

    if live is None:
        return copy.deepcopy(desired)
    kind = str(desired.get("kind") or live.get("kind") or "")
    result = copy.deepcopy(live)
    for key in _IDENTITY_KEYS:
        if key in desired:
            result[key] = desired[key]
    _overlay_metadata(result, desired)
    spec = merge_spec(kind, desired.get("spec"), live.get("spec"), table)
    if spec is not None:
        result["spec"] = spec
    for key, value in desired.items():
        if key in _IDENTITY_KEYS or key in _SKIPPED_KEYS:
            continue
        result[key] = copy.deepcopy(value)
    return result


__all__ = [
    "DEFAULT_POLICY",
    "FieldPolicy",
    "MergeError",
    "POLICY_TABLE",
    "compute_object_to_persist",
    "externally_owned_fields",
    "merge_field",
    "merge_maps",
    "merge_maps_with_deletion",
    "merge_spec",
    "policy_for",
]
