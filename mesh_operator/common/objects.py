from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence


@dataclass(frozen=True)
class ObjectKey:
    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @property
    def group(self) -> str:
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""


def object_key(obj: Dict[str, Any]) -> ObjectKey:
    metadata = obj.get("metadata") or {}
    return ObjectKey(
        api_version=str(obj.get("apiVersion") or ""),
        kind=str(obj.get("kind") or ""),
        name=str(metadata.get("name") or ""),
        namespace=metadata.get("namespace") or None,
    )


def get_path(obj: Any, path: Sequence[str], default: Any = None) -> Any:
    current = obj
    for part in path:
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def set_path(obj: Dict[str, Any], path: Sequence[str], value: Any) -> None:
    current = obj
    for part in path[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[path[-1]] = value


def pop_path(obj: Dict[str, Any], path: Sequence[str]) -> Any:
    parent = get_path(obj, path[:-1])
    if isinstance(parent, dict):
        return parent.pop(path[-1], None)
    return None


def has_condition(obj: Dict[str, Any], condition_type: str, status: str = "True") -> bool:
    for condition in get_path(obj, ("status", "conditions"), []) or []:
        if isinstance(condition, dict) and condition.get("type") == condition_type:
            return str(condition.get("status")) == status
    return False


def first_url(items: Iterable[Any]) -> Optional[str]:
    for item in items or []:
        if isinstance(item, dict) and item.get("url"):
            return str(item["url"])
    return None


__all__ = ["ObjectKey", "first_url", "get_path", "has_condition", "object_key", "pop_path", "set_path"]
