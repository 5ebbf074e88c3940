from __future__ import annotations

from enum import Enum
from typing import Callable, List, Optional, Tuple

from mesh_operator.common.errors import ApiError


class ApplyErrorClass(str, Enum):
    SCHEMA_REJECTION = "schema-rejection"
    TYPED_PATCH_FAILURE = "typed-patch-failure"
    OWNERSHIP_CONFLICT = "ownership-conflict"
    TERMINAL = "terminal"

    @property
    def recoverable(self) -> bool:
        return self is not ApplyErrorClass.TERMINAL


_CONFLICT_CAUSES = {"FieldManagerConflict"}

# Ordered: the schema message is itself wrapped in a typed-patch failure.
_TEXT_RULES: List[Tuple[ApplyErrorClass, Callable[[str], bool]]] = [
    (ApplyErrorClass.SCHEMA_REJECTION, lambda text: "field not declared in schema" in text),
    (ApplyErrorClass.TYPED_PATCH_FAILURE, lambda text: "failed to create typed patch object" in text),
    (ApplyErrorClass.OWNERSHIP_CONFLICT, lambda text: "conflict with" in text),
    (ApplyErrorClass.OWNERSHIP_CONFLICT, lambda text: "Apply failed with" in text and "conflict" in text),
]


def _classify_structured(exc: ApiError) -> Optional[ApplyErrorClass]:
    if any(cause.get("type") in _CONFLICT_CAUSES for cause in exc.causes if isinstance(cause, dict)):
        return ApplyErrorClass.OWNERSHIP_CONFLICT
    if exc.status == 409 and exc.reason == "Conflict":
        return ApplyErrorClass.OWNERSHIP_CONFLICT
    return None


def classify_text(text: str) -> ApplyErrorClass:
    for error_class, matches in _TEXT_RULES:
        if matches(text):
            return error_class
    return ApplyErrorClass.TERMINAL


def classify_apply_error(exc: BaseException) -> ApplyErrorClass:
    """Decide whether a failed server-side apply may fall back to get+merge+update."""

    if isinstance(exc, ApiError):
        structured = _classify_structured(exc)
        if structured is not None:
            return structured
        text = " ".join([exc.message] + [str(cause.get("message", "")) for cause in exc.causes if isinstance(cause, dict)])
        return classify_text(text)
    return classify_text(str(exc))


__all__ = ["ApplyErrorClass", "classify_apply_error", "classify_text"]
