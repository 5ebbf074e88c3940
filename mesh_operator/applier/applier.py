from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import jsonpatch

from mesh_operator.applier.classify import ApplyErrorClass, classify_apply_error
from mesh_operator.common.errors import ApiError, OperatorError, is_not_found
from mesh_operator.common.objects import object_key
from mesh_operator.merge.merge import FieldPolicy, compute_object_to_persist, externally_owned_fields

logger = logging.getLogger(__name__)

DEFAULT_FIELD_MANAGER = "platform-mesh-operator"


class ApplyOutcome(str, Enum):
    APPLIED = "Applied"
    APPLIED_VIA_FALLBACK = "AppliedViaFallback"
    FAILED = "Failed"


@dataclass
class ApplyResult:
    outcome: ApplyOutcome
    object: Optional[Dict[str, Any]] = None
    error: Optional[OperatorError] = None
    error_class: Optional[ApplyErrorClass] = None

    @property
    def ok(self) -> bool:
        return self.outcome is not ApplyOutcome.FAILED

    def raise_for_outcome(self) -> None:
        if self.error is not None:
            raise self.error


class Applier:
    """Writes objects with server-side apply, falling back once to get+merge+update."""

    def __init__(
        self,
        client: Any,
        field_manager: str = DEFAULT_FIELD_MANAGER,
        *,
        policies: Optional[Mapping[Tuple[str, str], FieldPolicy]] = None,
    ) -> None:
        self.client = client
        self.field_manager = field_manager
        self.policies = policies

    def apply(self, desired: Dict[str, Any]) -> ApplyResult:
        obj = copy.deepcopy(desired)
        key = object_key(obj)
        body = obj
        owned = externally_owned_fields(key.kind, self.policies)
        if owned:
            try:
                body = self._strip_owned(obj, owned)
            except (ApiError, OperatorError) as exc:
                logger.warning("get of %s before apply failed: %s", key, exc)
                return ApplyResult(ApplyOutcome.FAILED, error=OperatorError.wrap(f"get {key}", exc))
        try:
            applied = self.client.apply(body, self.field_manager, force=False)
        except (ApiError, OperatorError) as exc:
            error_class = classify_apply_error(exc)
            if not error_class.recoverable:
                logger.warning("apply of %s failed: %s", key, exc)
                return ApplyResult(ApplyOutcome.FAILED, error=OperatorError.wrap(f"apply {key}", exc))
        else:
            logger.debug("applied %s with field manager %s", key, self.field_manager)
            return ApplyResult(ApplyOutcome.APPLIED, object=applied)

        logger.info("server-side apply of %s rejected (%s), falling back to update", key, error_class.value)
        return self._fallback(obj, error_class)

    def _strip_owned(self, obj: Dict[str, Any], owned: List[str]) -> Dict[str, Any]:
        """Drop fields another controller owns from the apply body of an existing object."""

        key = object_key(obj)
        try:
            self.client.get(key.api_version, key.kind, key.name, key.namespace)
        except (ApiError, OperatorError) as exc:
            if is_not_found(exc):
                return obj
            raise
        body = copy.deepcopy(obj)
        spec = body.get("spec")
        if isinstance(spec, dict):
            for field in owned:
                spec.pop(field, None)
        return body

    def _fallback(self, desired: Dict[str, Any], error_class: ApplyErrorClass) -> ApplyResult:
        key = object_key(desired)
        try:
            live: Optional[Dict[str, Any]] = self.client.get(key.api_version, key.kind, key.name, key.namespace)
        except (ApiError, OperatorError) as exc:
            if not is_not_found(exc):
                return ApplyResult(
                    ApplyOutcome.FAILED,
                    error=OperatorError.wrap(f"get {key} for fallback update", exc),
                    error_class=error_class,
                )
            live = None

        merged = compute_object_to_persist(desired, live, self.policies)
        try:
            if live is None:
                written = self.client.create(merged)
            else:
                patch = jsonpatch.make_patch(live, merged)
                if not patch.patch:
                    logger.debug("%s already up to date", key)
                    return ApplyResult(ApplyOutcome.APPLIED_VIA_FALLBACK, object=live, error_class=error_class)
                logger.debug("updating %s: %s", key, patch.to_string())
                written = self.client.update(merged)
        except (ApiError, OperatorError) as exc:
            logger.warning("fallback write of %s failed: %s", key, exc)
            return ApplyResult(
                ApplyOutcome.FAILED,
                error=OperatorError.wrap(f"update {key}", exc),
                error_class=error_class,
            )
        return ApplyResult(ApplyOutcome.APPLIED_VIA_FALLBACK, object=written, error_class=error_class)


__all__ = ["Applier", "ApplyOutcome", "ApplyResult", "DEFAULT_FIELD_MANAGER"]
