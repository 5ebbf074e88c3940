from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Requests the API refused as malformed; re-queuing cannot fix them.
_MALFORMED_STATUSES = (400, 422)


class OperatorError(Exception):
    """Raised when a reconciliation step cannot complete.

    ``retry`` tells the control loop whether re-queuing may help; ``terminal``
    marks failures that need operator intervention (malformed input).
    """

    def __init__(self, message: str, *, retry: bool = True, terminal: bool = False) -> None:
        super().__init__(message)
        self.retry = retry
        self.terminal = terminal

    @classmethod
    def terminal_error(cls, message: str) -> "OperatorError":
        return cls(message, retry=False, terminal=True)

    @classmethod
    def wrap(cls, context: str, exc: BaseException, *, retry: bool = True, terminal: bool = False) -> "OperatorError":
        if isinstance(exc, OperatorError):
            retry = exc.retry
            terminal = exc.terminal
        elif isinstance(exc, ApiError) and exc.status in _MALFORMED_STATUSES:
            retry, terminal = False, True
        err = cls(f"{context}: {exc}", retry=retry, terminal=terminal)
        err.__cause__ = exc
        return err


class CancelledError(OperatorError):
    """Raised when the caller cancelled the reconciliation pass."""

    def __init__(self, message: str = "reconciliation cancelled") -> None:
        super().__init__(message, retry=False, terminal=False)


class TemplateError(OperatorError):
    """Raised when a manifest template cannot be rendered or parsed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retry=False, terminal=True)


class ApiError(Exception):
    """Raised by the API client for any non-success response."""

    def __init__(
        self,
        status: int,
        message: str,
        *,
        reason: str = "",
        causes: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.reason = reason
        self.causes = causes or []

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status} {self.reason}: {self.message}"
        return f"{self.status}: {self.message}"

    @classmethod
    def from_response(cls, status: int, body: str) -> "ApiError":
        """Build an error from a ``Status`` document, falling back to raw text."""

        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            payload = {}
        if not isinstance(payload, dict) or payload.get("kind") != "Status":
            return cls(status, (body or "").strip() or f"HTTP {status}")
        details = payload.get("details") or {}
        causes = details.get("causes") if isinstance(details, dict) else None
        return cls(
            int(payload.get("code") or status),
            str(payload.get("message") or ""),
            reason=str(payload.get("reason") or ""),
            causes=causes if isinstance(causes, list) else None,
        )


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and (exc.status == 404 or exc.reason == "NotFound")


def is_already_exists(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.reason == "AlreadyExists"


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.status == 409


@dataclass
class Result:
    """Outcome of a reconciliation step: success, requeue or error."""

    requeue_after: Optional[float] = None
    error: Optional[OperatorError] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None and self.requeue_after is None

    @classmethod
    def requeue(cls, seconds: float, **details: Any) -> "Result":
        return cls(requeue_after=float(seconds), details=dict(details))

    @classmethod
    def failed(cls, error: OperatorError, **details: Any) -> "Result":
        return cls(error=error, details=dict(details))


__all__ = [
    "ApiError",
    "CancelledError",
    "OperatorError",
    "Result",
    "TemplateError",
    "is_already_exists",
    "is_conflict",
    "is_not_found",
]
