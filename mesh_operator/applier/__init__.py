"""Server-side apply with a get+merge+update fallback."""

from .applier import Applier, ApplyOutcome, ApplyResult

__all__ = ["Applier", "ApplyOutcome", "ApplyResult"]
