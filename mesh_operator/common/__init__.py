"""Shared errors, configuration and object helpers."""

from .errors import ApiError, OperatorError, Result

__all__ = ["ApiError", "OperatorError", "Result"]
