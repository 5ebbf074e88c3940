"""Declarative intent consumed by the reconciler."""

from .types import InitializerConnection, PlatformMesh, ProviderConnection

__all__ = ["InitializerConnection", "PlatformMesh", "ProviderConnection"]
