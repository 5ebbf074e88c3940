"""Reconciliation steps for PlatformMesh instances."""

from .providers import ProviderSecretStep
from .reconciler import PlatformMeshReconciler

__all__ = ["PlatformMeshReconciler", "ProviderSecretStep"]
