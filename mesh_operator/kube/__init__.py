"""Kubernetes/KCP API access."""

from .client import Connection, KubeClient
from .workspace import WorkspaceClientFactory

__all__ = ["Connection", "KubeClient", "WorkspaceClientFactory"]
