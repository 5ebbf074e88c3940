"""Workspace tree bootstrapping."""

from .bootstrapper import NodePhase, WorkspaceBootstrapper
from .structure import DirectoryStructure, WorkspaceNode

__all__ = ["DirectoryStructure", "NodePhase", "WorkspaceBootstrapper", "WorkspaceNode"]
