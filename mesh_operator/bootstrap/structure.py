from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from mesh_operator.common.errors import OperatorError

logger = logging.getLogger(__name__)

ROOT_WORKSPACE = "root"

_WORKSPACE_DIR = re.compile(r"^[0-9]{2}-[a-zA-Z0-9-]+$")
_WORKSPACE_NAME = re.compile(r".*[0-9]{2}-([a-zA-Z0-9-]+)$")


@dataclass
class WorkspaceNode:
    name: str
    files: List[Path] = field(default_factory=list)

    @property
    def parent(self) -> Optional[str]:
        if ":" not in self.name:
            return None
        return self.name.rsplit(":", 1)[0]

    @property
    def leaf(self) -> str:
        return self.name.rsplit(":", 1)[-1]


@dataclass
class DirectoryStructure:
    """Workspaces in processing order; parents must precede their children."""

    workspaces: List[WorkspaceNode] = field(default_factory=list)

    def names(self) -> List[str]:
        return [node.name for node in self.workspaces]


def is_workspace_dir(name: str) -> bool:
    return bool(_WORKSPACE_DIR.match(name))


def workspace_name(directory: str) -> str:
    match = _WORKSPACE_NAME.match(directory)
    if not match:
        raise ValueError(f"invalid workspace name: {directory}")
    return match.group(1)


def discover_structure(root_dir: Path, root_name: str = ROOT_WORKSPACE) -> DirectoryStructure:
    """Walk ``root_dir`` depth-first; directories named ``NN-name`` become child workspaces."""

    root_dir = Path(root_dir)
    if not root_dir.is_dir():
        raise OperatorError.terminal_error(f"workspace directory {root_dir} does not exist")
    structure = DirectoryStructure()

    def walk(directory: Path, path: str) -> None:
        entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
        files = [entry for entry in entries if entry.is_file()]
        structure.workspaces.append(WorkspaceNode(name=path, files=files))
        for entry in entries:
            if entry.is_dir() and is_workspace_dir(entry.name):
                walk(entry, f"{path}:{workspace_name(entry.name)}")
            elif entry.is_dir():
                logger.debug("ignoring directory %s", entry)

    walk(root_dir, root_name)
    return structure


def load_structure(document: Dict[str, Any], base_dir: Optional[Path] = None) -> DirectoryStructure:
    """Build a structure from ``{"workspaces": [{"name": ..., "files": [...]}]}``."""

    base = Path(base_dir) if base_dir is not None else None
    nodes: List[WorkspaceNode] = []
    for entry in document.get("workspaces") or []:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise OperatorError.terminal_error("workspace entries need a name")
        files = [Path(item) for item in entry.get("files") or []]
        if base is not None:
            files = [item if item.is_absolute() else base / item for item in files]
        nodes.append(WorkspaceNode(name=str(entry["name"]), files=files))
    return DirectoryStructure(workspaces=nodes)


def load_structure_file(path: Path) -> DirectoryStructure:
    path = Path(path)
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise OperatorError.terminal_error(f"reading directory structure {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise OperatorError.terminal_error(f"directory structure {path} must be a mapping")
    return load_structure(document, path.parent)


__all__ = [
    "DirectoryStructure",
    "ROOT_WORKSPACE",
    "WorkspaceNode",
    "discover_structure",
    "is_workspace_dir",
    "load_structure",
    "load_structure_file",
    "workspace_name",
]
