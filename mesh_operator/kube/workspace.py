from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from mesh_operator.kube.client import Connection, KubeClient


def base_server(server: str) -> str:
    """Strip any ``/clusters/<path>`` suffix from a server URL."""

    parts = urlsplit(server)
    path = parts.path
    marker = path.find("/clusters/")
    if marker >= 0:
        path = path[:marker]
    return urlunsplit((parts.scheme, parts.netloc, path.rstrip("/"), "", ""))


def workspace_url(server: str, path: str) -> str:
    return f"{base_server(server)}/clusters/{path}"


class WorkspaceClientFactory:
    """Produces API clients scoped to a workspace path of one base connection."""

    def __init__(
        self,
        connection: Connection,
        *,
        timeout: float = 30.0,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.connection = connection
        self.timeout = timeout
        self.cancel = cancel

    def for_path(self, path: str) -> KubeClient:
        return self.for_server(workspace_url(self.connection.server, path))

    def for_server(self, server: str) -> KubeClient:
        return KubeClient(self.connection.with_server(server), timeout=self.timeout, cancel=self.cancel)

    def base(self) -> KubeClient:
        return KubeClient(self.connection, timeout=self.timeout, cancel=self.cancel)


__all__ = ["WorkspaceClientFactory", "base_server", "workspace_url"]
