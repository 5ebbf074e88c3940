from __future__ import annotations

import logging
import os
import ssl
import tempfile
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
import yaml

from mesh_operator.common.errors import ApiError, CancelledError, OperatorError

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"


@dataclass
class Connection:
    """Where and how to reach an API server."""

    server: str
    token: Optional[str] = None
    ca_data: Optional[str] = None
    cert_data: Optional[str] = None
    key_data: Optional[str] = None
    insecure: bool = False

    def with_server(self, server: str) -> "Connection":
        return replace(self, server=server)


@dataclass(frozen=True)
class ResourceInfo:
    plural: str
    namespaced: bool


# (apiVersion, kind) -> resource. Anything else is resolved through discovery.
KNOWN_RESOURCES: Dict[Tuple[str, str], ResourceInfo] = {
    ("v1", "Namespace"): ResourceInfo("namespaces", False),
    ("v1", "Secret"): ResourceInfo("secrets", True),
    ("v1", "ConfigMap"): ResourceInfo("configmaps", True),
    ("v1", "ServiceAccount"): ResourceInfo("serviceaccounts", True),
    ("rbac.authorization.k8s.io/v1", "ClusterRole"): ResourceInfo("clusterroles", False),
    ("rbac.authorization.k8s.io/v1", "ClusterRoleBinding"): ResourceInfo("clusterrolebindings", False),
    ("rbac.authorization.k8s.io/v1", "Role"): ResourceInfo("roles", True),
    ("rbac.authorization.k8s.io/v1", "RoleBinding"): ResourceInfo("rolebindings", True),
    ("tenancy.kcp.io/v1alpha1", "Workspace"): ResourceInfo("workspaces", False),
    ("tenancy.kcp.io/v1alpha1", "WorkspaceType"): ResourceInfo("workspacetypes", False),
    ("apis.kcp.io/v1alpha1", "APIExport"): ResourceInfo("apiexports", False),
    ("apis.kcp.io/v1alpha1", "APIBinding"): ResourceInfo("apibindings", False),
    ("apis.kcp.io/v1alpha1", "APIResourceSchema"): ResourceInfo("apiresourceschemas", False),
    ("apis.kcp.io/v1alpha1", "APIExportEndpointSlice"): ResourceInfo("apiexportendpointslices", False),
    ("apis.kcp.io/v1alpha2", "APIExport"): ResourceInfo("apiexports", False),
    ("apis.kcp.io/v1alpha2", "APIBinding"): ResourceInfo("apibindings", False),
    ("operator.kcp.io/v1alpha1", "RootShard"): ResourceInfo("rootshards", True),
    ("operator.kcp.io/v1alpha1", "FrontProxy"): ResourceInfo("frontproxies", True),
    ("helm.toolkit.fluxcd.io/v2", "HelmRelease"): ResourceInfo("helmreleases", True),
    ("delivery.ocm.software/v1alpha1", "Resource"): ResourceInfo("resources", True),
    ("ui.platform-mesh.io/v1alpha1", "ContentConfiguration"): ResourceInfo("contentconfigurations", False),
}


def build_ssl_context(connection: Connection) -> Any:
    if connection.insecure:
        return False
    if not (connection.ca_data or connection.cert_data):
        return True
    try:
        context = ssl.create_default_context(cadata=connection.ca_data) if connection.ca_data else ssl.create_default_context()
    except (ssl.SSLError, ValueError) as exc:
        raise OperatorError.terminal_error(f"invalid certificate authority data for {connection.server}: {exc}") from exc
    if connection.cert_data and connection.key_data:
        # load_cert_chain only reads from files
        with tempfile.TemporaryDirectory() as tmpdir:
            cert_path = os.path.join(tmpdir, "tls.crt")
            key_path = os.path.join(tmpdir, "tls.key")
            with open(cert_path, "w", encoding="utf-8") as handle:
                handle.write(connection.cert_data)
            with open(key_path, "w", encoding="utf-8") as handle:
                handle.write(connection.key_data)
            try:
                context.load_cert_chain(cert_path, key_path)
            except (ssl.SSLError, ValueError) as exc:
                raise OperatorError.terminal_error(f"invalid client certificate for {connection.server}: {exc}") from exc
    return context


class KubeClient:
    """Minimal Kubernetes REST client over httpx with cooperative cancellation."""

    def __init__(
        self,
        connection: Connection,
        *,
        timeout: float = 30.0,
        cancel: Optional[threading.Event] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.connection = connection
        self.cancel = cancel
        self._resources: Dict[Tuple[str, str], ResourceInfo] = dict(KNOWN_RESOURCES)
        headers = {"Accept": "application/json"}
        if connection.token:
            headers["Authorization"] = f"Bearer {connection.token}"
        kwargs: Dict[str, Any] = {"base_url": connection.server.rstrip("/"), "timeout": timeout, "headers": headers}
        if transport is not None:
            kwargs["transport"] = transport
        else:
            kwargs["verify"] = build_ssl_context(connection)
        self._http = httpx.Client(**kwargs)

    def __enter__(self) -> "KubeClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    @property
    def server(self) -> str:
        return self.connection.server

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if self.cancel is not None and self.cancel.is_set():
            raise CancelledError(f"cancelled before {method} {path}")
        try:
            response = self._http.request(method, path, params=params, json=json, content=content, headers=headers)
        except httpx.HTTPError as exc:
            raise OperatorError(f"{method} {path} failed: {exc}", retry=True) from exc
        if response.status_code >= 400:
            raise ApiError.from_response(response.status_code, response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise OperatorError(f"{method} {path} returned a non-JSON body: {exc}", retry=True) from exc

    def resource_info(self, api_version: str, kind: str) -> ResourceInfo:
        key = (api_version, kind)
        if key not in self._resources:
            self._resources.update(self._discover(api_version))
        if key not in self._resources:
            raise OperatorError.terminal_error(f"no resource found for {kind} in {api_version}")
        return self._resources[key]

    def _discover(self, api_version: str) -> Dict[Tuple[str, str], ResourceInfo]:
        path = "/api/v1" if api_version == "v1" else f"/apis/{api_version}"
        logger.debug("discovering resources under %s", path)
        payload = self._request("GET", path)
        found: Dict[Tuple[str, str], ResourceInfo] = {}
        for resource in payload.get("resources", []):
            name = resource.get("name", "")
            if "/" in name:
                continue
            found[(api_version, resource.get("kind", ""))] = ResourceInfo(name, bool(resource.get("namespaced")))
        return found

    def resource_path(self, api_version: str, kind: str, namespace: Optional[str] = None, name: Optional[str] = None) -> str:
        info = self.resource_info(api_version, kind)
        prefix = "/api/v1" if api_version == "v1" else f"/apis/{api_version}"
        parts = [prefix]
        if info.namespaced:
            parts.append(f"namespaces/{quote(namespace or 'default', safe='')}")
        parts.append(info.plural)
        if name:
            parts.append(quote(name, safe=""))
        return "/".join(parts)

    def _object_path(self, obj: Dict[str, Any], *, with_name: bool = True) -> str:
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            raise OperatorError.terminal_error(f"{obj.get('kind')} object has no metadata.name")
        info = self.resource_info(obj.get("apiVersion", ""), obj.get("kind", ""))
        if info.namespaced and not metadata.get("namespace"):
            metadata["namespace"] = "default"
            obj["metadata"] = metadata
        return self.resource_path(
            obj.get("apiVersion", ""),
            obj.get("kind", ""),
            metadata.get("namespace"),
            name if with_name else None,
        )

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        return self._request("GET", self.resource_path(api_version, kind, namespace, name))

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {"labelSelector": label_selector} if label_selector else None
        payload = self._request("GET", self.resource_path(api_version, kind, namespace), params=params)
        return list(payload.get("items") or [])

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", self._object_path(obj, with_name=False), json=obj)

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", self._object_path(obj), json=obj)

    def apply(self, obj: Dict[str, Any], field_manager: str, *, force: bool = False) -> Dict[str, Any]:
        path = self._object_path(obj)
        params = {"fieldManager": field_manager, "force": "true" if force else "false"}
        body = yaml.safe_dump(obj, sort_keys=False)
        return self._request(
            "PATCH",
            path,
            params=params,
            content=body,
            headers={"Content-Type": APPLY_PATCH_CONTENT_TYPE},
        )

    def create_token(self, namespace: str, service_account: str, expiration_seconds: int) -> str:
        path = self.resource_path("v1", "ServiceAccount", namespace, service_account) + "/token"
        body = {
            "apiVersion": "authentication.k8s.io/v1",
            "kind": "TokenRequest",
            "spec": {"expirationSeconds": int(expiration_seconds)},
        }
        payload = self._request("POST", path, json=body)
        token = (payload.get("status") or {}).get("token")
        if not token:
            raise OperatorError(f"token request for {namespace}/{service_account} returned no token", retry=True)
        return token


__all__ = ["APPLY_PATCH_CONTENT_TYPE", "Connection", "KNOWN_RESOURCES", "KubeClient", "ResourceInfo", "build_ssl_context"]
