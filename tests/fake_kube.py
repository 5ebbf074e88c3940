import copy
from typing import Any, Dict, List, Optional, Tuple

from mesh_operator.common.errors import ApiError
from mesh_operator.kube.client import Connection


def not_found(kind: str, name: str) -> ApiError:
    return ApiError(404, f'{kind} "{name}" not found', reason="NotFound")


def already_exists(kind: str, name: str) -> ApiError:
    return ApiError(409, f'{kind} "{name}" already exists', reason="AlreadyExists")


class FakeKubeClient:
    """In-memory stand-in for KubeClient keyed by (kind, namespace, name)."""

    def __init__(self, *objects: Dict[str, Any], server: str = "https://kcp.test") -> None:
        self.server = server
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.apply_errors: List[Exception] = []
        self.applied: List[Dict[str, Any]] = []
        self.errors: Dict[Tuple[str, str, str], Exception] = {}
        for obj in objects:
            self.add(obj)

    def __enter__(self) -> "FakeKubeClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None

    @staticmethod
    def _key(kind: str, name: str, namespace: Optional[str]) -> Tuple[str, str, str]:
        return (kind, namespace or "", name)

    def _obj_key(self, obj: Dict[str, Any]) -> Tuple[str, str, str]:
        metadata = obj.get("metadata") or {}
        return self._key(obj.get("kind", ""), metadata.get("name", ""), metadata.get("namespace"))

    def add(self, obj: Dict[str, Any]) -> None:
        self.objects[self._obj_key(obj)] = copy.deepcopy(obj)

    def find(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self.objects.get(self._key(kind, name, namespace))

    def methods(self) -> List[str]:
        return [call[0] for call in self.calls]

    def _raise_configured(self, method: str, kind: str, name: str) -> None:
        error = self.errors.get((method, kind, name))
        if error is not None:
            raise error

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append(("get", kind, name))
        self._raise_configured("get", kind, name)
        obj = self.find(kind, name, namespace)
        if obj is None:
            raise not_found(kind, name)
        return copy.deepcopy(obj)

    def list(self, api_version: str, kind: str, namespace: Optional[str] = None, label_selector: Optional[str] = None):
        self.calls.append(("list", kind, ""))
        return [copy.deepcopy(obj) for key, obj in self.objects.items() if key[0] == kind]

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        name = obj["metadata"]["name"]
        self.calls.append(("create", obj["kind"], name))
        self._raise_configured("create", obj["kind"], name)
        if self._obj_key(obj) in self.objects:
            raise already_exists(obj["kind"], name)
        self.add(obj)
        return copy.deepcopy(obj)

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        name = obj["metadata"]["name"]
        self.calls.append(("update", obj["kind"], name))
        self._raise_configured("update", obj["kind"], name)
        if self._obj_key(obj) not in self.objects:
            raise not_found(obj["kind"], name)
        self.add(obj)
        return copy.deepcopy(obj)

    def apply(self, obj: Dict[str, Any], field_manager: str, *, force: bool = False) -> Dict[str, Any]:
        name = obj["metadata"]["name"]
        self.calls.append(("apply", obj["kind"], name))
        self.applied.append(copy.deepcopy(obj))
        if self.apply_errors:
            raise self.apply_errors.pop(0)
        existing = self.objects.get(self._obj_key(obj))
        stored = copy.deepcopy(obj)
        if existing is not None and "status" in existing and "status" not in stored:
            # status is owned by the server and survives an apply
            stored["status"] = copy.deepcopy(existing["status"])
        self.add(stored)
        return copy.deepcopy(stored)

    def create_token(self, namespace: str, service_account: str, expiration_seconds: int) -> str:
        self.calls.append(("token", "ServiceAccount", service_account))
        self._raise_configured("token", "ServiceAccount", service_account)
        return f"token-{service_account}-{expiration_seconds}"


class FakeFactory:
    """Hands out one FakeKubeClient per workspace path."""

    def __init__(self, connection: Optional[Connection] = None) -> None:
        self.connection = connection or Connection(
            server="https://admin.kcp.test:6443", ca_data="CA-PEM", cert_data="CERT", key_data="KEY"
        )
        self.clients: Dict[str, FakeKubeClient] = {}
        self.paths: List[str] = []

    def for_path(self, path: str) -> FakeKubeClient:
        self.paths.append(path)
        return self.clients.setdefault(path, FakeKubeClient(server=f"{self.connection.server}/clusters/{path}"))

    def client(self, path: str) -> FakeKubeClient:
        return self.clients.setdefault(path, FakeKubeClient(server=f"{self.connection.server}/clusters/{path}"))
