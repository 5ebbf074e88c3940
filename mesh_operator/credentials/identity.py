from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from mesh_operator.common.errors import ApiError, OperatorError, is_already_exists
from mesh_operator.credentials.rbac import PolicyRule

logger = logging.getLogger(__name__)

RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"
RBAC_GROUP = "rbac.authorization.k8s.io"
SA_PREFIX = "platform-mesh-provider-"
WORKSPACE_ACCESS_PREFIX = "platform-mesh-workspace-access-"
WORKSPACE_ACCESS_ROLE = "system:kcp:workspace:access"


def sanitize_key(key: str) -> str:
    return key.replace("_", "-").replace(" ", "-")


@dataclass(frozen=True)
class ServiceIdentity:
    name: str
    namespace: str
    cluster_role: str
    workspace_access_binding: str

    @classmethod
    def derive(cls, key: str, namespace: str = "") -> "ServiceIdentity":
        sanitized = sanitize_key(key)
        return cls(
            name=SA_PREFIX + sanitized,
            namespace=namespace or "default",
            cluster_role=SA_PREFIX + sanitized,
            workspace_access_binding=WORKSPACE_ACCESS_PREFIX + sanitized,
        )

    def subject(self) -> Dict[str, Any]:
        return {"kind": "ServiceAccount", "name": self.name, "namespace": self.namespace}


def _binding(name: str, role: str, identity: ServiceIdentity) -> Dict[str, Any]:
    return {
        "apiVersion": RBAC_API_VERSION,
        "kind": "ClusterRoleBinding",
        "metadata": {"name": name},
        "roleRef": {"apiGroup": RBAC_GROUP, "kind": "ClusterRole", "name": role},
        "subjects": [identity.subject()],
    }


def _create_if_absent(client: Any, obj: Dict[str, Any]) -> bool:
    """Create ``obj``; returns False when it already existed."""

    try:
        client.create(obj)
    except ApiError as exc:
        if is_already_exists(exc):
            logger.debug("%s %s already exists", obj["kind"], obj["metadata"]["name"])
            return False
        raise OperatorError.wrap(f"create {obj['kind']} {obj['metadata']['name']}", exc) from exc
    return True


def ensure_service_identity(
    client: Any,
    identity: ServiceIdentity,
    rules: Sequence[PolicyRule],
    workspace_access_role: str = WORKSPACE_ACCESS_ROLE,
) -> None:
    """Create the service account, its role, the role binding and the workspace access binding."""

    _create_if_absent(
        client,
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": identity.name, "namespace": identity.namespace},
        },
    )

    role = {
        "apiVersion": RBAC_API_VERSION,
        "kind": "ClusterRole",
        "metadata": {"name": identity.cluster_role},
        "rules": [rule.to_dict() for rule in rules],
    }
    if not _create_if_absent(client, role):
        try:
            live = client.get(RBAC_API_VERSION, "ClusterRole", identity.cluster_role)
            live["rules"] = role["rules"]
            client.update(live)
        except ApiError as exc:
            raise OperatorError.wrap(f"update ClusterRole {identity.cluster_role}", exc) from exc

    _create_if_absent(client, _binding(identity.cluster_role, identity.cluster_role, identity))
    _create_if_absent(client, _binding(identity.workspace_access_binding, workspace_access_role, identity))


__all__ = ["ServiceIdentity", "ensure_service_identity", "sanitize_key"]
