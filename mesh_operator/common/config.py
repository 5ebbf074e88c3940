from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, Field

from mesh_operator.api.types import InitializerConnection, ProviderConnection

ENV_PREFIX = "MESH_OPERATOR_"

PLATFORM_WORKSPACE = "root:platform-mesh-system"


class KcpConfig(BaseModel):
    namespace: str = Field(default="platform-mesh-system", description="Namespace of the KCP deployment")
    root_shard_name: str = Field(default="root", description="Name of the RootShard object")
    front_proxy_name: str = Field(default="frontproxy", description="Name of the FrontProxy object")
    front_proxy_port: str = Field(default="6443", description="Port of the front proxy service")
    cluster_admin_secret_name: str = Field(
        default="kcp-cluster-admin-client-cert",
        description="Secret holding the admin client certificate (ca.crt, tls.crt, tls.key)",
    )
    url: Optional[str] = Field(default=None, description="Override for the KCP admin endpoint")


class OperatorConfig(BaseModel):
    kcp: KcpConfig = Field(default_factory=KcpConfig)
    field_manager: str = Field(default="platform-mesh-operator", description="Server-side apply field manager")
    requeue_delay_seconds: float = Field(default=5.0, description="Delay used when a dependency is not ready")
    token_expiration_seconds: int = Field(default=86400, description="Default lifetime of minted tokens")
    scoped_secret_namespace: str = Field(
        default="platform-mesh-system", description="Default namespace for kubeconfig secrets"
    )
    service_account_namespace: str = Field(
        default="default", description="Namespace of provisioned service accounts inside a workspace"
    )
    workspace_dir: str = Field(default="/operator/setup", description="Directory holding workspace manifests")
    request_timeout_seconds: float = Field(default=30.0, description="Per-request API timeout")

    @classmethod
    def from_env(cls) -> "OperatorConfig":
        def env(name: str, default: str) -> str:
            return os.getenv(ENV_PREFIX + name, default)

        kcp = KcpConfig(
            namespace=env("KCP_NAMESPACE", "platform-mesh-system"),
            root_shard_name=env("KCP_ROOT_SHARD_NAME", "root"),
            front_proxy_name=env("KCP_FRONT_PROXY_NAME", "frontproxy"),
            front_proxy_port=env("KCP_FRONT_PROXY_PORT", "6443"),
            cluster_admin_secret_name=env("KCP_CLUSTER_ADMIN_SECRET_NAME", "kcp-cluster-admin-client-cert"),
            url=os.getenv(ENV_PREFIX + "KCP_URL") or None,
        )
        return cls(
            kcp=kcp,
            field_manager=env("FIELD_MANAGER", "platform-mesh-operator"),
            requeue_delay_seconds=float(env("REQUEUE_DELAY_SECONDS", "5")),
            token_expiration_seconds=int(env("TOKEN_EXPIRATION_SECONDS", "86400")),
            scoped_secret_namespace=env("SCOPED_SECRET_NAMESPACE", "platform-mesh-system"),
            service_account_namespace=env("SERVICE_ACCOUNT_NAMESPACE", "default"),
            workspace_dir=env("WORKSPACE_DIR", "/operator/setup"),
            request_timeout_seconds=float(env("REQUEST_TIMEOUT_SECONDS", "30")),
        )


def default_provider_connections() -> List[ProviderConnection]:
    return [
        ProviderConnection(path=PLATFORM_WORKSPACE, secret="account-operator-kubeconfig"),
        ProviderConnection(path=PLATFORM_WORKSPACE, secret="rebac-authz-webhook-kubeconfig"),
        ProviderConnection(path=PLATFORM_WORKSPACE, secret="security-operator-kubeconfig"),
        ProviderConnection(
            path=PLATFORM_WORKSPACE,
            secret="kubernetes-grapqhl-gateway-kubeconfig",
            endpoint_slice_name="core.platform-mesh.io",
        ),
        ProviderConnection(path=PLATFORM_WORKSPACE, secret="extension-manager-operator-kubeconfig"),
        ProviderConnection(path=PLATFORM_WORKSPACE, secret="iam-service-kubeconfig"),
        ProviderConnection(secret="portal-kubeconfig", raw_path="/services/contentconfigurations"),
        ProviderConnection(path="root", secret="security-initializer-kubeconfig"),
        ProviderConnection(path="root", secret="security-terminator-kubeconfig"),
    ]


IDENTITY_EXPORTS = ("tenancy.kcp.io", "shards.core.kcp.io", "topology.kcp.io")


@dataclass
class OperatorDefaults:
    """Built-in tables handed to constructors; callers may substitute their own."""

    provider_connections: List[ProviderConnection] = field(default_factory=default_provider_connections)
    initializer_connections: List[InitializerConnection] = field(default_factory=list)
    identity_exports: List[str] = field(default_factory=lambda: list(IDENTITY_EXPORTS))
    identity_workspace: str = "root"
    workspace_access_role: str = "system:kcp:workspace:access"


__all__ = ["IDENTITY_EXPORTS", "KcpConfig", "OperatorConfig", "OperatorDefaults", "default_provider_connections"]
