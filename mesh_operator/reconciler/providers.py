from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import urlsplit, urlunsplit

from mesh_operator.api.types import InitializerConnection, PlatformMesh, ProviderConnection
from mesh_operator.applier.applier import Applier
from mesh_operator.common.config import OperatorConfig, OperatorDefaults
from mesh_operator.common.errors import ApiError, OperatorError, Result
from mesh_operator.common.objects import first_url, get_path
from mesh_operator.credentials.synthesizer import CredentialSynthesizer, SecretCoordinates
from mesh_operator.kube.client import Connection
from mesh_operator.kube.kubeconfig import copied_kubeconfig, dump_kubeconfig, kubeconfig_secret

logger = logging.getLogger(__name__)

T = TypeVar("T")


def select_connections(configured: Sequence[T], extra: Sequence[T], defaults: Sequence[T]) -> List[T]:
    """Explicit connections replace the defaults; extras are always appended."""

    base = list(configured) if configured else list(defaults)
    return base + list(extra)


def front_proxy_base(config: OperatorConfig, instance: Optional[PlatformMesh], external: bool = False) -> str:
    exposure = instance.spec.exposure if instance is not None else None
    if external and exposure is not None and exposure.base_domain:
        if ":" in exposure.base_domain:
            return f"https://kcp.api.{exposure.base_domain}"
        return f"https://kcp.api.{exposure.base_domain}:{exposure.port or 443}"
    return f"https://{config.kcp.front_proxy_name}-front-proxy.{config.kcp.namespace}:{config.kcp.front_proxy_port}"


def join_url(base: str, *parts: str) -> str:
    path = "/".join(part.strip("/") for part in parts if part and part.strip("/"))
    return f"{base.rstrip('/')}/{path}" if path else base.rstrip("/")


class ProviderSecretStep:
    """Writes one kubeconfig secret per provider and initializer connection."""

    name = "ProviderSecret"

    def __init__(
        self,
        infra_client: Any,
        factory: Any,
        config: Optional[OperatorConfig] = None,
        defaults: Optional[OperatorDefaults] = None,
        *,
        synthesizer: Optional[CredentialSynthesizer] = None,
    ) -> None:
        self.infra_client = infra_client
        self.factory = factory
        self.config = config or OperatorConfig()
        self.defaults = defaults or OperatorDefaults()
        self.secret_applier = Applier(infra_client, self.config.field_manager)
        self.synthesizer = synthesizer or CredentialSynthesizer(factory, self.secret_applier, self.config, self.defaults)

    def process(self, instance: PlatformMesh) -> Result:
        kcp = instance.spec.kcp
        providers = select_connections(
            kcp.provider_connections, kcp.extra_provider_connections, self.defaults.provider_connections
        )
        initializers = select_connections(
            kcp.initializer_connections, kcp.extra_initializer_connections, self.defaults.initializer_connections
        )
        failed: List[Tuple[str, OperatorError]] = []
        for connection in providers:
            try:
                self.handle_provider_connection(instance, connection)
            except OperatorError as exc:
                logger.error("provider connection %s failed: %s", connection.secret, exc)
                failed.append((connection.secret, exc))
        for initializer in initializers:
            try:
                self.handle_initializer_connection(initializer)
            except OperatorError as exc:
                logger.error("initializer connection %s failed: %s", initializer.secret, exc)
                failed.append((initializer.secret, exc))
        if failed:
            message = "; ".join(f"{secret}: {exc}" for secret, exc in failed)
            return Result.failed(OperatorError(f"provider connection(s) failed: {message}", retry=True))
        return Result()

    def _has_base_url(self, instance: PlatformMesh, connection: ProviderConnection) -> bool:
        exposure = instance.spec.exposure
        external = connection.external and exposure is not None and bool(exposure.base_domain)
        return bool(self.config.kcp.front_proxy_name) or external

    def handle_provider_connection(self, instance: PlatformMesh, connection: ProviderConnection) -> None:
        host = front_proxy_base(self.config, instance, connection.external)
        if not connection.use_admin_credential and not self._has_base_url(instance, connection):
            raise OperatorError(f"no base URL for provider kubeconfig {connection.secret}", retry=True, terminal=True)
        namespace = connection.namespace or self.config.scoped_secret_namespace

        if connection.endpoint_slice_name:
            endpoint = self._endpoint_slice_url(connection)
            if connection.scoped:
                self.synthesizer.provision_scoped_credential(
                    connection.capability_name or connection.endpoint_slice_name,
                    connection.path,
                    join_url(host, "clusters", connection.path),
                    SecretCoordinates(connection.secret, namespace),
                )
                return
            address_path = urlsplit(endpoint).path
        elif connection.scoped:
            self.synthesizer.provision_scoped_credential(
                connection.capability_name,
                connection.path,
                join_url(host, "clusters", connection.path),
                SecretCoordinates(connection.secret, namespace),
            )
            return
        elif connection.raw_path:
            address_path = connection.raw_path
        else:
            address_path = f"/clusters/{connection.path}"

        self._write_admin_copy(join_url(host, address_path), connection.secret, namespace)

    def _endpoint_slice_url(self, connection: ProviderConnection) -> str:
        with self.factory.for_path(connection.path) as client:
            try:
                endpoint_slice = client.get(
                    "apis.kcp.io/v1alpha1", "APIExportEndpointSlice", connection.endpoint_slice_name
                )
            except ApiError as exc:
                raise OperatorError.wrap(f"get APIExportEndpointSlice {connection.endpoint_slice_name}", exc) from exc
        endpoint = first_url(get_path(endpoint_slice, ("status", "apiExportEndpoints"), []))
        if not endpoint:
            raise OperatorError(f"no endpoints in slice {connection.endpoint_slice_name}", retry=True)
        return endpoint

    def handle_initializer_connection(self, initializer: InitializerConnection) -> None:
        with self.factory.for_path(initializer.path) as client:
            try:
                workspace_type = client.get(
                    "tenancy.kcp.io/v1alpha1", "WorkspaceType", initializer.workspace_type_name
                )
            except ApiError as exc:
                raise OperatorError.wrap(f"get WorkspaceType {initializer.workspace_type_name}", exc) from exc
        virtual_url = first_url(get_path(workspace_type, ("status", "virtualWorkspaces"), []))
        if not virtual_url:
            raise OperatorError(f"no virtual workspaces found in {initializer.workspace_type_name}", retry=True)

        parts = urlsplit(virtual_url)
        if self.config.kcp.front_proxy_name:
            netloc = f"{self.config.kcp.front_proxy_name}-front-proxy:{self.config.kcp.front_proxy_port}"
        else:
            netloc = urlsplit(self.factory.connection.server).netloc
        server = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
        logger.debug("initializer %s uses virtual workspace %s", initializer.workspace_type_name, server)
        self._write_admin_copy(
            server,
            initializer.secret or f"{initializer.workspace_type_name}-initializer-kubeconfig",
            initializer.namespace or self.config.scoped_secret_namespace,
        )

    def _write_admin_copy(self, server: str, secret: str, namespace: str) -> None:
        admin: Connection = self.factory.connection
        document = dump_kubeconfig(copied_kubeconfig(admin.with_server(server)))
        self.secret_applier.apply(kubeconfig_secret(secret, namespace, document)).raise_for_outcome()
        logger.debug("wrote kubeconfig for %s to secret %s/%s", server, namespace, secret)


__all__ = ["ProviderSecretStep", "front_proxy_base", "join_url", "select_connections"]
