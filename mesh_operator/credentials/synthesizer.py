from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from mesh_operator.applier.applier import Applier
from mesh_operator.common.config import OperatorConfig, OperatorDefaults
from mesh_operator.common.errors import ApiError, OperatorError, is_not_found
from mesh_operator.credentials.identity import ServiceIdentity, ensure_service_identity
from mesh_operator.credentials.rbac import rules_from_api_export
from mesh_operator.kube.kubeconfig import dump_kubeconfig, kubeconfig_secret, scoped_kubeconfig

logger = logging.getLogger(__name__)

APIEXPORT_API_VERSION = "apis.kcp.io/v1alpha2"


@dataclass(frozen=True)
class SecretCoordinates:
    name: str
    namespace: str = ""


@dataclass(frozen=True)
class ScopedCredential:
    server_url: str
    token: str
    ca_data: Optional[str] = None

    def kubeconfig(self) -> Dict[str, Any]:
        return scoped_kubeconfig(self.server_url, self.token, self.ca_data)


def resolve_export(client: Any, name: str) -> Dict[str, Any]:
    try:
        return client.get(APIEXPORT_API_VERSION, "APIExport", name)
    except ApiError as exc:
        if is_not_found(exc):
            raise OperatorError(f"APIExport {name} not found", retry=True) from exc
        raise OperatorError.wrap(f"resolve APIExport {name}", exc) from exc


class CredentialSynthesizer:
    """Mints a workspace-scoped kubeconfig for one APIExport and stores it in a secret."""

    def __init__(
        self,
        factory: Any,
        secret_applier: Applier,
        config: Optional[OperatorConfig] = None,
        defaults: Optional[OperatorDefaults] = None,
    ) -> None:
        self.factory = factory
        self.secret_applier = secret_applier
        self.config = config or OperatorConfig()
        self.defaults = defaults or OperatorDefaults()

    def provision_scoped_credential(
        self,
        export_name: str,
        export_path: str,
        server_url: str,
        secret: SecretCoordinates,
        *,
        ca_data: Optional[str] = None,
        token_ttl: Optional[int] = None,
    ) -> ScopedCredential:
        if not export_name:
            raise OperatorError.terminal_error("scoped credential requires capabilityName (APIExport name)")
        if not export_path:
            raise OperatorError.terminal_error("scoped credential requires workspacePath of the APIExport")
        if not secret.name:
            raise OperatorError.terminal_error("scoped credential requires secretName")

        ttl = token_ttl or self.config.token_expiration_seconds
        with self.factory.for_path(export_path) as client:
            export = resolve_export(client, export_name)
            rules = rules_from_api_export(export)
            identity = ServiceIdentity.derive(f"{export_name}-{secret.name}", self.config.service_account_namespace)
            ensure_service_identity(client, identity, rules, self.defaults.workspace_access_role)
            try:
                token = client.create_token(identity.namespace, identity.name, ttl)
            except ApiError as exc:
                raise OperatorError.wrap(f"create token for {identity.namespace}/{identity.name}", exc) from exc

        if ca_data is None:
            ca_data = self.factory.connection.ca_data
        credential = ScopedCredential(server_url=server_url, token=token, ca_data=ca_data)
        document = kubeconfig_secret(
            secret.name,
            secret.namespace or self.config.scoped_secret_namespace,
            dump_kubeconfig(credential.kubeconfig()),
        )
        self.secret_applier.apply(document).raise_for_outcome()
        logger.info("wrote scoped kubeconfig for APIExport %s to secret %s", export_name, secret.name)
        return credential


__all__ = ["CredentialSynthesizer", "ScopedCredential", "SecretCoordinates", "resolve_export"]
