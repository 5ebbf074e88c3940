from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Optional, Tuple

from mesh_operator.api.types import Condition, PlatformMesh, WorkspaceStatus
from mesh_operator.bootstrap.bootstrapper import WorkspaceBootstrapper
from mesh_operator.bootstrap.structure import DirectoryStructure
from mesh_operator.common.config import OperatorConfig, OperatorDefaults
from mesh_operator.common.errors import ApiError, OperatorError, Result
from mesh_operator.common.objects import has_condition
from mesh_operator.kube.client import Connection
from mesh_operator.kube.kubeconfig import connection_from_admin_secret
from mesh_operator.kube.workspace import WorkspaceClientFactory
from mesh_operator.merge.merge import FieldPolicy
from mesh_operator.reconciler.providers import ProviderSecretStep

logger = logging.getLogger(__name__)

KCP_OPERATOR_API_VERSION = "operator.kcp.io/v1alpha1"

FactoryBuilder = Callable[[Connection, Optional[threading.Event]], Any]


class PlatformMeshReconciler:
    """Runs the workspace bootstrap and the provider secret step for one instance."""

    def __init__(
        self,
        infra_client: Any,
        structure: DirectoryStructure,
        config: Optional[OperatorConfig] = None,
        defaults: Optional[OperatorDefaults] = None,
        *,
        factory_builder: Optional[FactoryBuilder] = None,
        policies: Optional[Mapping[Tuple[str, str], FieldPolicy]] = None,
    ) -> None:
        self.infra_client = infra_client
        self.structure = structure
        self.config = config or OperatorConfig()
        self.defaults = defaults or OperatorDefaults()
        self.factory_builder = factory_builder or self._default_factory
        self.policies = policies

    def _default_factory(self, connection: Connection, cancel: Optional[threading.Event]) -> WorkspaceClientFactory:
        return WorkspaceClientFactory(connection, timeout=self.config.request_timeout_seconds, cancel=cancel)

    @property
    def kcp_url(self) -> str:
        kcp = self.config.kcp
        return kcp.url or f"https://{kcp.front_proxy_name}-front-proxy.{kcp.namespace}:{kcp.front_proxy_port}"

    def _prerequisites_ready(self) -> bool:
        kcp = self.config.kcp
        for kind, name in (("RootShard", kcp.root_shard_name), ("FrontProxy", kcp.front_proxy_name)):
            try:
                obj = self.infra_client.get(KCP_OPERATOR_API_VERSION, kind, name, kcp.namespace)
            except ApiError as exc:
                logger.info("%s %s is not ready: %s", kind, name, exc)
                return False
            if not has_condition(obj, "Available"):
                logger.info("%s %s is not ready", kind, name)
                return False
        return True

    def admin_connection(self) -> Connection:
        kcp = self.config.kcp
        try:
            secret = self.infra_client.get("v1", "Secret", kcp.cluster_admin_secret_name, kcp.namespace)
        except ApiError as exc:
            raise OperatorError.wrap(f"getting secret {kcp.namespace}/{kcp.cluster_admin_secret_name}", exc) from exc
        return connection_from_admin_secret(secret, self.kcp_url)

    def reconcile(self, instance: PlatformMesh, *, cancel: Optional[threading.Event] = None) -> Result:
        """One reconciliation pass; returns success, a requeue delay or an error, never raises."""

        try:
            if not self._prerequisites_ready():
                self._record(instance, "KcpSetup", Result.requeue(self.config.requeue_delay_seconds))
                return Result.requeue(self.config.requeue_delay_seconds)
            factory = self.factory_builder(self.admin_connection(), cancel)
        except OperatorError as exc:
            result = Result.failed(exc)
            self._record(instance, "KcpSetup", result)
            return result

        bootstrapper = WorkspaceBootstrapper(factory, self.config, self.defaults, policies=self.policies)
        result = bootstrapper.run(instance, self.structure)
        self._record(instance, "KcpSetup", result)
        if not result.ok:
            return result

        result = ProviderSecretStep(self.infra_client, factory, self.config, self.defaults).process(instance)
        self._record(instance, ProviderSecretStep.name, result)
        return result

    def _record(self, instance: PlatformMesh, step: str, result: Result) -> None:
        if result.error is not None:
            status, reason, message = "False", "Error", str(result.error)
        elif result.requeue_after is not None:
            status, reason, message = "Unknown", "Pending", f"requeue after {result.requeue_after:g}s"
        else:
            status, reason, message = "True", "Complete", "The subroutine is complete"
        instance.status.set_condition(Condition(type=f"{step}Ready", status=status, reason=reason, message=message))
        workspaces = result.details.get("workspaces")
        if workspaces is not None:
            instance.status.kcp_workspaces = [
                WorkspaceStatus(name=state.name, phase=state.phase.value) for state in workspaces
            ]


__all__ = ["PlatformMeshReconciler"]
