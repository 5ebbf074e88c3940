from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from mesh_operator.api.types import PlatformMesh
from mesh_operator.applier.applier import Applier
from mesh_operator.bootstrap.inventory import IdentityInventory, collect_identity_inventory
from mesh_operator.bootstrap.structure import DirectoryStructure, WorkspaceNode
from mesh_operator.bootstrap.variables import template_variables
from mesh_operator.common.config import OperatorConfig, OperatorDefaults
from mesh_operator.common.errors import ApiError, OperatorError, Result, is_not_found
from mesh_operator.common.objects import get_path
from mesh_operator.merge.merge import FieldPolicy
from mesh_operator.templating.render import TemplateRenderer

logger = logging.getLogger(__name__)

WORKSPACE_API_VERSION = "tenancy.kcp.io/v1alpha1"
READY_PHASE = "Ready"


class NodePhase(str, Enum):
    PENDING = "Pending"
    AWAITING_READY = "AwaitingReady"
    APPLYING = "Applying"
    READY = "Ready"
    FAILED = "Failed"


@dataclass
class NodeState:
    name: str
    phase: NodePhase = NodePhase.PENDING
    message: str = ""


def append_extra_api_bindings(obj: Dict[str, Any], workspace: str, instance: PlatformMesh) -> None:
    """Add configured default API bindings to a WorkspaceType declared in ``workspace``."""

    name = get_path(obj, ("metadata", "name"), "")
    type_path = f"{workspace}:{name}"
    extras = [
        {"export": binding.export, "path": binding.path}
        for binding in instance.spec.kcp.extra_default_api_bindings
        if binding.workspace_type_path == type_path
    ]
    if not extras:
        return
    spec = obj.setdefault("spec", {})
    bindings = spec.get("defaultAPIBindings")
    if not isinstance(bindings, list):
        bindings = []
    spec["defaultAPIBindings"] = bindings + extras


class WorkspaceBootstrapper:
    """Creates the workspace tree node by node, yielding a requeue while a workspace is not ready."""

    def __init__(
        self,
        factory: Any,
        config: Optional[OperatorConfig] = None,
        defaults: Optional[OperatorDefaults] = None,
        *,
        renderer: Optional[TemplateRenderer] = None,
        policies: Optional[Mapping[Tuple[str, str], FieldPolicy]] = None,
        require_identities: bool = False,
    ) -> None:
        self.factory = factory
        self.config = config or OperatorConfig()
        self.defaults = defaults or OperatorDefaults()
        self.renderer = renderer or TemplateRenderer()
        self.policies = policies
        self.require_identities = require_identities

    def refresh_inventory(self) -> IdentityInventory:
        with self.factory.for_path(self.defaults.identity_workspace) as client:
            return collect_identity_inventory(
                client, self.defaults.identity_exports, workspace=self.defaults.identity_workspace
            )

    def run(self, instance: PlatformMesh, structure: DirectoryStructure) -> Result:
        states = [NodeState(node.name) for node in structure.workspaces]
        try:
            inventory = self.refresh_inventory()
        except OperatorError as exc:
            return Result.failed(OperatorError.wrap("refreshing identity inventory", exc), workspaces=states)
        if inventory.error is not None:
            if self.require_identities:
                return Result.failed(inventory.error, workspaces=states)
            logger.warning("continuing with partial identity inventory: %s", inventory.error)
        variables = template_variables(instance, inventory)

        for node, state in zip(structure.workspaces, states):
            try:
                state.phase = NodePhase.AWAITING_READY
                phase = self.workspace_phase(node)
                if phase != READY_PHASE:
                    state.message = f"workspace phase is {phase or 'unknown'}"
                    logger.info(
                        "workspace %s not ready (%s), requeue in %ss",
                        node.name,
                        phase or "not found",
                        self.config.requeue_delay_seconds,
                    )
                    return Result.requeue(self.config.requeue_delay_seconds, workspaces=states)
                state.phase = NodePhase.APPLYING
                self.apply_node(node, variables, instance)
            except OperatorError as exc:
                state.phase = NodePhase.FAILED
                state.message = str(exc)
                return Result.failed(exc, workspaces=states)
            state.phase = NodePhase.READY
        return Result(details={"workspaces": states})

    def workspace_phase(self, node: WorkspaceNode) -> Optional[str]:
        """Phase of the node's Workspace object, looked up in its parent; the root is always ready."""

        if node.parent is None:
            return READY_PHASE
        with self.factory.for_path(node.parent) as client:
            try:
                workspace = client.get(WORKSPACE_API_VERSION, "Workspace", node.leaf)
            except ApiError as exc:
                if is_not_found(exc):
                    return None
                raise OperatorError.wrap(f"getting workspace {node.name}", exc) from exc
        return get_path(workspace, ("status", "phase"))

    def apply_node(self, node: WorkspaceNode, variables: Dict[str, Any], instance: PlatformMesh) -> None:
        failures: List[Tuple[str, OperatorError]] = []
        skip_content = variables.get("featureDisableContentConfigurations") == "true"
        with self.factory.for_path(node.name) as client:
            applier = Applier(client, self.config.field_manager, policies=self.policies)
            for path in node.files:
                try:
                    objects = self.renderer.render_file(path, variables)
                except OperatorError as exc:
                    logger.warning("rendering %s failed, continuing with next file: %s", path, exc)
                    failures.append((str(path), exc))
                    continue
                for obj in objects:
                    kind = obj.get("kind")
                    if kind == "ContentConfiguration" and skip_content:
                        logger.debug("skipping ContentConfiguration from %s (feature toggle)", path)
                        continue
                    if kind == "WorkspaceType":
                        append_extra_api_bindings(obj, node.name, instance)
                    result = applier.apply(obj)
                    if result.error is not None:
                        failures.append((str(path), result.error))
                    else:
                        logger.info("applied %s %s from %s (%s)", kind, get_path(obj, ("metadata", "name")), path, result.outcome.value)
        if failures:
            summary = "; ".join(f"{path}: {error}" for path, error in failures)
            raise OperatorError(
                f"applying manifests in workspace {node.name} failed: {summary}",
                retry=all(error.retry for _, error in failures),
                terminal=any(error.terminal for _, error in failures),
            )


__all__ = ["NodePhase", "NodeState", "WorkspaceBootstrapper", "append_extra_api_bindings"]
