from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProviderConnection(_WireModel):
    secret: str = Field(..., alias="secretName", description="Destination secret holding the kubeconfig")
    path: str = Field(default="", alias="workspacePath", description="Workspace path the connection targets")
    capability_name: str = Field(
        default="",
        alias="capabilityName",
        description="APIExport whose permissions the scoped identity receives",
    )
    namespace: Optional[str] = Field(default=None, description="Namespace of the destination secret")
    external: bool = Field(default=False, description="Use the externally exposed KCP host")
    use_admin_credential: bool = Field(
        default=False,
        alias="useAdminCredential",
        description="Write a copy of the admin kubeconfig instead of a scoped one",
    )
    endpoint_slice_name: Optional[str] = Field(
        default=None,
        alias="endpointSliceName",
        description="APIExportEndpointSlice whose first endpoint becomes the server URL",
    )
    raw_path: Optional[str] = Field(default=None, alias="rawPath", description="URL path used verbatim")

    @property
    def scoped(self) -> bool:
        return not self.use_admin_credential and bool(self.capability_name or self.endpoint_slice_name)


class InitializerConnection(_WireModel):
    workspace_type_name: str = Field(..., alias="workspaceTypeName")
    path: str = Field(..., alias="workspacePath")
    secret: str = Field(default="", alias="secretName")
    namespace: Optional[str] = None


class DefaultAPIBindingConfiguration(_WireModel):
    workspace_type_path: str = Field(..., alias="workspaceTypePath")
    export: str
    path: str


class ExposureConfig(_WireModel):
    base_domain: str = Field(default="", alias="baseDomain")
    port: int = 0
    protocol: str = ""


class FeatureToggle(_WireModel):
    name: str = ""
    parameters: Dict[str, str] = Field(default_factory=dict)


class KcpSpec(_WireModel):
    provider_connections: List[ProviderConnection] = Field(default_factory=list, alias="providerConnections")
    extra_provider_connections: List[ProviderConnection] = Field(
        default_factory=list, alias="extraProviderConnections"
    )
    initializer_connections: List[InitializerConnection] = Field(
        default_factory=list, alias="initializerConnections"
    )
    extra_initializer_connections: List[InitializerConnection] = Field(
        default_factory=list, alias="extraInitializerConnections"
    )
    extra_default_api_bindings: List[DefaultAPIBindingConfiguration] = Field(
        default_factory=list, alias="extraDefaultAPIBindings"
    )


class PlatformMeshSpec(_WireModel):
    exposure: Optional[ExposureConfig] = None
    kcp: KcpSpec = Field(default_factory=KcpSpec)
    values: Dict[str, Any] = Field(default_factory=dict)
    feature_toggles: List[FeatureToggle] = Field(default_factory=list, alias="featureToggles")

    def feature_enabled(self, name: str) -> bool:
        return any(toggle.name == name for toggle in self.feature_toggles)


class WorkspaceStatus(_WireModel):
    name: str
    phase: str


class Condition(_WireModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""


class PlatformMeshStatus(_WireModel):
    conditions: List[Condition] = Field(default_factory=list)
    kcp_workspaces: List[WorkspaceStatus] = Field(default_factory=list, alias="kcpWorkspaces")

    def set_condition(self, condition: Condition) -> None:
        for index, existing in enumerate(self.conditions):
            if existing.type == condition.type:
                self.conditions[index] = condition
                return
        self.conditions.append(condition)


class PlatformMesh(_WireModel):
    """The declarative intent driving one reconciliation."""

    api_version: str = Field(default="core.platform-mesh.io/v1alpha1", alias="apiVersion")
    kind: str = "PlatformMesh"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    spec: PlatformMeshSpec = Field(default_factory=PlatformMeshSpec)
    status: PlatformMeshStatus = Field(default_factory=PlatformMeshStatus)

    @property
    def name(self) -> str:
        return str(self.metadata.get("name") or "")

    @property
    def namespace(self) -> str:
        return str(self.metadata.get("namespace") or "")

    def spec_document(self) -> Dict[str, Any]:
        return self.spec.model_dump(by_alias=True, exclude_none=True)


__all__ = [
    "Condition",
    "DefaultAPIBindingConfiguration",
    "ExposureConfig",
    "FeatureToggle",
    "InitializerConnection",
    "KcpSpec",
    "PlatformMesh",
    "PlatformMeshSpec",
    "PlatformMeshStatus",
    "ProviderConnection",
    "WorkspaceStatus",
]
