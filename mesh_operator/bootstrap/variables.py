from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from mesh_operator.api.types import ExposureConfig, PlatformMesh
from mesh_operator.bootstrap.inventory import IdentityInventory

DISABLE_CONTENT_CONFIGURATIONS = "feature-disable-contentconfigurations"


def exposure_settings(exposure: Optional[ExposureConfig]) -> Tuple[str, str, int, str]:
    """Return ``(baseDomain, baseDomainPort, port, protocol)`` with built-in fallbacks."""

    base_domain, port, protocol = "portal.localhost", 8443, "https"
    if exposure is not None:
        base_domain = exposure.base_domain or base_domain
        port = exposure.port or port
        protocol = exposure.protocol or protocol
    base_domain_port = base_domain if port in (80, 443) else f"{base_domain}:{port}"
    return base_domain, base_domain_port, port, protocol


def template_variables(instance: PlatformMesh, inventory: Optional[IdentityInventory] = None) -> Dict[str, Any]:
    base_domain, base_domain_port, port, protocol = exposure_settings(instance.spec.exposure)
    variables: Dict[str, Any] = {
        "spec": instance.spec_document(),
        "values": instance.spec.values,
        "baseDomain": base_domain,
        "baseDomainPort": base_domain_port,
        "port": str(port),
        "protocol": protocol,
        "helmReleaseNamespace": instance.namespace,
        "featureDisableContentConfigurations": "true"
        if instance.spec.feature_enabled(DISABLE_CONTENT_CONFIGURATIONS)
        else "false",
    }
    if inventory is not None:
        variables.update(inventory.template_variables())
    return variables


__all__ = ["DISABLE_CONTENT_CONFIGURATIONS", "exposure_settings", "template_variables"]
