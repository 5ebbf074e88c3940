from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from mesh_operator.common.errors import ApiError, CancelledError, OperatorError
from mesh_operator.common.objects import get_path

logger = logging.getLogger(__name__)

APIEXPORT_API_VERSION = "apis.kcp.io/v1alpha1"


@dataclass
class IdentityInventory:
    """Identity hashes of well-known APIExports; failed lookups map to ``""``."""

    workspace: str
    hashes: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def error(self) -> Optional[OperatorError]:
        if not self.failures:
            return None
        summary = "; ".join(f"{name}: {reason}" for name, reason in sorted(self.failures.items()))
        return OperatorError(f"identity lookup failed for {len(self.failures)} export(s): {summary}", retry=True)

    def template_variables(self) -> Dict[str, Any]:
        variables: Dict[str, Any] = {"identityHashes": dict(self.hashes)}
        for name, value in self.hashes.items():
            variables[alias_for(self.workspace, name)] = value
        return variables


def alias_for(workspace: str, export_name: str) -> str:
    """``root`` + ``tenancy.kcp.io`` -> ``apiExportRootTenancyKcpIoIdentityHash``."""

    words = re.split(r"[^a-zA-Z0-9]+", f"{workspace}.{export_name}")
    return "apiExport" + "".join(word[:1].upper() + word[1:] for word in words if word) + "IdentityHash"


def collect_identity_inventory(client: Any, names: Iterable[str], workspace: str = "root") -> IdentityInventory:
    """Look up each export independently; one failure never stops the others."""

    inventory = IdentityInventory(workspace=workspace)
    for name in names:
        try:
            export = client.get(APIEXPORT_API_VERSION, "APIExport", name)
        except CancelledError:
            raise
        except (ApiError, OperatorError) as exc:
            logger.warning("looking up identity of APIExport %s failed: %s", name, exc)
            inventory.hashes[name] = ""
            inventory.failures[name] = str(exc)
            continue
        identity = get_path(export, ("status", "identityHash"))
        if not identity:
            inventory.hashes[name] = ""
            inventory.failures[name] = "status.identityHash not set"
            continue
        inventory.hashes[name] = str(identity)
    return inventory


__all__ = ["APIEXPORT_API_VERSION", "IdentityInventory", "alias_for", "collect_identity_inventory"]
