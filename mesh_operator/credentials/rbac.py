from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from mesh_operator.common.objects import get_path

logger = logging.getLogger(__name__)

STATUS_VERBS = ("get", "update", "patch")
READ_VERBS = ("get", "list", "watch")
WRITE_VERBS = {"*", "update", "patch"}
DISCOVERY_URLS = ("/api", "/api/*", "/apis", "/apis/*", "/clusters/*")


@dataclass(frozen=True)
class PolicyRule:
    api_groups: Tuple[str, ...] = ()
    resources: Tuple[str, ...] = ()
    verbs: Tuple[str, ...] = ()
    resource_names: Tuple[str, ...] = ()
    non_resource_urls: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        rule: Dict[str, Any] = {}
        if self.non_resource_urls:
            rule["nonResourceURLs"] = list(self.non_resource_urls)
        else:
            rule["apiGroups"] = list(self.api_groups)
            rule["resources"] = list(self.resources)
        if self.resource_names:
            rule["resourceNames"] = list(self.resource_names)
        rule["verbs"] = list(self.verbs)
        return rule


def _resource_rules(group: str, resource: str, verbs: Sequence[str], *, with_status: bool) -> List[PolicyRule]:
    rules = [PolicyRule(api_groups=(group,), resources=(resource,), verbs=tuple(verbs))]
    if with_status:
        rules.append(PolicyRule(api_groups=(group,), resources=(f"{resource}/status",), verbs=STATUS_VERBS))
    return rules


def rules_from_api_export(export: Dict[str, Any]) -> List[PolicyRule]:
    """Derive the rules a provider needs to serve ``export``.

    Pure: the same export always yields the same list. Exported resources get
    full access plus status updates; permission claims get their declared
    verbs (all verbs when none are declared) and status updates when a write
    verb is present. Static rules cover the export's content endpoint,
    endpoint slices, bindings and discovery.
    """

    name = get_path(export, ("metadata", "name"), "") or ""
    rules: List[PolicyRule] = []
    for resource in get_path(export, ("spec", "resources"), []) or []:
        group = str(resource.get("group") or "")
        rules.extend(_resource_rules(group, str(resource.get("name") or ""), ("*",), with_status=True))

    for claim in get_path(export, ("spec", "permissionClaims"), []) or []:
        group = str(claim.get("group") or "")
        resource = str(claim.get("resource") or "")
        verbs = tuple(claim.get("verbs") or ())
        if not verbs:
            logger.warning("permission claim %s.%s of %s declares no verbs, granting all", resource, group, name)
            verbs = ("*",)
        rules.extend(_resource_rules(group, resource, verbs, with_status=bool(WRITE_VERBS.intersection(verbs))))

    if name:
        rules.append(
            PolicyRule(api_groups=("apis.kcp.io",), resources=("apiexports/content",), verbs=("*",), resource_names=(name,))
        )
    rules.append(PolicyRule(api_groups=("apis.kcp.io",), resources=("apiexportendpointslices",), verbs=READ_VERBS))
    rules.append(PolicyRule(api_groups=("apis.kcp.io",), resources=("apibindings",), verbs=READ_VERBS))
    rules.append(PolicyRule(non_resource_urls=DISCOVERY_URLS, verbs=("get",)))
    return rules


__all__ = ["DISCOVERY_URLS", "PolicyRule", "rules_from_api_export"]
