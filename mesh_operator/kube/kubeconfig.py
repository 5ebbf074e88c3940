from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

import yaml

from mesh_operator.common.errors import OperatorError
from mesh_operator.kube.client import Connection

KUBECONFIG_KEY = "kubeconfig"
ADMIN_SECRET_KEYS = ("ca.crt", "tls.crt", "tls.key")


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _unb64(value: str, what: str) -> str:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise OperatorError.terminal_error(f"invalid base64 in {what}: {exc}") from exc


def kubeconfig_document(connection: Connection, *, cluster: str, user: str, context: str) -> Dict[str, Any]:
    cluster_entry: Dict[str, Any] = {"server": connection.server}
    if connection.ca_data:
        cluster_entry["certificate-authority-data"] = _b64(connection.ca_data)
    if connection.insecure:
        cluster_entry["insecure-skip-tls-verify"] = True
    user_entry: Dict[str, Any] = {}
    if connection.token:
        user_entry["token"] = connection.token
    if connection.cert_data:
        user_entry["client-certificate-data"] = _b64(connection.cert_data)
    if connection.key_data:
        user_entry["client-key-data"] = _b64(connection.key_data)
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": cluster, "cluster": cluster_entry}],
        "users": [{"name": user, "user": user_entry}],
        "contexts": [{"name": context, "context": {"cluster": cluster, "user": user}}],
        "current-context": context,
    }


def scoped_kubeconfig(server: str, token: str, ca_data: Optional[str]) -> Dict[str, Any]:
    """One cluster, one bearer-token user and one context."""

    return kubeconfig_document(
        Connection(server=server, token=token, ca_data=ca_data),
        cluster="default-cluster",
        user="default-auth",
        context="default-context",
    )


def copied_kubeconfig(connection: Connection) -> Dict[str, Any]:
    return kubeconfig_document(connection, cluster="default-cluster", user="default-auth", context="default-context")


def dump_kubeconfig(document: Dict[str, Any]) -> str:
    return yaml.safe_dump(document, sort_keys=False)


def load_kubeconfig(text: str, context: Optional[str] = None) -> Connection:
    """Parse a kubeconfig and return the connection of ``context`` (default: current)."""

    try:
        document = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise OperatorError.terminal_error(f"invalid kubeconfig: {exc}") from exc
    if not isinstance(document, dict):
        raise OperatorError.terminal_error("invalid kubeconfig: top level is not a mapping")

    def named(section: str, name: str) -> Dict[str, Any]:
        for entry in document.get(section) or []:
            if isinstance(entry, dict) and entry.get("name") == name:
                return entry
        raise OperatorError.terminal_error(f"invalid kubeconfig: {section} entry {name!r} not found")

    context_name = context or document.get("current-context")
    if not context_name:
        raise OperatorError.terminal_error("invalid kubeconfig: no current-context")
    ctx = named("contexts", context_name).get("context") or {}
    cluster = named("clusters", ctx.get("cluster", "")).get("cluster") or {}
    user: Dict[str, Any] = {}
    if ctx.get("user"):
        user = named("users", ctx["user"]).get("user") or {}
    if not cluster.get("server"):
        raise OperatorError.terminal_error(f"invalid kubeconfig: cluster of context {context_name!r} has no server")

    ca_data = cluster.get("certificate-authority-data")
    cert_data = user.get("client-certificate-data")
    key_data = user.get("client-key-data")
    return Connection(
        server=str(cluster["server"]),
        token=user.get("token"),
        ca_data=_unb64(ca_data, "certificate-authority-data") if ca_data else None,
        cert_data=_unb64(cert_data, "client-certificate-data") if cert_data else None,
        key_data=_unb64(key_data, "client-key-data") if key_data else None,
        insecure=bool(cluster.get("insecure-skip-tls-verify")),
    )


def connection_from_admin_secret(secret: Dict[str, Any], server: str) -> Connection:
    name = (secret.get("metadata") or {}).get("name", "")
    data = secret.get("data") or {}
    if not data:
        raise OperatorError(f"secret {name} has no data", retry=True)
    values: Dict[str, str] = {}
    for key in ADMIN_SECRET_KEYS:
        if not data.get(key):
            raise OperatorError(f"secret {name} missing or empty key {key!r}", retry=True)
        values[key] = _unb64(data[key], f"secret {name} key {key}")
    return Connection(server=server, ca_data=values["ca.crt"], cert_data=values["tls.crt"], key_data=values["tls.key"])


def kubeconfig_secret(name: str, namespace: str, kubeconfig: str) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "type": "Opaque",
        "data": {KUBECONFIG_KEY: _b64(kubeconfig)},
    }


def kubeconfig_from_secret(secret: Dict[str, Any]) -> str:
    data = secret.get("data") or {}
    if KUBECONFIG_KEY not in data:
        raise OperatorError.terminal_error("secret has no kubeconfig key")
    return _unb64(data[KUBECONFIG_KEY], KUBECONFIG_KEY)


__all__ = [
    "ADMIN_SECRET_KEYS",
    "KUBECONFIG_KEY",
    "connection_from_admin_secret",
    "copied_kubeconfig",
    "dump_kubeconfig",
    "kubeconfig_document",
    "kubeconfig_from_secret",
    "kubeconfig_secret",
    "load_kubeconfig",
    "scoped_kubeconfig",
]
