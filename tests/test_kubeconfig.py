import base64
import unittest

import yaml

from mesh_operator.common.errors import OperatorError
from mesh_operator.kube.client import Connection
from mesh_operator.kube.kubeconfig import (
    connection_from_admin_secret,
    copied_kubeconfig,
    dump_kubeconfig,
    kubeconfig_from_secret,
    kubeconfig_secret,
    load_kubeconfig,
    scoped_kubeconfig,
)


def b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class KubeconfigTests(unittest.TestCase):
    def test_scoped_kubeconfig_shape(self) -> None:
        document = scoped_kubeconfig("https://kcp.test/clusters/root", "tok", "CA")
        self.assertEqual(document["current-context"], "default-context")
        self.assertEqual(document["contexts"][0]["context"], {"cluster": "default-cluster", "user": "default-auth"})
        self.assertEqual(document["clusters"][0]["cluster"]["certificate-authority-data"], b64("CA"))
        self.assertEqual(document["users"][0]["user"], {"token": "tok"})

    def test_load_round_trips_copied_admin_config(self) -> None:
        admin = Connection(server="https://kcp.test:6443", ca_data="CA", cert_data="CERT", key_data="KEY")
        loaded = load_kubeconfig(dump_kubeconfig(copied_kubeconfig(admin)))
        self.assertEqual(loaded, admin)

    def test_load_selects_context(self) -> None:
        text = yaml.safe_dump(
            {
                "current-context": "a",
                "clusters": [
                    {"name": "ca", "cluster": {"server": "https://a"}},
                    {"name": "cb", "cluster": {"server": "https://b", "insecure-skip-tls-verify": True}},
                ],
                "users": [{"name": "ub", "user": {"token": "t"}}],
                "contexts": [
                    {"name": "a", "context": {"cluster": "ca"}},
                    {"name": "b", "context": {"cluster": "cb", "user": "ub"}},
                ],
            }
        )
        self.assertEqual(load_kubeconfig(text).server, "https://a")
        other = load_kubeconfig(text, context="b")
        self.assertEqual((other.server, other.token, other.insecure), ("https://b", "t", True))

    def test_invalid_kubeconfigs_are_terminal(self) -> None:
        for text in ("- a list\n", "clusters: []\n", "current-context: x\ncontexts: []\n", "{ broken"):
            with self.assertRaises(OperatorError) as ctx:
                load_kubeconfig(text)
            self.assertTrue(ctx.exception.terminal)

    def test_connection_from_admin_secret(self) -> None:
        secret = {"metadata": {"name": "admin"}, "data": {"ca.crt": b64("CA"), "tls.crt": b64("CERT"), "tls.key": b64("KEY")}}
        connection = connection_from_admin_secret(secret, "https://kcp.test")
        self.assertEqual(connection.server, "https://kcp.test")
        self.assertEqual(connection.key_data, "KEY")

        with self.assertRaises(OperatorError) as ctx:
            connection_from_admin_secret({"metadata": {"name": "admin"}, "data": {}}, "https://kcp.test")
        self.assertTrue(ctx.exception.retry)
        with self.assertRaises(OperatorError):
            connection_from_admin_secret({"metadata": {"name": "admin"}, "data": {"ca.crt": b64("CA")}}, "https://kcp.test")

    def test_secret_round_trip(self) -> None:
        secret = kubeconfig_secret("gw", "platform-mesh-system", "apiVersion: v1\n")
        self.assertEqual(secret["metadata"], {"name": "gw", "namespace": "platform-mesh-system"})
        self.assertEqual(kubeconfig_from_secret(secret), "apiVersion: v1\n")
        with self.assertRaises(OperatorError):
            kubeconfig_from_secret({"data": {}})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
