import tempfile
import unittest
from pathlib import Path

from mesh_operator.bootstrap.structure import (
    WorkspaceNode,
    discover_structure,
    is_workspace_dir,
    load_structure,
    load_structure_file,
    workspace_name,
)
from mesh_operator.common.errors import OperatorError


class StructureTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self.tmpdir.name)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _touch(self, relative: str) -> Path:
        path = self.base / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("kind: ConfigMap\n", encoding="utf-8")
        return path

    def test_workspace_dir_names(self) -> None:
        self.assertTrue(is_workspace_dir("01-platform-mesh-system"))
        self.assertFalse(is_workspace_dir("platform-mesh-system"))
        self.assertFalse(is_workspace_dir("1-short"))
        self.assertEqual(workspace_name("setup/02-orgs"), "orgs")
        with self.assertRaises(ValueError):
            workspace_name("orgs")

    def test_discover_walks_depth_first(self) -> None:
        self._touch("b.yaml")
        self._touch("a.yaml")
        self._touch("01-platform-mesh-system/x.yaml")
        self._touch("01-platform-mesh-system/01-inner/y.yaml")
        self._touch("02-orgs/z.yaml")
        self._touch("notes/ignored.yaml")

        structure = discover_structure(self.base)
        self.assertEqual(
            structure.names(),
            ["root", "root:platform-mesh-system", "root:platform-mesh-system:inner", "root:orgs"],
        )
        self.assertEqual([path.name for path in structure.workspaces[0].files], ["a.yaml", "b.yaml"])

    def test_discover_missing_directory(self) -> None:
        with self.assertRaises(OperatorError):
            discover_structure(self.base / "missing")

    def test_load_structure_resolves_relative_files(self) -> None:
        document = {"workspaces": [{"name": "root", "files": ["a.yaml"]}, {"name": "root:orgs"}]}
        structure = load_structure(document, self.base)
        self.assertEqual(structure.workspaces[0].files, [self.base / "a.yaml"])
        self.assertEqual(structure.workspaces[1].files, [])

    def test_load_structure_file(self) -> None:
        path = self.base / "structure.yaml"
        path.write_text("workspaces:\n  - name: root\n    files: [root.yaml]\n", encoding="utf-8")
        structure = load_structure_file(path)
        self.assertEqual(structure.workspaces[0].files, [self.base / "root.yaml"])
        path.write_text("- not a mapping\n", encoding="utf-8")
        with self.assertRaises(OperatorError):
            load_structure_file(path)

    def test_node_parent_and_leaf(self) -> None:
        node = WorkspaceNode("root:orgs:acme")
        self.assertEqual(node.parent, "root:orgs")
        self.assertEqual(node.leaf, "acme")
        self.assertIsNone(WorkspaceNode("root").parent)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
