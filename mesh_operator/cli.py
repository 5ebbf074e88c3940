from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from mesh_operator.api.types import PlatformMesh
from mesh_operator.bootstrap.structure import DirectoryStructure, discover_structure, load_structure_file
from mesh_operator.bootstrap.variables import template_variables
from mesh_operator.common.config import OperatorConfig, OperatorDefaults
from mesh_operator.common.errors import OperatorError, Result
from mesh_operator.credentials.rbac import rules_from_api_export
from mesh_operator.kube.client import KubeClient
from mesh_operator.kube.kubeconfig import load_kubeconfig
from mesh_operator.reconciler.reconciler import PlatformMeshReconciler
from mesh_operator.templating.render import TemplateRenderer

app = typer.Typer(help="Bootstrap KCP workspaces and provider credentials for PlatformMesh instances.")


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(levelname)s: %(message)s")


def _load_yaml(path: Path, what: str) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise typer.BadParameter(f"{what} file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"{what} file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{what} file must contain a mapping")
    return data


def _load_instance(path: Path) -> PlatformMesh:
    return PlatformMesh.model_validate(_load_yaml(path, "Instance"))


def _load_structure(structure: Optional[Path], workspace_dir: Optional[Path], config: OperatorConfig) -> DirectoryStructure:
    try:
        if structure is not None:
            return load_structure_file(structure)
        return discover_structure(workspace_dir or Path(config.workspace_dir))
    except OperatorError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _run_instance(
    reconciler: PlatformMeshReconciler,
    instance: PlatformMesh,
    *,
    loop: bool,
    max_passes: int,
    cancel: threading.Event,
) -> Result:
    result = reconciler.reconcile(instance, cancel=cancel)
    passes = 1
    while loop and passes < max_passes and not cancel.is_set():
        if result.requeue_after is not None:
            time.sleep(result.requeue_after)
        elif result.error is not None and result.error.retry:
            time.sleep(reconciler.config.requeue_delay_seconds)
        else:
            break
        result = reconciler.reconcile(instance, cancel=cancel)
        passes += 1
    return result


def _summary(path: Path, instance: PlatformMesh, result: Result) -> Dict[str, Any]:
    return {
        "instance": str(path),
        "ok": result.ok,
        "requeue_after": result.requeue_after,
        "error": str(result.error) if result.error is not None else None,
        "terminal": bool(result.error is not None and result.error.terminal),
        "status": instance.status.model_dump(by_alias=True),
    }


@app.command()
def reconcile(
    instances: List[Path] = typer.Option(
        ...,
        "--instance",
        "-i",
        help="PlatformMesh instance YAML file (repeatable).",
    ),
    kubeconfig: Path = typer.Option(
        ...,
        "--kubeconfig",
        "-k",
        help="Kubeconfig of the cluster hosting KCP and the provider secrets.",
    ),
    structure: Optional[Path] = typer.Option(
        None,
        "--structure",
        "-s",
        help="YAML file listing workspaces and their manifest files.",
    ),
    workspace_dir: Optional[Path] = typer.Option(
        None,
        "--workspace-dir",
        "-w",
        help="Directory tree of manifests (NN-name subdirectories become workspaces).",
    ),
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Where to write the per-instance results as JSON.",
    ),
    jobs: int = typer.Option(
        1,
        "--jobs",
        "-j",
        min=1,
        help="Number of instances reconciled in parallel.",
    ),
    loop: bool = typer.Option(
        False,
        "--loop/--no-loop",
        help="Keep reconciling while a pass asks to be requeued.",
    ),
    max_passes: int = typer.Option(
        20,
        "--max-passes",
        min=1,
        help="Upper bound on passes per instance when looping.",
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    _configure_logging(log_level)
    config = OperatorConfig.from_env()
    defaults = OperatorDefaults()
    tree = _load_structure(structure, workspace_dir, config)
    try:
        connection = load_kubeconfig(kubeconfig.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise typer.BadParameter(f"Kubeconfig not found: {kubeconfig}") from exc
    except OperatorError as exc:
        raise typer.BadParameter(str(exc)) from exc
    loaded = [(path, _load_instance(path)) for path in instances]

    cancel = threading.Event()
    results: List[Dict[str, Any]] = []
    with KubeClient(connection, timeout=config.request_timeout_seconds, cancel=cancel) as infra_client:
        reconciler = PlatformMeshReconciler(infra_client, tree, config, defaults)
        try:
            with ThreadPoolExecutor(max_workers=min(jobs, len(loaded))) as executor:
                futures = [
                    (path, instance, executor.submit(
                        _run_instance, reconciler, instance, loop=loop, max_passes=max_passes, cancel=cancel
                    ))
                    for path, instance in loaded
                ]
                for path, instance, future in futures:
                    results.append(_summary(path, instance, future.result()))
        except KeyboardInterrupt:  # pragma: no cover - interactive
            cancel.set()
            raise

    payload = json.dumps(results, indent=2)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload, encoding="utf-8")
        typer.echo(f"Reconciled {len(results)} instance(s) to {out.resolve()}")
    else:
        typer.echo(payload)
    if any(not item["ok"] for item in results):
        raise typer.Exit(code=1)


@app.command()
def render(
    template: Path = typer.Option(..., "--template", "-t", help="Manifest template to render."),
    instance: Optional[Path] = typer.Option(None, "--instance", "-i", help="PlatformMesh instance YAML file."),
) -> None:
    subject = _load_instance(instance) if instance is not None else PlatformMesh()
    try:
        objects = TemplateRenderer().render_file(template, template_variables(subject))
    except OperatorError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if not objects:
        typer.echo(f"{template} renders empty and would be skipped")
        return
    typer.echo(yaml.safe_dump_all(objects, sort_keys=False), nl=False)


@app.command()
def rbac(
    export: Path = typer.Option(..., "--export", "-e", help="APIExport YAML document."),
) -> None:
    rules = rules_from_api_export(_load_yaml(export, "APIExport"))
    typer.echo(yaml.safe_dump({"rules": [rule.to_dict() for rule in rules]}, sort_keys=False), nl=False)


if __name__ == "__main__":  # pragma: no cover
    app()
