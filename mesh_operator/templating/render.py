from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import jinja2
import yaml

from mesh_operator.common.errors import TemplateError

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    if isinstance(value, jinja2.Undefined) or value is None:
        return True
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def default_filter(value: Any, fallback: Any = "") -> Any:
    """Helm ``default``: any zero value (not just undefined) yields the fallback."""

    return fallback if _is_empty(value) else value


def to_yaml(value: Any) -> str:
    if isinstance(value, jinja2.Undefined) or value is None:
        return ""
    return yaml.safe_dump(value, sort_keys=False, default_flow_style=False).rstrip("\n")


def indent(text: Any, width: int = 0) -> str:
    pad = " " * int(width)
    return pad + str(text).replace("\n", "\n" + pad)


def nindent(text: Any, width: int = 0) -> str:
    return "\n" + indent(text, width)


def quote(value: Any) -> str:
    if isinstance(value, jinja2.Undefined) or value is None:
        return '""'
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def and_(*values: Any) -> Any:
    result: Any = True
    for value in values:
        result = value
        if _is_empty(value):
            return value
    return result


def or_(*values: Any) -> Any:
    result: Any = False
    for value in values:
        result = value
        if not _is_empty(value):
            return value
    return result


def not_(value: Any) -> bool:
    return _is_empty(value)


def coalesce(*values: Any) -> Any:
    for value in values:
        if not _is_empty(value):
            return value
    return None


def build_environment() -> jinja2.Environment:
    env = jinja2.Environment(
        undefined=jinja2.ChainableUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters.update(
        {
            "default": default_filter,
            "toYaml": to_yaml,
            "to_yaml": to_yaml,
            "indent": indent,
            "nindent": nindent,
            "quote": quote,
        }
    )
    env.globals.update({"and_": and_, "or_": or_, "not_": not_, "coalesce": coalesce})
    return env


class TemplateRenderer:
    """Renders manifest templates into API objects."""

    def __init__(self, environment: Optional[jinja2.Environment] = None) -> None:
        self.environment = environment or build_environment()

    def render_text(self, text: str, variables: Dict[str, Any], *, source: str = "<template>") -> str:
        try:
            return self.environment.from_string(text).render(**variables)
        except (jinja2.TemplateError, TypeError, ValueError, ArithmeticError) as exc:
            raise TemplateError(f"rendering {source}: {exc}") from exc

    def render(self, text: str, variables: Dict[str, Any], *, source: str = "<template>") -> List[Dict[str, Any]]:
        """Render ``text`` and parse it; an empty rendering yields no objects."""

        rendered = self.render_text(text, variables, source=source)
        if not rendered.strip():
            logger.debug("template %s rendered empty, skipping", source)
            return []
        try:
            documents = list(yaml.safe_load_all(rendered))
        except yaml.YAMLError as exc:
            raise TemplateError(f"parsing rendered {source}: {exc}") from exc
        objects: List[Dict[str, Any]] = []
        for document in documents:
            if document is None:
                continue
            if not isinstance(document, dict):
                raise TemplateError(f"rendered {source} is not a mapping")
            objects.append(document)
        return objects

    def render_file(self, path: Path, variables: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise TemplateError(f"reading template {path}: {exc}") from exc
        return self.render(text, variables, source=str(path))


__all__ = [
    "TemplateRenderer",
    "and_",
    "build_environment",
    "coalesce",
    "default_filter",
    "indent",
    "nindent",
    "not_",
    "or_",
    "quote",
    "to_yaml",
]
