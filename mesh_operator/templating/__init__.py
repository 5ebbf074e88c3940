"""Manifest template rendering."""

from .render import TemplateRenderer

__all__ = ["TemplateRenderer"]
