"""
Validation message renderers.

``BasicTemplateRenderer`` substitutes ``{{ name }}`` placeholders and leaves
unknown placeholders untouched. ``Jinja2TemplateRenderer`` renders full
Jinja2 templates inside a sandboxed environment.
"""

import re
from functools import lru_cache
from typing import Any, Mapping

from jinja2 import StrictUndefined, Undefined
from jinja2.sandbox import SandboxedEnvironment

from ..shared.errors import ConfigurationError
from .base import TemplateRenderer

_VAR_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class BasicTemplateRenderer(TemplateRenderer):
    """Case-insensitive ``{{name}}`` substitution."""

    def render(self, template: str, bindings: Mapping[str, Any]) -> str:
        lookup = {str(key).lower(): value for key, value in bindings.items()}

        def repl(m: re.Match) -> str:
            key = m.group(1).lower()
            if key not in lookup:
                return m.group(0)
            value = lookup[key]
            return "" if value is None else str(value)

        return _VAR_RE.sub(repl, template)


class Jinja2TemplateRenderer(TemplateRenderer):
    """Sandboxed Jinja2 rendering."""

    def __init__(self, strict: bool = False):
        self.environment = SandboxedEnvironment(
            undefined=StrictUndefined if strict else Undefined,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        self._template = lru_cache(maxsize=256)(self.environment.from_string)

    def render(self, template: str, bindings: Mapping[str, Any]) -> str:
        return self._template(template).render(dict(bindings))


def get_template_renderer(name: str) -> TemplateRenderer:
    """Resolve a renderer from its configured name."""
    if name == "jinja2":
        return Jinja2TemplateRenderer()
    if name == "basic":
        return BasicTemplateRenderer()
    raise ConfigurationError(f"Unknown template engine '{name}'", {"template_engine": name})
