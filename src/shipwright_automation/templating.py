"""Jinja2 rendering of task parameters against the flat variable set."""

from __future__ import annotations

from typing import Any, Iterable
import re

import jinja2
from jinja2 import meta, nodes

from .errors import ConfigError

DEFAULT_FILTERS = {"default", "d"}

_environment = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


def looks_like_template(text: str) -> bool:
    return bool(re.search(r"{[{%]", text))


def referenced_names(value: Any) -> set[str]:
    """Return every variable name referenced by strings inside ``value``.

    Names passed straight through the ``default`` filter are left out; any
    other use of them still fails when the value is rendered.
    """

    names: set[str] = set()
    for text in _strings(value):
        if not looks_like_template(text):
            continue
        try:
            ast = _environment.parse(text)
        except jinja2.TemplateSyntaxError as exc:
            raise ConfigError(f"invalid template '{text}': {exc.message}") from None
        names |= meta.find_undeclared_variables(ast) - _defaulted_names(ast)
    return names


def _defaulted_names(ast: nodes.Template) -> set[str]:
    return {
        node.node.name
        for node in ast.find_all(nodes.Filter)
        if node.name in DEFAULT_FILTERS and isinstance(node.node, nodes.Name)
    }


def render_value(value: Any, context: dict[str, Any]) -> Any:
    if isinstance(value, str):
        if not looks_like_template(value):
            return value
        try:
            return _environment.from_string(value).render(**context)
        except jinja2.UndefinedError as exc:
            raise ConfigError(f"undefined variable in '{value}': {exc.message}") from None
        except jinja2.TemplateSyntaxError as exc:
            raise ConfigError(f"invalid template '{value}': {exc.message}") from None
    if isinstance(value, dict):
        return {k: render_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, context) for v in value]
    return value


def _strings(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _strings(item)
