from __future__ import annotations

from pathlib import Path
from typing import Any
import re

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

import yaml

from .errors import ConfigError, toml_error
from .types import Scalar

NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
LINE_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*[:=]\s*(.*?)\s*$")


def load_variables(path: Path) -> dict[str, Scalar]:
    """Load a flat variable file (TOML, YAML or ``key = value`` lines)."""

    path = Path(path)
    if not path.is_file():
        raise ConfigError("variable file not found", path)
    suffix = path.suffix.lower()
    text = path.read_text()
    if suffix == ".toml":
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise toml_error(exc, path) from None
    elif suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            line = exc.problem_mark.line + 1 if getattr(exc, "problem_mark", None) else None
            raise ConfigError(f"invalid YAML: {exc}", path, line) from None
    else:
        data = _parse_lines(text, path)
    return validate_variables(data, path)


def validate_variables(data: Any, source: Any = None) -> dict[str, Scalar]:
    if not isinstance(data, dict):
        raise ConfigError("variables must be a mapping of name to value", source)
    variables: dict[str, Scalar] = {}
    for key, value in data.items():
        name = str(key)
        if not NAME_RE.match(name):
            raise ConfigError(f"invalid variable name '{name}'", source)
        if value is None:
            value = ""
        if not isinstance(value, (str, int, float, bool)):
            raise ConfigError(
                f"variable '{name}' must be a string or number, not {type(value).__name__}",
                source,
            )
        variables[name] = value
    return variables


def parse_assignment(text: str) -> tuple[str, Scalar]:
    """Parse a ``KEY=VALUE`` command line override."""

    key, sep, value = text.partition("=")
    key = key.strip()
    if not sep or not NAME_RE.match(key):
        raise ConfigError(f"extra variable '{text}' must be KEY=VALUE")
    return key, _coerce(value.strip())


def _parse_lines(text: str, path: Path) -> dict[str, Scalar]:
    data: dict[str, Scalar] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not stripped or stripped.startswith(("#", ";")):
            continue
        match = LINE_RE.match(raw)
        if not match:
            raise ConfigError(f"expected 'key = value' -> {stripped}", path, lineno)
        data[match.group(1)] = _coerce(match.group(2))
    return data


def _coerce(value: str) -> Scalar:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    if re.fullmatch(r"-?\d+", value):
        return int(value)
    return value
