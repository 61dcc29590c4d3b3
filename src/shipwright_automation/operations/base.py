from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional

from ..errors import ConfigError
from ..executors import CommandResult, Executor
from ..types import ActionResult, HostConfig


class Operation(ABC):
    """Shared surface for runnable deployment steps."""

    action = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        """Perform the operation against ``host`` using ``executor``."""

    def result(self, host: HostConfig, *, changed: bool, details: str, **extra: Any) -> ActionResult:
        return ActionResult(host=host.name, action=self.action, changed=changed, details=details, **extra)

    def require(self, *keys: str) -> Any:
        for key in keys:
            value = self.spec.get(key)
            if value not in (None, "", []):
                return value
        raise ConfigError(f"{self.action} operation requires '{keys[0]}'")

    @property
    def plan_dir(self) -> Optional[Path]:
        raw = self.spec.get("_plan_dir")
        return Path(str(raw)) if raw else None


def to_bool(value: Any | None) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1", "on"}:
            return True
        if lowered in {"false", "no", "0", "off", ""}:
            return False
        raise ConfigError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


def bool_with_default(value: Any | None, default: bool) -> bool:
    result = to_bool(value)
    return default if result is None else bool(result)


def string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, Iterable):
        return [str(v) for v in value]
    return [str(value)]


def normalize_env(value: Any, action: str) -> Optional[dict[str, str]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
        env: dict[str, str] = {}
        for item in value:
            key, sep, val = str(item).partition("=")
            if not sep:
                raise ConfigError("env list entries must be KEY=VALUE")
            env[key] = val
        return env
    raise ConfigError(f"{action} env must be a mapping or list of KEY=VALUE strings")


def normalize_timeout(value: Any, action: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{action} timeout must be numeric") from exc


def summarize_output(result: CommandResult) -> Optional[str]:
    for text in (result.stderr, result.stdout):
        if not text:
            continue
        stripped = text.strip()
        if not stripped:
            continue
        line = stripped.splitlines()[-1]
        return (line[:157] + "...") if len(line) > 160 else line
    return None
