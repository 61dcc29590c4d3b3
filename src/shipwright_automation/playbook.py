from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

import yaml

from .errors import ConfigError, toml_error
from .operations import OPERATION_REGISTRY
from .operations.base import to_bool
from .secrets import SecretResolver
from .types import HostConfig, Plan, Play, Scalar, TaskSpec
from .variables import load_variables, validate_variables

RESERVED_TASK_KEYS = {"type", "label", "best_effort", "ignore_errors"}


class PlaybookLoader:
    """Loads the ordered task list and binds it to an inventory."""

    def __init__(self, secret_resolver: Optional[SecretResolver] = None):
        self.secret_resolver = secret_resolver or SecretResolver()

    def load(
        self,
        path: Path,
        hosts: dict[str, HostConfig],
        *,
        var_files: Iterable[Path] = (),
        extra_vars: Optional[dict[str, Scalar]] = None,
    ) -> Plan:
        path = Path(path)
        data = self._read(path)
        base_dir = path.parent

        variables: dict[str, Scalar] = {}
        for var_file in var_files:
            variables.update(load_variables(Path(var_file)))
        raw_files = data.get("vars_files", [])
        if isinstance(raw_files, str):
            raw_files = [raw_files]
        for var_file in raw_files:
            variables.update(load_variables(base_dir / str(var_file)))
        variables.update(validate_variables(data.get("vars") or {}, path))
        variables = self.secret_resolver.resolve(variables)
        overrides = self.secret_resolver.resolve(dict(extra_vars or {}))
        for host in hosts.values():
            host.variables = self.secret_resolver.resolve(host.variables)

        if "plays" in data:
            raw_plays = data["plays"]
            if not isinstance(raw_plays, list):
                raise ConfigError("'plays' must be a list", path)
        elif "tasks" in data:
            raw_plays = [{"name": data.get("name", path.stem), "hosts": data.get("hosts", "all"), "tasks": data["tasks"]}]
        else:
            raise ConfigError("playbook defines neither 'plays' nor 'tasks'", path)

        plays = [
            self._parse_play(raw, index, hosts, path)
            for index, raw in enumerate(raw_plays, start=1)
        ]
        self._attach_plan_dir(plays, base_dir)
        return Plan(hosts=hosts, plays=plays, variables=variables, overrides=overrides, base_dir=base_dir)

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise ConfigError("task list not found", path)
        text = path.read_text()
        suffix = path.suffix.lower()
        if suffix in {".yml", ".yaml"}:
            try:
                data = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                mark = getattr(exc, "problem_mark", None)
                raise ConfigError(f"invalid YAML: {exc}", path, mark.line + 1 if mark else None) from None
            if isinstance(data, list):
                data = {"tasks": data}
        else:
            try:
                data = tomllib.loads(text)
            except tomllib.TOMLDecodeError as exc:
                raise toml_error(exc, path) from None
        if not isinstance(data, dict):
            raise ConfigError("task list must be a mapping", path)
        return data

    def _parse_play(
        self, raw: Any, index: int, hosts: dict[str, HostConfig], path: Path
    ) -> Play:
        if not isinstance(raw, dict):
            raise ConfigError(f"play {index} must be a mapping", path)
        name = str(raw.get("name") or f"play-{index}")
        targets = self._resolve_hosts(raw.get("hosts", "all"), hosts, name, path)
        raw_tasks = raw.get("tasks") or []
        if not isinstance(raw_tasks, list) or not raw_tasks:
            raise ConfigError(f"play '{name}' has no tasks", path)
        tasks = [
            self._parse_task(task, f"{index}.{pos}", path)
            for pos, task in enumerate(raw_tasks, start=1)
        ]
        return Play(name=name, hosts=targets, tasks=tasks)

    @staticmethod
    def _parse_task(raw: Any, task_index: str, path: Path) -> TaskSpec:
        if not isinstance(raw, dict):
            raise ConfigError(f"Task {task_index} must be a mapping", path)
        task_type = raw.get("type")
        if not task_type:
            raise ConfigError(f"Task {task_index} is missing a type", path)
        if task_type not in OPERATION_REGISTRY:
            raise ConfigError(f"Task {task_index} has unknown operation '{task_type}'", path)
        best_effort = to_bool(raw.get("best_effort", raw.get("ignore_errors", False)))
        data = {k: v for k, v in raw.items() if k not in RESERVED_TASK_KEYS}
        label = raw.get("label") or raw.get("name")
        return TaskSpec(
            type=str(task_type),
            data=data,
            name=str(label) if label else None,
            best_effort=bool(best_effort),
        )

    @staticmethod
    def _resolve_hosts(
        value: Any, hosts: dict[str, HostConfig], play: str, path: Path
    ) -> list[str]:
        patterns = [value] if isinstance(value, str) else list(value or [])
        selected: list[str] = []
        for pattern in patterns:
            pattern = str(pattern)
            if pattern == "all":
                matches = list(hosts)
            elif pattern in hosts:
                matches = [pattern]
            else:
                matches = [name for name, host in hosts.items() if pattern in host.groups]
            if not matches:
                raise ConfigError(f"play '{play}' targets '{pattern}' which matches no host", path)
            selected.extend(m for m in matches if m not in selected)
        return selected

    @staticmethod
    def _attach_plan_dir(plays: list[Play], base_dir: Path) -> None:
        base = str(base_dir)
        for play in plays:
            for task in play.tasks:
                task.data.setdefault("_plan_dir", base)
