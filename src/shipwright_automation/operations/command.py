from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence
import logging

from .base import Operation, normalize_env, normalize_timeout, summarize_output
from ..errors import ConfigError, TaskError
from ..executors import Command, CommandResult, Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class CommandOperation(Operation):
    """Run a command on the host with simple guards, mirroring Puppet's exec."""

    action = "command"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.command = self._normalize_command(self.require("command", "cmd"))
        self.name = str(spec.get("name") or self._format_command(self.command))

        self.only_if = self._optional_command(spec.get("only_if"))
        self.unless = self._optional_command(spec.get("unless"))
        self.creates = str(spec["creates"]) if spec.get("creates") else None
        self.removes = str(spec["removes"]) if spec.get("removes") else None
        self.cwd = str(spec["cwd"]) if spec.get("cwd") else None
        self.become_user = str(spec["become_user"]) if spec.get("become_user") else None

        self.env = normalize_env(spec.get("env") or spec.get("environment"), self.action)
        self.allowed_returns = self._normalize_returns(spec.get("returns", [0]))
        self.timeout = normalize_timeout(spec.get("timeout"), self.action)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.creates and executor.path_exists(self._resolve_path(self.creates)):
            return self.result(host, changed=False, details=f"skipped (creates {self.creates})")

        if self.removes and not executor.path_exists(self._resolve_path(self.removes)):
            return self.result(host, changed=False, details=f"skipped (removes {self.removes})")

        if self.only_if is not None:
            guard = self._run_guard(self.only_if, executor)
            if guard.returncode != 0:
                return self.result(host, changed=False, details=f"skipped (only_if rc={guard.returncode})")

        if self.unless is not None:
            guard = self._run_guard(self.unless, executor)
            if guard.returncode == 0:
                return self.result(host, changed=False, details=f"skipped (unless rc={guard.returncode})")

        result = executor.run(
            self.command,
            check=False,
            mutable=True,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
            become_user=self.become_user,
        )

        if result.returncode not in self.allowed_returns:
            logger.debug("command failed name=%s rc=%s", self.name, result.returncode)
            message = summarize_output(result)
            detail = f"rc={result.returncode}: {message}" if message else f"rc={result.returncode}"
            raise TaskError(
                detail,
                host=host.name,
                command=[result.command],
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        detail = "dry-run" if executor.dry_run else f"ran (rc={result.returncode})"
        return self.result(host, changed=True, details=detail, output=result.lines)

    def _run_guard(self, command: Command, executor: Executor) -> CommandResult:
        return executor.run(
            command,
            check=False,
            mutable=False,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
            become_user=self.become_user,
        )

    def _resolve_path(self, path: str) -> str:
        if path.startswith("/") or self.cwd is None:
            return path
        return f"{self.cwd.rstrip('/')}/{path}"

    @classmethod
    def _optional_command(cls, value: Any) -> Optional[Command]:
        if value is None:
            return None
        return cls._normalize_command(value)

    @staticmethod
    def _normalize_command(value: Any) -> Command:
        if isinstance(value, str):
            return value
        if isinstance(value, Sequence):
            return [str(v) for v in value]
        raise ConfigError("command must be a string or list")

    @staticmethod
    def _format_command(command: Command) -> str:
        return command if isinstance(command, str) else " ".join(command)

    @staticmethod
    def _normalize_returns(value: Any) -> list[int]:
        if value is None:
            return [0]
        try:
            if isinstance(value, (int, str)):
                return [int(value)]
            if isinstance(value, Iterable):
                return [int(v) for v in value]
        except (TypeError, ValueError):
            pass
        raise ConfigError("command returns must be an int or list of ints")
