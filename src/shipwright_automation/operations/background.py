from __future__ import annotations

from typing import Any
import logging
import re
import shlex

from .base import Operation, normalize_env
from ..errors import ConfigError
from ..executors import Executor, build_command
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_RUNTIME = 45


class BackgroundOperation(Operation):
    """Launch a long-running command detached from the SSH session.

    The operation returns as soon as the process has been started; liveness is
    left to a later ``check`` step. ``max_runtime`` bounds how long the job may
    run before it is killed, ``0`` lets it run indefinitely.
    """

    action = "background"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        command = self.require("command", "cmd")
        if not isinstance(command, str):
            command = shlex.join(str(part) for part in command)
        self.command = command
        self.name = str(spec.get("name") or self.command.split()[0])
        self.cwd = str(spec["cwd"]) if spec.get("cwd") else None
        self.env = normalize_env(spec.get("env") or spec.get("environment"), self.action)
        self.become_user = str(spec["become_user"]) if spec.get("become_user") else None
        self.unless = spec.get("unless")
        slug = re.sub(r"[^A-Za-z0-9_.-]+", "-", self.name).strip("-") or "job"
        self.log_file = str(spec.get("log_file") or f"/tmp/shipwright-{slug}.log")
        try:
            self.max_runtime = int(spec.get("max_runtime", DEFAULT_MAX_RUNTIME))
        except (TypeError, ValueError):
            raise ConfigError("background max_runtime must be an integer number of seconds") from None
        if self.max_runtime < 0:
            raise ConfigError("background max_runtime must not be negative")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.unless:
            guard = executor.run(self.unless, check=False, mutable=False, become_user=self.become_user)
            if guard.returncode == 0:
                return self.result(host, changed=False, details="skipped (unless rc=0)", resource=self.name)

        launch = self.launch_command()
        result = executor.run(launch, become_user=self.become_user)
        if executor.dry_run:
            return self.result(host, changed=True, details="dry-run", resource=self.name)
        pid = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else "?"
        logger.info("Started %s on %s (pid=%s, log=%s)", self.name, host.name, pid, self.log_file)
        detail = f"started pid={pid} log={self.log_file}"
        if self.max_runtime:
            detail += f" max_runtime={self.max_runtime}s"
        return self.result(host, changed=True, details=detail, resource=self.name)

    def launch_command(self) -> str:
        inner = build_command(self.command, env=self.env, cwd=self.cwd)
        if self.max_runtime:
            inner = f"exec timeout {self.max_runtime} sh -c {shlex.quote(inner)}"
        return (
            f"nohup setsid sh -c {shlex.quote(inner)} "
            f">{shlex.quote(self.log_file)} 2>&1 </dev/null & echo $!"
        )
