from __future__ import annotations

from typing import Any, Callable, Optional
import logging
import re
import time

from .base import Operation
from ..errors import ConfigError, HostConnectionError, VerificationError
from ..executors import CommandResult, Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

# Shell exit codes meaning the command itself could not be executed.
NOT_RUNNABLE = {126, 127}


class CheckOperation(Operation):
    """Run a read-only status command and surface its output.

    Without ``expect`` the check passes as long as the command executed. With
    ``expect`` at least one output line must match the regular expression;
    ``retries`` and ``delay`` poll for it, which covers processes that were
    started in the background a moment earlier.
    """

    action = "check"
    sleep: Callable[[float], None] = staticmethod(time.sleep)

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.command = self.require("command", "cmd")
        self.become_user = str(spec["become_user"]) if spec.get("become_user") else None
        raw_expect = spec.get("expect")
        self.expect: Optional[re.Pattern[str]] = None
        if raw_expect:
            try:
                self.expect = re.compile(str(raw_expect))
            except re.error as exc:
                raise ConfigError(f"check expect is not a valid regex: {exc}") from None
        try:
            self.retries = max(1, int(spec.get("retries", 1)))
            self.delay = float(spec.get("delay", 1.0))
        except (TypeError, ValueError):
            raise ConfigError("check retries/delay must be numeric") from None

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        problem = ""
        output: list[str] = []
        for attempt in range(1, self.retries + 1):
            result = self._run(executor)
            output = result.lines
            problem = self._problem(result)
            if not problem:
                logger.debug("check host=%s passed attempt=%s", host.name, attempt)
                return self.result(
                    host,
                    changed=False,
                    details=self._summary(result),
                    output=output,
                )
            logger.debug("check host=%s attempt=%s/%s: %s", host.name, attempt, self.retries, problem)
            if attempt < self.retries:
                self.sleep(self.delay)
        raise VerificationError(problem, output=output)

    def _run(self, executor: Executor) -> CommandResult:
        try:
            return executor.run(self.command, check=False, mutable=False, become_user=self.become_user)
        except HostConnectionError as exc:
            raise VerificationError(f"status check could not run: {exc}") from exc

    def _problem(self, result: CommandResult) -> str:
        if result.returncode in NOT_RUNNABLE:
            reason = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else ""
            return f"status check could not run (rc={result.returncode}) {reason}".rstrip()
        if self.expect is not None and not any(self.expect.search(line) for line in result.lines):
            return f"no output line matches /{self.expect.pattern}/"
        return ""

    def _summary(self, result: CommandResult) -> str:
        count = len(result.lines)
        noun = "line" if count == 1 else "lines"
        detail = f"rc={result.returncode}, {count} {noun}"
        if self.expect is not None:
            detail += f", matched /{self.expect.pattern}/"
        return detail
