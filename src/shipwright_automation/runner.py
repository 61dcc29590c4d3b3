from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .config import ShipwrightConfig
from .errors import ConfigError, ShipwrightError, TaskError, VerificationError, is_connection_failure
from .executors import Executor, executor_for
from .operations import OPERATION_REGISTRY, Operation
from .templating import referenced_names, render_value
from .types import ActionResult, HostConfig, Plan, Play, RunReport, TaskSpec

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[HostConfig, TaskSpec], None]


@dataclass
class PreparedStep:
    task: TaskSpec
    operation: Operation
    identity: str


@dataclass
class PreparedHost:
    play: Play
    host: HostConfig
    steps: list[PreparedStep]


class TaskRunner:
    """Coordinates the execution of deployment tasks.

    Every task is rendered and validated for every target host before the
    first connection is opened, so configuration mistakes never leave a host
    half-deployed. Execution then stops at the first failing task unless that
    task is marked ``best_effort``.
    """

    def __init__(
        self,
        plan: Plan,
        *,
        dry_run: bool = False,
        config: Optional[ShipwrightConfig] = None,
        executor_factory: Optional[Callable[[HostConfig], Executor]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        limit: Optional[list[str]] = None,
    ):
        self.plan = plan
        self.dry_run = dry_run
        self.config = config or ShipwrightConfig()
        self.executor_factory = executor_factory or self._executor_for
        self.progress_callback = progress_callback
        self.limit = set(limit) if limit else None

    def run(self, prepared: Optional[list[PreparedHost]] = None) -> RunReport:
        if prepared is None:
            prepared = self.prepare()
        report = RunReport(planned=sum(len(entry.steps) for entry in prepared))
        for entry in prepared:
            if not self._run_host(entry, report):
                break
        return report

    def prepare(self) -> list[PreparedHost]:
        """Render every task for every host; raise ``ConfigError`` on any problem."""

        prepared: list[PreparedHost] = []
        problems: list[str] = []
        for play in self.plan.plays:
            for host_name in play.hosts:
                if self.limit is not None and host_name not in self.limit:
                    continue
                host = self.plan.hosts.get(host_name)
                if not host:
                    raise ConfigError(f"Host '{host_name}' is not defined")
                context = self.context_for(host)
                steps: list[PreparedStep] = []
                for index, task in enumerate(play.tasks, start=1):
                    identity = f"{play.name}#{index} {task.label}"
                    missing = sorted(referenced_names(task.data) - set(context))
                    if missing:
                        problems.append(
                            f"task '{identity}' on {host.name} references undefined "
                            f"variable(s): {', '.join(missing)}"
                        )
                        continue
                    operation = self._build_operation(task, context, identity, host)
                    steps.append(PreparedStep(task=task, operation=operation, identity=identity))
                prepared.append(PreparedHost(play=play, host=host, steps=steps))
        if problems:
            raise ConfigError("; ".join(problems))
        if self.limit is not None and not prepared:
            raise ConfigError(f"--limit {','.join(sorted(self.limit))} matches no targeted host")
        return prepared

    def context_for(self, host: HostConfig) -> dict[str, Any]:
        context: dict[str, Any] = dict(self.plan.variables)
        context.update(host.variables)
        context.update(self.plan.overrides)
        return context

    def _build_operation(
        self, task: TaskSpec, context: dict[str, Any], identity: str, host: HostConfig
    ) -> Operation:
        operation_cls = OPERATION_REGISTRY.get(task.type)
        if not operation_cls:
            raise ConfigError(f"task '{identity}': unknown operation '{task.type}'")
        try:
            data = render_value(task.data, context)
            return operation_cls(data)
        except ValueError as exc:
            raise ConfigError(f"task '{identity}' on {host.name}: {exc}") from None

    def _run_host(self, entry: PreparedHost, report: RunReport) -> bool:
        host = entry.host
        logger.debug("play=%s host=%s tasks=%s", entry.play.name, host.name, len(entry.steps))
        executor = self.executor_factory(host)
        try:
            for step in entry.steps:
                if self.progress_callback:
                    self.progress_callback(host, step.task)
                result, error = self._apply(step, host, executor)
                report.results.append(result)
                if not result.failed:
                    continue
                if step.task.best_effort and not is_connection_failure(error):
                    result.best_effort = True
                    logger.warning("task=%s host=%s failed (best effort, continuing)", step.identity, host.name)
                    continue
                report.failed_task = f"{step.identity} on {host.name}"
                report.error = error
                logger.error("Halting run: task %s failed", report.failed_task)
                return False
        finally:
            executor.close()
        return True

    def _apply(
        self, step: PreparedStep, host: HostConfig, executor: Executor
    ) -> tuple[ActionResult, Optional[Exception]]:
        task = step.task
        error: Optional[Exception] = None
        try:
            result = step.operation.apply(host, executor)
        except TaskError as exc:
            error = exc
            logger.error("action=%s host=%s failed: %s", task.type, host.name, exc)
            details = str(exc)
            summary = exc.summary()
            if summary and summary not in details:
                details = f"{details}: {summary}"
            output = (exc.stderr or exc.stdout or "").strip().splitlines()
            result = self._failure(task, host, details, output)
        except VerificationError as exc:
            error = exc
            logger.error("action=%s host=%s verification failed: %s", task.type, host.name, exc)
            result = self._failure(task, host, str(exc), exc.output)
        except ShipwrightError as exc:
            error = exc
            logger.error("action=%s host=%s failed: %s", task.type, host.name, exc)
            result = self._failure(task, host, str(exc), [])
        except Exception as exc:  # noqa: BLE001
            error = exc
            logger.error(
                "action=%s host=%s failed: %s", task.type, host.name, exc, exc_info=True
            )
            result = self._failure(task, host, str(exc), [])
        else:
            logger.debug(
                "action=%s host=%s changed=%s", task.type, host.name, result.changed
            )
        result.task = step.identity
        if result.resource is None:
            result.resource = self._resource_name(task.data)
        return result, error

    @staticmethod
    def _failure(task: TaskSpec, host: HostConfig, details: str, output: list[str]) -> ActionResult:
        return ActionResult(
            host=host.name,
            action=task.type,
            changed=False,
            details=details,
            failed=True,
            output=list(output),
        )

    def _executor_for(self, host: HostConfig) -> Executor:
        return executor_for(host, dry_run=self.dry_run, config=self.config)

    @staticmethod
    def _resource_name(data: dict[str, Any]) -> Optional[str]:
        for key in ("resource", "name", "dest", "path", "user"):
            value = data.get(key)
            if value and isinstance(value, str) and "{" not in value:
                return value
        return None
