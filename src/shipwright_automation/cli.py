from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, load_config
from .errors import ConfigError, is_connection_failure
from .inventory import InventoryLoader
from .playbook import PlaybookLoader
from .runner import TaskRunner
from .types import ActionResult, HostConfig, RunReport, TaskSpec
from .variables import parse_assignment

EXIT_OK = 0
EXIT_TASK_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"

_last_progress_len = 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Push an application artifact to a host and start it")
    parser.add_argument("inventory", type=Path, help="Inventory file listing target hosts")
    parser.add_argument("playbook", type=Path, help="Task list to apply (TOML or YAML)")
    parser.add_argument(
        "-e",
        "--extra-var",
        dest="extra_vars",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a variable (highest precedence, repeatable)",
    )
    parser.add_argument(
        "--vars",
        dest="var_files",
        action="append",
        default=[],
        type=Path,
        metavar="FILE",
        help="Flat variable file loaded before the playbook's own vars (repeatable)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to shipwright config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--limit", action="append", help="Only run against the named host (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without executing them")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Python logging level (default: WARNING)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
        extra_vars = dict(parse_assignment(item) for item in args.extra_vars)
        hosts = InventoryLoader(
            default_user=cfg.default_user, default_key_file=cfg.default_key_file
        ).load(args.inventory)
        plan = PlaybookLoader().load(
            args.playbook, hosts, var_files=args.var_files, extra_vars=extra_vars
        )
        runner = TaskRunner(
            plan,
            dry_run=args.dry_run,
            config=cfg,
            progress_callback=print_progress,
            limit=args.limit,
        )
        prepared = runner.prepare()
    except ConfigError as exc:
        _clear_progress()
        print(colorize(f"Configuration error: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        report = runner.run(prepared)
    except Exception as exc:  # noqa: BLE001
        _clear_progress()
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_TASK_FAILED

    _clear_progress()
    for result in report.results:
        print(format_result(result))
        if result.action == "check" or result.failed:
            for line in result.output:
                print(f"    | {line}")

    print(render_summary(report))
    if report.ok:
        return EXIT_OK
    print(colorize(f"Run halted at task {report.failed_task}", Ansi.RED), file=sys.stderr)
    if is_connection_failure(report.error):
        return EXIT_CONNECTION_ERROR
    if isinstance(report.error, ConfigError):
        return EXIT_CONFIG_ERROR
    return EXIT_TASK_FAILED


def format_result(result: ActionResult) -> str:
    status = "changed" if result.changed else "ok"
    color: Optional[str] = Ansi.GREEN if result.changed else Ansi.BLUE
    if result.failed:
        if result.best_effort:
            status = "failed (ignored)"
            color = Ansi.ORANGE
        else:
            status = "failed"
            color = Ansi.RED
    resource = f"[{result.resource}]" if result.resource else ""
    line = f"{result.host}::{result.action}{resource} {status} - {result.details}"
    if result.task:
        line = f"{result.task} | {line}"
    return colorize(line, color)


def render_summary(report: RunReport) -> str:
    parts = [
        f"{report.succeeded}/{max(report.planned, report.total)} tasks succeeded",
        f"Changed: {report.changed}",
        f"Failed: {report.failed}",
    ]
    text = " | ".join(parts)
    color = Ansi.GREEN if report.ok else Ansi.RED
    return colorize(text, color)


def print_progress(host: HostConfig, task: TaskSpec) -> None:
    global _last_progress_len
    line = f"{host.name}::{task.type}[{task.label}] pending..."
    _last_progress_len = len(line)
    if sys.stdout.isatty():
        print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    if _last_progress_len and sys.stdout.isatty():
        print(" " * _last_progress_len, end="\r", flush=True)
    _last_progress_len = 0


if __name__ == "__main__":
    raise SystemExit(main())
