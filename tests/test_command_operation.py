from pathlib import Path

import pytest

from shipwright_automation.errors import ConfigError, TaskError
from shipwright_automation.executors import LocalExecutor
from shipwright_automation.operations.command import CommandOperation
from shipwright_automation.types import HostConfig

from fakes import FakeExecutor


def local() -> tuple[HostConfig, LocalExecutor]:
    host = HostConfig("local", address="localhost", connection="local")
    return host, LocalExecutor(host)


def test_command_runs(tmp_path: Path) -> None:
    host, executor = local()
    target = tmp_path / "out.txt"
    op = CommandOperation({"command": f"echo hi > {target}"})
    result = op.apply(host, executor)

    assert target.read_text().strip() == "hi"
    assert result.changed is True
    assert "ran" in result.details


def test_command_skips_when_creates_exists(tmp_path: Path) -> None:
    host, executor = local()
    (tmp_path / "node_modules").mkdir()
    op = CommandOperation({"command": "echo should-not-run", "cwd": str(tmp_path), "creates": "node_modules"})
    result = op.apply(host, executor)

    assert result.changed is False
    assert "creates" in result.details


def test_command_removes_guard(tmp_path: Path) -> None:
    host, executor = local()
    op = CommandOperation({"command": "true", "removes": str(tmp_path / "absent")})
    result = op.apply(host, executor)
    assert result.changed is False
    assert "removes" in result.details


def test_command_only_if_and_unless_guards() -> None:
    host, executor = local()
    result_only_if = CommandOperation({"command": "echo skip", "only_if": "false"}).apply(host, executor)
    result_unless = CommandOperation({"command": "echo skip", "unless": "true"}).apply(host, executor)

    assert result_only_if.changed is False
    assert "only_if" in result_only_if.details
    assert result_unless.changed is False
    assert "unless" in result_unless.details


def test_command_respects_allowed_returns() -> None:
    host, executor = local()
    ok = CommandOperation({"command": "exit 3", "returns": [0, 3]}).apply(host, executor)
    assert ok.changed is True

    with pytest.raises(TaskError) as excinfo:
        CommandOperation({"command": "echo broken >&2; exit 5"}).apply(host, executor)
    assert excinfo.value.returncode == 5
    assert "rc=5: broken" in str(excinfo.value)


def test_command_passes_env_and_cwd(tmp_path: Path) -> None:
    host, executor = local()
    op = CommandOperation({"command": 'test "$FOO" = bar && pwd > where', "env": {"FOO": "bar"}, "cwd": str(tmp_path)})
    result = op.apply(host, executor)

    assert result.changed is True
    assert Path((tmp_path / "where").read_text().strip()).resolve() == tmp_path.resolve()


def test_command_captures_output_lines() -> None:
    host, executor = local()
    result = CommandOperation({"command": ["printf", "a\\nb\\n"]}).apply(host, executor)
    assert result.output == ["a", "b"]


def test_command_become_user_wraps_in_sudo() -> None:
    executor = FakeExecutor()
    CommandOperation({"command": "npm install", "cwd": "/home/app/app", "become_user": "app"}).apply(
        HostConfig("web"), executor
    )
    assert executor.commands == ["sudo -n -H -u app -- sh -c 'cd /home/app/app && npm install'"]


def test_command_requires_command() -> None:
    with pytest.raises(ConfigError):
        CommandOperation({"cwd": "/tmp"})


def test_command_rejects_bad_returns() -> None:
    with pytest.raises(ConfigError):
        CommandOperation({"command": "true", "returns": ["zero"]})
