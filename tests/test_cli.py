from pathlib import Path
import textwrap

import pytest

from shipwright_automation import cli
from shipwright_automation import runner as runner_module
from shipwright_automation.errors import HostConnectionError
from shipwright_automation.types import ActionResult, RunReport

from fakes import FakeExecutor


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")


def write(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text).strip() + "\n")
    return path


def local_inventory(tmp_path: Path) -> Path:
    return write(tmp_path / "inventory.ini", "localhost connection=local")


def run_cli(tmp_path: Path, playbook: Path, *extra: str) -> int:
    argv = [str(local_inventory(tmp_path)), str(playbook), "--config", str(tmp_path / "absent.conf"), *extra]
    return cli.main(argv)


def test_format_result_line() -> None:
    result = ActionResult(host="web", action="check", changed=False, details="rc=0, 1 line", resource="ps")
    result.task = "deploy#6 verify"
    assert cli.format_result(result) == "deploy#6 verify | web::check[ps] ok - rc=0, 1 line"

    failed = ActionResult(host="web", action="command", changed=False, details="rc=1", failed=True, best_effort=True)
    assert cli.format_result(failed) == "web::command failed (ignored) - rc=1"


def test_render_summary_counts_planned_tasks() -> None:
    report = RunReport(
        results=[
            ActionResult(host="web", action="package", changed=True, details="installed"),
            ActionResult(host="web", action="user", changed=False, details="rc=1", failed=True),
        ],
        failed_task="deploy#2 user on web",
        planned=6,
    )
    assert cli.render_summary(report) == "1/6 tasks succeeded | Changed: 1 | Failed: 1"


def test_main_runs_local_deploy(tmp_path: Path, capsys) -> None:
    marker = tmp_path / "hello.txt"
    playbook = write(
        tmp_path / "deploy.toml",
        """
        [[tasks]]
        type = "command"
        label = "write greeting"
        command = "echo {{ greeting }} > {{ target }}"
        creates = "{{ target }}"

        [[tasks]]
        type = "check"
        label = "verify greeting"
        command = "cat {{ target }}"
        expect = "hello"
        """,
    )

    code = run_cli(tmp_path, playbook, "-e", "greeting=hello", "-e", f"target={marker}")

    out = capsys.readouterr().out
    assert code == cli.EXIT_OK
    assert marker.read_text().strip() == "hello"
    assert "2/2 tasks succeeded | Changed: 1 | Failed: 0" in out
    assert "    | hello" in out


def test_main_reports_missing_variable_without_side_effects(tmp_path: Path, capsys) -> None:
    marker = tmp_path / "touched"
    playbook = write(
        tmp_path / "deploy.toml",
        f"""
        [[tasks]]
        type = "command"
        command = "touch {marker}"

        [[tasks]]
        type = "command"
        command = "echo {{{{ version }}}}"
        """,
    )

    code = run_cli(tmp_path, playbook)

    assert code == cli.EXIT_CONFIG_ERROR
    assert "version" in capsys.readouterr().err
    assert not marker.exists()


def test_main_stops_at_first_failed_task(tmp_path: Path, capsys) -> None:
    marker = tmp_path / "after"
    playbook = write(
        tmp_path / "deploy.toml",
        f"""
        [[tasks]]
        type = "command"
        label = "fails"
        command = "echo nope >&2; exit 4"

        [[tasks]]
        type = "command"
        command = "touch {marker}"
        """,
    )

    code = run_cli(tmp_path, playbook)

    captured = capsys.readouterr()
    assert code == cli.EXIT_TASK_FAILED
    assert "Run halted at task deploy#1 fails on localhost" in captured.err
    assert "rc=4: nope" in captured.out
    assert not marker.exists()


def test_main_maps_connection_errors(tmp_path: Path, monkeypatch) -> None:
    class Unreachable(FakeExecutor):
        def _execute(self, command, timeout):
            raise HostConnectionError("unable to reach localhost:22", host="localhost")

    monkeypatch.setattr(runner_module, "executor_for", lambda host, **kwargs: Unreachable(host))
    playbook = write(
        tmp_path / "deploy.toml",
        """
        [[tasks]]
        type = "command"
        command = "true"
        """,
    )

    assert run_cli(tmp_path, playbook) == cli.EXIT_CONNECTION_ERROR


def test_main_rejects_malformed_inventory(tmp_path: Path, capsys) -> None:
    inventory = write(tmp_path / "inventory.ini", "[app\nlocalhost")
    playbook = write(tmp_path / "deploy.toml", '[[tasks]]\ntype = "command"\ncommand = "true"')

    code = cli.main([str(inventory), str(playbook), "--config", str(tmp_path / "absent.conf")])

    assert code == cli.EXIT_CONFIG_ERROR
    assert "inventory.ini:1" in capsys.readouterr().err


def test_main_reports_malformed_playbook(tmp_path: Path, capsys) -> None:
    playbook = write(tmp_path / "deploy.toml", '[[tasks]\ntype = "command"\ncommand = "true"')

    assert run_cli(tmp_path, playbook) == cli.EXIT_CONFIG_ERROR
    assert "deploy.toml" in capsys.readouterr().err


def test_main_maps_check_on_lost_connection_to_connection_error(tmp_path: Path, monkeypatch) -> None:
    class Unreachable(FakeExecutor):
        def _execute(self, command, timeout):
            raise HostConnectionError("connection reset", host="localhost")

    monkeypatch.setattr(runner_module, "executor_for", lambda host, **kwargs: Unreachable(host))
    playbook = write(
        tmp_path / "deploy.toml",
        """
        [[tasks]]
        type = "check"
        command = "ps -e"
        best_effort = true
        """,
    )

    assert run_cli(tmp_path, playbook) == cli.EXIT_CONNECTION_ERROR
