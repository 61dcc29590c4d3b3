from pathlib import Path
import hashlib
import tarfile

import pytest

from shipwright_automation.errors import ConfigError
from shipwright_automation.executors import LocalExecutor
from shipwright_automation.operations.archive import ArchiveOperation
from shipwright_automation.types import HostConfig

from fakes import FakeExecutor


def build_artifact(tmp_path: Path, name: str = "app-1.0.0.tar.gz") -> Path:
    staging = tmp_path / "staging" / "app"
    staging.mkdir(parents=True)
    (staging / "package.json").write_text('{"name": "app"}')
    (staging / "server.js").write_text("console.log('hi')")
    artifact = tmp_path / name
    with tarfile.open(artifact, "w:gz") as tar:
        tar.add(staging, arcname="app")
    return artifact


def test_missing_artifact_is_reported(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="artifact not found"):
        ArchiveOperation({"src": str(tmp_path / "missing.tar.gz"), "dest": "/srv/app"})


def test_relative_source_uses_plan_dir(tmp_path: Path) -> None:
    build_artifact(tmp_path)
    op = ArchiveOperation({"src": "app-1.0.0.tar.gz", "dest": "/srv/app", "_plan_dir": str(tmp_path)})
    assert op.src == tmp_path / "app-1.0.0.tar.gz"


def test_unsupported_format(tmp_path: Path) -> None:
    artifact = tmp_path / "app.rar"
    artifact.write_bytes(b"rar")
    with pytest.raises(ConfigError, match="unsupported"):
        ArchiveOperation({"src": str(artifact), "dest": "/srv/app"})


def test_uploads_and_extracts_over_executor(tmp_path: Path) -> None:
    artifact = build_artifact(tmp_path)
    digest = hashlib.sha256(artifact.read_bytes()).hexdigest()
    executor = FakeExecutor(responses=[(r"^cat ", (1, "", "No such file"))])
    op = ArchiveOperation(
        {"src": str(artifact), "dest": "/home/app/app", "owner": "app", "strip_components": 1}
    )

    result = op.apply(HostConfig("web"), executor)

    assert result.changed is True
    remote_tmp = f"/tmp/shipwright-{digest[:12]}-app-1.0.0.tar.gz"
    assert executor.uploads == [(artifact, remote_tmp, 0o600)]
    assert executor.ran(rf"^tar -xf {remote_tmp} -C /home/app/app --strip-components=1$")
    assert executor.ran(r"^chown -R app /home/app/app$")
    assert executor.ran(rf"printf .* {digest} > /home/app/app/.shipwright-app-1.0.0.tar.gz.sha256")
    assert executor.ran(rf"^rm -f {remote_tmp}$")


def test_matching_marker_skips_upload(tmp_path: Path) -> None:
    artifact = build_artifact(tmp_path)
    digest = hashlib.sha256(artifact.read_bytes()).hexdigest()
    executor = FakeExecutor(responses=[(r"^cat ", (0, digest + "\n", ""))])
    op = ArchiveOperation({"src": str(artifact), "dest": "/home/app/app"})

    result = op.apply(HostConfig("web"), executor)

    assert result.changed is False
    assert result.details == "already-extracted"
    assert executor.uploads == []


def test_extracts_locally_and_is_idempotent(tmp_path: Path) -> None:
    artifact = build_artifact(tmp_path)
    dest = tmp_path / "deployed"
    host = HostConfig(name="local", address="localhost", connection="local")
    op = ArchiveOperation({"src": str(artifact), "dest": str(dest), "strip_components": 1})

    first = op.apply(host, LocalExecutor(host))
    second = op.apply(host, LocalExecutor(host))

    assert first.changed is True
    assert (dest / "package.json").exists()
    assert (dest / "server.js").exists()
    assert second.changed is False
