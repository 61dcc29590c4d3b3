from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import hashlib
import logging
import posixpath
import shlex

from .base import Operation
from ..errors import ConfigError
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")


def file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ArchiveOperation(Operation):
    """Upload a local artifact and unpack it into a directory on the host.

    A marker file holding the artifact checksum is written next to the
    extracted tree so that re-running with the same artifact is a no-op.
    """

    action = "archive"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_src = Path(str(self.require("src", "source"))).expanduser()
        if not raw_src.is_absolute() and self.plan_dir is not None:
            raw_src = self.plan_dir / raw_src
        if not raw_src.is_file():
            raise ConfigError(f"artifact not found: {raw_src}")
        self.src = raw_src
        lowered = self.src.name.lower()
        if lowered.endswith(".zip"):
            self.format = "zip"
        elif lowered.endswith(TAR_SUFFIXES):
            self.format = "tar"
        else:
            raise ConfigError(f"unsupported artifact format: {self.src.name}")

        self.dest = str(self.require("dest", "path")).rstrip("/") or "/"
        self.owner = str(spec["owner"]) if spec.get("owner") else None
        self.group = str(spec["group"]) if spec.get("group") else None
        self.mode = self._parse_mode(spec.get("mode"))
        self.creates = str(spec["creates"]) if spec.get("creates") else None
        try:
            self.strip_components = int(spec.get("strip_components", 0))
        except (TypeError, ValueError):
            raise ConfigError("archive strip_components must be an integer") from None
        if self.strip_components and self.format != "tar":
            raise ConfigError("strip_components is only supported for tar artifacts")

    @property
    def marker(self) -> str:
        return posixpath.join(self.dest, f".shipwright-{self.src.name}.sha256")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        checksum = file_digest(self.src)
        if self._already_extracted(executor, checksum):
            return self.result(host, changed=False, details="already-extracted", resource=self.dest)

        remote_tmp = f"/tmp/shipwright-{checksum[:12]}-{self.src.name}"
        logger.debug("archive upload host=%s src=%s tmp=%s", host.name, self.src, remote_tmp)
        executor.run(["mkdir", "-p", self.dest])
        executor.put_file(self.src, remote_tmp, mode=0o600)
        try:
            executor.run(self._extract_command(remote_tmp))
            if self.owner:
                owner = f"{self.owner}:{self.group}" if self.group else self.owner
                executor.run(["chown", "-R", owner, self.dest])
            elif self.group:
                executor.run(["chgrp", "-R", self.group, self.dest])
            if self.mode is not None:
                executor.run(["chmod", f"{self.mode:o}", self.dest])
            executor.run(f"printf '%s\\n' {checksum} > {shlex.quote(self.marker)}")
        finally:
            executor.run(["rm", "-f", remote_tmp], check=False)

        detail = "dry-run" if executor.dry_run else f"extracted sha256={checksum[:12]}"
        return self.result(host, changed=True, details=detail, resource=self.dest)

    def _already_extracted(self, executor: Executor, checksum: str) -> bool:
        current = executor.run(["cat", self.marker], check=False, mutable=False)
        if current.returncode != 0 or current.stdout.strip() != checksum:
            return False
        if self.creates:
            return executor.path_exists(self.creates)
        return True

    def _extract_command(self, archive: str) -> list[str]:
        if self.format == "zip":
            return ["unzip", "-o", "-q", archive, "-d", self.dest]
        cmd = ["tar", "-xf", archive, "-C", self.dest]
        if self.strip_components:
            cmd.append(f"--strip-components={self.strip_components}")
        return cmd

    @staticmethod
    def _parse_mode(value: Optional[Any]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        try:
            return int(text, 8)
        except ValueError:
            raise ConfigError(f"archive mode '{value}' is not an octal number") from None
