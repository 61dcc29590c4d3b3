from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Union
import logging
import os
import shlex
import shutil
import subprocess
import time

import paramiko

from .config import ShipwrightConfig
from .errors import ConfigError, HostConnectionError, TaskError
from .retry import retry
from .types import HostConfig

logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]

_READ_CHUNK = 32768
_POLL_INTERVAL = 0.05


@dataclass
class CommandResult:
    command: str
    stdout: str
    stderr: str
    returncode: int

    @property
    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


def build_command(
    command: Command,
    *,
    env: Optional[dict[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    become_user: Optional[str] = None,
) -> str:
    """Render ``command`` into a single POSIX shell string."""

    text = command if isinstance(command, str) else shlex.join(str(part) for part in command)
    if env:
        exports = " ".join(f"export {key}={shlex.quote(str(value))};" for key, value in env.items())
        text = f"{exports} {text}"
    if cwd is not None:
        text = f"cd {shlex.quote(str(cwd))} && {text}"
    if become_user:
        text = f"sudo -n -H -u {shlex.quote(become_user)} -- sh -c {shlex.quote(text)}"
    return text


class Executor:
    """Base executor abstraction used by operations."""

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run

    def run(
        self,
        command: Command,
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        become_user: Optional[str] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        text = build_command(command, env=env, cwd=cwd, become_user=become_user)
        if self.dry_run and mutable:
            logger.debug("host=%s dry-run skip: %s", self.host.name, text)
            return CommandResult(text, "", "skipped (dry-run)", 0)

        logger.debug("host=%s run: %s", self.host.name, text)
        result = self._execute(text, timeout)
        if check and result.returncode != 0:
            raise TaskError(
                f"command exited with rc={result.returncode}",
                host=self.host.name,
                command=[text],
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    def path_exists(self, path: Union[str, Path]) -> bool:
        result = self.run(["test", "-e", str(path)], check=False, mutable=False)
        return result.returncode == 0

    def _execute(self, command: str, timeout: Optional[float]) -> CommandResult:
        raise NotImplementedError

    def put_file(self, local: Path, remote: Union[str, Path], *, mode: Optional[int] = None) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release the underlying connection, if any."""

    def __enter__(self) -> "Executor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def _execute(self, command: str, timeout: Optional[float]) -> CommandResult:
        try:
            proc = subprocess.run(
                ["sh", "-c", command],
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise TaskError(
                f"command timed out after {timeout}s",
                host=self.host.name,
                command=[command],
            ) from exc
        for line in proc.stdout.splitlines():
            logger.debug("[%s] %s", self.host.name, line)
        for line in proc.stderr.splitlines():
            logger.debug("[%s:stderr] %s", self.host.name, line)
        return CommandResult(command, proc.stdout, proc.stderr, proc.returncode)

    def put_file(self, local: Path, remote: Union[str, Path], *, mode: Optional[int] = None) -> None:
        if self.dry_run:
            return
        target = Path(remote)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local, target)
        if mode is not None:
            os.chmod(target, mode)


class _LineLogger:
    """Logs complete lines of a byte stream as they arrive."""

    def __init__(self, label: str):
        self.label = label
        self._pending = b""

    def feed(self, data: bytes) -> None:
        self._pending += data
        *lines, self._pending = self._pending.split(b"\n")
        for line in lines:
            logger.debug("[%s] %s", self.label, line.decode(errors="replace"))

    def flush(self) -> None:
        if self._pending:
            logger.debug("[%s] %s", self.label, self._pending.decode(errors="replace"))
            self._pending = b""


class SSHExecutor(Executor):
    """Executor that runs commands on a remote host over an SSH channel."""

    KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        config: Optional[ShipwrightConfig] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(host, dry_run=dry_run)
        if not host.address:
            raise ConfigError(f"host '{host.name}' has no address")
        self.config = config or ShipwrightConfig()
        self.client_factory = client_factory
        self._sleep = sleep
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client

        cfg = self.config
        opener = retry(
            retries=cfg.connect_retries,
            delay=cfg.retry_delay,
            backoff=cfg.retry_backoff,
            retry_on=(paramiko.SSHException, OSError),
            giveup_on=(
                paramiko.AuthenticationException,
                paramiko.BadHostKeyException,
                HostConnectionError,
            ),
            on_retry=self._log_retry,
            sleep=self._sleep,
        )(self._open)
        try:
            self._client = opener()
        except HostConnectionError:
            raise
        except paramiko.AuthenticationException as exc:
            raise HostConnectionError(
                f"authentication failed for {self.host.user}@{self.host.address}: {exc}",
                host=self.host.name,
            ) from exc
        except paramiko.BadHostKeyException as exc:
            raise HostConnectionError(
                f"host key mismatch for {self.host.address}: {exc}", host=self.host.name
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise HostConnectionError(
                f"unable to reach {self.host.address}:{self.host.port} "
                f"after {cfg.connect_retries} attempt(s): {exc}",
                host=self.host.name,
            ) from exc
        logger.info("Connected to %s@%s:%s", self.host.user, self.host.address, self.host.port)
        return self._client

    def _open(self) -> paramiko.SSHClient:
        pkey = self._load_key()
        client = self.client_factory()
        if self.config.known_hosts_file:
            client.load_host_keys(str(self.config.known_hosts_file))
        else:
            client.load_system_host_keys()
        if self.config.host_key_policy == "reject":
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            client.connect(
                hostname=self.host.address,
                port=self.host.port,
                username=self.host.user,
                pkey=pkey,
                timeout=self.config.connect_timeout,
                banner_timeout=self.config.connect_timeout,
                auth_timeout=self.config.connect_timeout,
                allow_agent=pkey is None,
                look_for_keys=pkey is None,
            )
        except Exception:
            client.close()
            raise
        return client

    def _load_key(self) -> Optional[paramiko.PKey]:
        key_file = self.host.key_file
        if key_file is None:
            return None
        path = Path(key_file).expanduser()
        if not path.is_file():
            raise ConfigError(f"key file {path} for host '{self.host.name}' not found")
        for key_cls in self.KEY_CLASSES:
            try:
                return key_cls.from_private_key_file(str(path))
            except paramiko.SSHException:
                continue
        raise HostConnectionError(f"unsupported or encrypted private key {path}", host=self.host.name)

    def _log_retry(self, attempt: int, exc: BaseException) -> None:
        logger.warning(
            "Connection to %s failed (attempt %s/%s): %s",
            self.host.address,
            attempt,
            self.config.connect_retries,
            exc,
        )

    def _execute(self, command: str, timeout: Optional[float]) -> CommandResult:
        client = self.connect()
        timeout = timeout if timeout is not None else self.config.command_timeout
        try:
            stdin, stdout, _ = client.exec_command(command)
        except paramiko.SSHException as exc:
            raise HostConnectionError(f"channel open failed: {exc}", host=self.host.name) from exc
        stdin.close()
        channel = stdout.channel

        out_buf = bytearray()
        err_buf = bytearray()
        out_log = _LineLogger(self.host.name)
        err_log = _LineLogger(f"{self.host.name}:stderr")
        deadline = time.monotonic() + timeout if timeout else None

        def pump() -> bool:
            progressed = False
            if channel.recv_ready():
                data = channel.recv(_READ_CHUNK)
                out_buf.extend(data)
                out_log.feed(data)
                progressed = True
            if channel.recv_stderr_ready():
                data = channel.recv_stderr(_READ_CHUNK)
                err_buf.extend(data)
                err_log.feed(data)
                progressed = True
            return progressed

        while True:
            if deadline is not None and time.monotonic() > deadline:
                channel.close()
                raise TaskError(
                    f"command timed out after {timeout}s",
                    host=self.host.name,
                    command=[command],
                    stdout=out_buf.decode(errors="replace"),
                    stderr=err_buf.decode(errors="replace"),
                )
            if pump():
                continue
            if channel.exit_status_ready():
                # The last chunk can arrive together with the exit status.
                while pump():
                    pass
                break
            time.sleep(_POLL_INTERVAL)

        out_log.flush()
        err_log.flush()
        returncode = channel.recv_exit_status()
        return CommandResult(
            command,
            out_buf.decode(errors="replace"),
            err_buf.decode(errors="replace"),
            returncode,
        )

    def put_file(self, local: Path, remote: Union[str, Path], *, mode: Optional[int] = None) -> None:
        if self.dry_run:
            return
        client = self.connect()
        sftp = client.open_sftp()
        try:
            sftp.put(str(local), str(remote))
            if mode is not None:
                sftp.chmod(str(remote), mode)
        except (OSError, paramiko.SSHException) as exc:
            raise TaskError(
                f"upload of {local} to {remote} failed: {exc}", host=self.host.name
            ) from exc
        finally:
            sftp.close()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def executor_for(
    host: HostConfig,
    *,
    dry_run: bool = False,
    config: Optional[ShipwrightConfig] = None,
) -> Executor:
    if host.connection == "local":
        return LocalExecutor(host, dry_run=dry_run)
    if host.connection == "ssh":
        return SSHExecutor(host, dry_run=dry_run, config=config)
    raise ConfigError(f"Unknown connection type '{host.connection}' for host '{host.name}'")
