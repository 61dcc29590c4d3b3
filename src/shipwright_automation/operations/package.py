from __future__ import annotations

from typing import Iterable, Optional
import logging

from .base import Operation, bool_with_default, string_list
from ..errors import ConfigError, TaskError
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install or remove packages using the package manager found on the host."""

    action = "package"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        self.packages = string_list(spec.get("packages") or spec.get("name"))
        if not self.packages:
            raise ConfigError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ConfigError("package operation state must be 'present' or 'absent'")
        self.preferred_manager = spec.get("manager")
        self.update_cache = bool_with_default(spec.get("update_cache"), False)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        manager = PackageManagerFactory.create(executor, self.preferred_manager)
        logger.debug(
            "package-manager=%s host=%s packages=%s", manager.name, host.name, self.packages
        )
        if self.state == "present":
            changed, details = manager.ensure_present(executor, self.packages, update_cache=self.update_cache)
        else:
            changed, details = manager.ensure_absent(executor, self.packages)
        detail_msg = f"manager={manager.name} {details}" if details else f"manager={manager.name}"
        return self.result(host, changed=changed, details=detail_msg, resource=", ".join(self.packages))


class PackageManager:
    name = "generic"

    def ensure_present(
        self, executor: Executor, packages: Iterable[str], *, update_cache: bool = False
    ) -> tuple[bool, str]:
        needed = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        if not needed:
            return False, "already-installed"
        if update_cache:
            self.refresh(executor)
        self.install(executor, needed)
        return True, f"installed={','.join(needed)}"

    def ensure_absent(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        removable = [pkg for pkg in packages if self.is_installed(executor, pkg)]
        if not removable:
            return False, "already-removed"
        self.remove(executor, removable)
        return True, f"removed={','.join(removable)}"

    def refresh(self, executor: Executor) -> None:
        """Refresh package metadata; managers that always do so leave this empty."""

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


class AptPackageManager(PackageManager):
    name = "apt"
    ENV = {"DEBIAN_FRONTEND": "noninteractive"}

    def refresh(self, executor: Executor) -> None:
        executor.run(["apt-get", "update"], env=self.ENV)

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env=self.ENV)

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env=self.ENV)

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            ["dpkg-query", "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and "install ok installed" in result.stdout


class DnfPackageManager(PackageManager):
    name = "dnf"

    def refresh(self, executor: Executor) -> None:
        executor.run([self.name, "makecache"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"


class ApkPackageManager(PackageManager):
    name = "apk"

    def refresh(self, executor: Executor) -> None:
        executor.run(["apk", "update"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apk", "add", "--no-progress", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apk", "del", "--no-progress", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["apk", "info", "-e", package], check=False, mutable=False)
        return result.returncode == 0


class ZypperPackageManager(PackageManager):
    name = "zypper"

    def refresh(self, executor: Executor) -> None:
        executor.run(["zypper", "--non-interactive", "refresh"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["zypper", "--non-interactive", "install", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["zypper", "--non-interactive", "remove", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", AptPackageManager),
        ("dnf", "dnf", DnfPackageManager),
        ("yum", "yum", YumPackageManager),
        ("apk", "apk", ApkPackageManager),
        ("zypper", "zypper", ZypperPackageManager),
    ]

    @classmethod
    def create(cls, executor: Executor, preferred: Optional[object] = None) -> PackageManager:
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ConfigError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            probe = executor.run(f"command -v {binary}", check=False, mutable=False)
            if probe.returncode == 0:
                return factory()
        raise TaskError("No supported package manager found on the host", host=executor.host.name)
