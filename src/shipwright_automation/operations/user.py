from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .base import Operation, bool_with_default, string_list, to_bool
from ..errors import ConfigError
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


@dataclass
class UserInfo:
    name: str
    shell: str
    home: str


class UserManager:
    def get(self, executor: Executor, username: str) -> Optional[UserInfo]:
        result = executor.run(["getent", "passwd", username], check=False, mutable=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        fields = result.stdout.strip().splitlines()[0].split(":")
        if len(fields) < 7:
            return None
        return UserInfo(name=fields[0], home=fields[5], shell=fields[6])

    def groups(self, executor: Executor, username: str) -> set[str]:
        result = executor.run(["id", "-nG", username], check=False, mutable=False)
        if result.returncode != 0:
            return set()
        return set(result.stdout.split())

    def add(
        self,
        executor: Executor,
        name: str,
        *,
        home: Optional[str],
        shell: Optional[str],
        system: bool,
        create_home: bool,
        groups: list[str],
    ) -> None:
        cmd = ["useradd"]
        if home:
            cmd += ["--home-dir", home]
        if shell:
            cmd += ["--shell", shell]
        if create_home:
            cmd.append("--create-home")
        if system:
            cmd.append("--system")
        if groups:
            cmd += ["--groups", ",".join(groups)]
        cmd.append(name)
        executor.run(cmd)

    def delete(self, executor: Executor, name: str, *, remove_home: bool) -> None:
        cmd = ["userdel"]
        if remove_home:
            cmd.append("--remove")
        cmd.append(name)
        executor.run(cmd)

    def set_shell(self, executor: Executor, name: str, shell: str) -> None:
        executor.run(["usermod", "--shell", shell, name])

    def set_home(self, executor: Executor, name: str, home: str) -> None:
        executor.run(["usermod", "--home", home, "--move-home", name])

    def add_groups(self, executor: Executor, name: str, groups: list[str]) -> None:
        executor.run(["usermod", "--append", "--groups", ",".join(groups), name])


class UserOperation(Operation):
    """Ensure the service account exists with the requested home and shell."""

    action = "user"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.name = str(self.require("name"))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent"}:
            raise ConfigError("user operation state must be 'present' or 'absent'")
        self.home = str(spec["home"]) if spec.get("home") else None
        self.shell = str(spec["shell"]) if spec.get("shell") else None
        self.system = bool(to_bool(spec.get("system", False)))
        self.create_home = bool_with_default(spec.get("create_home"), True)
        self.remove_home = bool(to_bool(spec.get("remove_home", False)))
        self.groups = string_list(spec.get("groups"))
        self.manager = UserManager()

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        info = self.manager.get(executor, self.name)
        changes: list[str] = []

        if self.state == "present":
            if not info:
                logger.debug("Creating user %s", self.name)
                self.manager.add(
                    executor,
                    self.name,
                    home=self.home,
                    shell=self.shell,
                    system=self.system,
                    create_home=self.create_home,
                    groups=self.groups,
                )
                changes.append("created")
            else:
                if self.shell and info.shell != self.shell:
                    logger.debug("Updating shell for %s", self.name)
                    self.manager.set_shell(executor, self.name, self.shell)
                    changes.append("shell")
                if self.home and info.home.rstrip("/") != self.home.rstrip("/"):
                    logger.debug("Moving home for %s", self.name)
                    self.manager.set_home(executor, self.name, self.home)
                    changes.append("home")
                if self.groups:
                    missing = [g for g in self.groups if g not in self.manager.groups(executor, self.name)]
                    if missing:
                        self.manager.add_groups(executor, self.name, missing)
                        changes.append(f"groups+={','.join(missing)}")

        else:  # state == absent
            if info:
                logger.debug("Removing user %s", self.name)
                self.manager.delete(executor, self.name, remove_home=self.remove_home)
                changes.append("removed")

        changed = bool(changes)
        detail = ", ".join(changes) if changes else "noop"
        return self.result(host, changed=changed, details=detail, resource=self.name)
