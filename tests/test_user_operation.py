import pytest

from shipwright_automation.errors import ConfigError
from shipwright_automation.operations.user import UserInfo, UserManager, UserOperation
from shipwright_automation.types import HostConfig

from fakes import FakeExecutor


class FakeManager(UserManager):
    def __init__(self, existing: UserInfo | None = None, groups: set[str] | None = None):
        self._info = existing
        self._groups = groups or set()
        self.actions: list[tuple[str, tuple]] = []

    def get(self, executor, username: str):  # type: ignore[override]
        return self._info

    def groups(self, executor, username: str):  # type: ignore[override]
        return set(self._groups)

    def add(self, executor, name, *, home, shell, system, create_home, groups):  # type: ignore[override]
        self.actions.append(("add", (name, home, shell, system, create_home, tuple(groups))))
        self._info = UserInfo(name=name, shell=shell or "/bin/sh", home=home or f"/home/{name}")

    def delete(self, executor, name, *, remove_home):  # type: ignore[override]
        self.actions.append(("delete", (name, remove_home)))
        self._info = None

    def set_shell(self, executor, name, shell):  # type: ignore[override]
        self.actions.append(("shell", (name, shell)))

    def set_home(self, executor, name, home):  # type: ignore[override]
        self.actions.append(("home", (name, home)))

    def add_groups(self, executor, name, groups):  # type: ignore[override]
        self.actions.append(("groups", (name, tuple(groups))))


def test_creates_user_when_missing():
    op = UserOperation({"name": "app", "home": "/home/app", "shell": "/bin/bash"})
    fake = FakeManager(existing=None)
    op.manager = fake

    result = op.apply(HostConfig("web"), FakeExecutor())

    assert result.changed is True
    assert "created" in result.details
    assert fake.actions == [("add", ("app", "/home/app", "/bin/bash", False, True, ()))]


def test_existing_user_is_noop():
    op = UserOperation({"name": "app", "home": "/home/app/", "shell": "/bin/bash"})
    op.manager = FakeManager(existing=UserInfo(name="app", shell="/bin/bash", home="/home/app"))

    result = op.apply(HostConfig("web"), FakeExecutor())

    assert result.changed is False
    assert result.details == "noop"


def test_updates_shell_and_groups():
    op = UserOperation({"name": "app", "shell": "/bin/bash", "groups": "www-data,adm"})
    fake = FakeManager(existing=UserInfo(name="app", shell="/bin/sh", home="/home/app"), groups={"adm"})
    op.manager = fake

    result = op.apply(HostConfig("web"), FakeExecutor())

    assert result.changed is True
    assert ("shell", ("app", "/bin/bash")) in fake.actions
    assert ("groups", ("app", ("www-data",))) in fake.actions


def test_absent_removes_user():
    op = UserOperation({"name": "app", "state": "absent", "remove_home": "yes"})
    fake = FakeManager(existing=UserInfo(name="app", shell="/bin/sh", home="/home/app"))
    op.manager = fake

    result = op.apply(HostConfig("web"), FakeExecutor())

    assert result.changed is True
    assert fake.actions == [("delete", ("app", True))]


def test_user_requires_name():
    with pytest.raises(ConfigError):
        UserOperation({"home": "/home/app"})


def test_user_manager_reads_getent():
    executor = FakeExecutor(responses=[("getent passwd app", (0, "app:x:1001:1001::/home/app:/bin/bash\n", ""))])
    info = UserManager().get(executor, "app")
    assert info == UserInfo(name="app", shell="/bin/bash", home="/home/app")


def test_user_manager_missing_user():
    executor = FakeExecutor(responses=[("getent passwd", (2, "", ""))])
    assert UserManager().get(executor, "ghost") is None
