from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import re
import shlex

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError, toml_error
from .types import HostConfig
from .variables import parse_assignment, validate_variables

ADDRESS_KEYS = {"address", "ansible_host"}
USER_KEYS = {"user", "ansible_user", "ansible_ssh_user"}
KEY_FILE_KEYS = {"key", "key_file", "ansible_ssh_private_key_file", "ansible_private_key_file"}
PORT_KEYS = {"port", "ansible_port", "ansible_ssh_port"}
CONNECTION_KEYS = {"connection", "ansible_connection"}
CONNECTIONS = {"ssh", "local"}


class InventoryLoader:
    """Loads target hosts from an INI-style or TOML inventory file."""

    SECTION_RE = re.compile(r"^\[([A-Za-z0-9_.-]+)(:vars)?\]$")

    def __init__(self, *, default_user: str = "root", default_key_file: Optional[Path] = None):
        self.default_user = default_user
        self.default_key_file = default_key_file

    def load(self, path: Path) -> dict[str, HostConfig]:
        path = Path(path)
        if not path.is_file():
            raise ConfigError("inventory file not found", path)
        if path.suffix.lower() == ".toml":
            hosts = self._load_toml(path)
        else:
            hosts = self._load_ini(path)
        if not hosts:
            raise ConfigError("inventory defines no hosts", path)
        for host in hosts.values():
            self._validate(host, path)
        return hosts

    def _load_ini(self, path: Path) -> dict[str, HostConfig]:
        hosts: dict[str, HostConfig] = {}
        own_keys: dict[str, set[str]] = {}
        group_vars: dict[str, dict[str, Any]] = {}
        group: Optional[str] = None
        vars_section = False

        for lineno, raw in enumerate(path.read_text().splitlines(), start=1):
            stripped = raw.strip()
            if not stripped or stripped.startswith(("#", ";")):
                continue
            section = self.SECTION_RE.match(stripped)
            if section:
                group = section.group(1)
                vars_section = bool(section.group(2))
                continue
            if stripped.startswith("["):
                raise ConfigError(f"malformed section header -> {stripped}", path, lineno)

            try:
                tokens = shlex.split(stripped, comments=True)
            except ValueError as exc:
                raise ConfigError(f"{exc} -> {stripped}", path, lineno) from None
            if not tokens:
                continue

            if vars_section:
                for token in tokens:
                    key, value = self._pair(token, path, lineno)
                    group_vars.setdefault(group or "all", {})[key] = value
                continue

            name = tokens[0]
            if "=" in name:
                raise ConfigError(f"host line must start with an address -> {stripped}", path, lineno)
            pairs = dict(self._pair(token, path, lineno) for token in tokens[1:])
            host = self._host_from_pairs(name, pairs, path, lineno)
            existing = hosts.get(host.name)
            if existing is not None:
                host = existing
            else:
                hosts[host.name] = host
                own_keys[host.name] = {self._canonical(key) for key in pairs}
            if group and group not in host.groups:
                host.groups.append(group)

        for host in hosts.values():
            merged: dict[str, Any] = dict(group_vars.get("all", {}))
            for group_name in host.groups:
                merged.update(group_vars.get(group_name, {}))
            for key, value in merged.items():
                # Group variables never override what the host line sets itself.
                if self._canonical(key) not in own_keys.get(host.name, set()):
                    self._apply_pair(host, key, value, path, None)
        return hosts

    def _host_from_pairs(
        self, first: str, pairs: dict[str, Any], path: Path, lineno: int
    ) -> HostConfig:
        name = str(pairs.pop("name", first))
        address = first
        for key in ADDRESS_KEYS:
            if key in pairs:
                address = str(pairs.pop(key))
        host = HostConfig(name=name, address=address, user=self.default_user, key_file=self.default_key_file)
        for key, value in pairs.items():
            self._apply_pair(host, key, value, path, lineno)
        host.variables.setdefault("inventory_hostname", name)
        return host

    def _apply_pair(
        self,
        host: HostConfig,
        key: str,
        value: Any,
        path: Path,
        lineno: Optional[int],
    ) -> None:
        if key in USER_KEYS:
            host.user = str(value)
        elif key in KEY_FILE_KEYS:
            host.key_file = Path(str(value)).expanduser()
        elif key in PORT_KEYS:
            try:
                host.port = int(value)
            except (TypeError, ValueError):
                raise ConfigError(f"port for host '{host.name}' must be an integer", path, lineno) from None
        elif key in CONNECTION_KEYS:
            host.connection = str(value)
        else:
            host.variables[key] = value

    @staticmethod
    def _canonical(key: str) -> str:
        for canonical, aliases in (
            ("user", USER_KEYS),
            ("key_file", KEY_FILE_KEYS),
            ("port", PORT_KEYS),
            ("connection", CONNECTION_KEYS),
        ):
            if key in aliases:
                return canonical
        return key

    @staticmethod
    def _pair(token: str, path: Path, lineno: int) -> tuple[str, Any]:
        try:
            return parse_assignment(token)
        except ConfigError:
            raise ConfigError(f"expected key=value, got '{token}'", path, lineno) from None

    def _load_toml(self, path: Path) -> dict[str, HostConfig]:
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise toml_error(exc, path) from None
        hosts: dict[str, HostConfig] = {}
        for name, payload in data.get("hosts", {}).items():
            if not isinstance(payload, dict):
                raise ConfigError(f"host '{name}' must be a table", path)
            key_file = payload.get("key_file") or payload.get("key")
            try:
                port = int(payload.get("port", 22))
            except (TypeError, ValueError):
                raise ConfigError(f"port for host '{name}' must be an integer", path) from None
            variables = validate_variables(payload.get("variables", {}), path)
            variables.setdefault("inventory_hostname", name)
            groups = payload.get("groups", [])
            hosts[name] = HostConfig(
                name=name,
                address=payload.get("address", name),
                connection=str(payload.get("connection", "ssh")),
                user=str(payload.get("user", self.default_user)),
                key_file=Path(str(key_file)).expanduser() if key_file else self.default_key_file,
                port=port,
                groups=[groups] if isinstance(groups, str) else list(groups),
                variables=variables,
            )
        return hosts

    @staticmethod
    def _validate(host: HostConfig, path: Path) -> None:
        if not host.address or not str(host.address).strip():
            raise ConfigError(f"host '{host.name}' has an empty address", path)
        if host.connection not in CONNECTIONS:
            raise ConfigError(
                f"host '{host.name}' has unknown connection '{host.connection}'", path
            )
        if host.connection == "ssh" and host.key_file is not None:
            key_path = Path(host.key_file).expanduser()
            if not key_path.is_file():
                raise ConfigError(f"key file {key_path} for host '{host.name}' not found", path)
            host.key_file = key_path
