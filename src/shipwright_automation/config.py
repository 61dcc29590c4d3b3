from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError, toml_error


DEFAULT_CONFIG = Path("/etc/shipwright/main.conf")
HOST_KEY_POLICIES = {"auto-add", "reject"}


@dataclass
class ShipwrightConfig:
    connect_timeout: float = 20.0
    connect_retries: int = 3
    retry_delay: float = 2.0
    retry_backoff: float = 2.0
    command_timeout: Optional[float] = None
    host_key_policy: str = "auto-add"
    known_hosts_file: Optional[Path] = None
    default_user: str = "root"
    default_key_file: Optional[Path] = None


def load_config(path: Path) -> ShipwrightConfig:
    if not path.exists():
        return ShipwrightConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise toml_error(exc, path) from None
    defaults = data.get("defaults", {})
    policy = str(defaults.get("host_key_policy", "auto-add"))
    if policy not in HOST_KEY_POLICIES:
        raise ConfigError(f"host_key_policy must be one of {sorted(HOST_KEY_POLICIES)}", path)
    command_timeout = defaults.get("command_timeout")
    known_hosts = defaults.get("known_hosts_file")
    default_key = defaults.get("default_key_file")
    try:
        return ShipwrightConfig(
            connect_timeout=float(defaults.get("connect_timeout", 20.0)),
            connect_retries=max(1, int(defaults.get("connect_retries", 3))),
            retry_delay=float(defaults.get("retry_delay", 2.0)),
            retry_backoff=float(defaults.get("retry_backoff", 2.0)),
            command_timeout=float(command_timeout) if command_timeout else None,
            host_key_policy=policy,
            known_hosts_file=Path(known_hosts).expanduser() if known_hosts else None,
            default_user=str(defaults.get("default_user", "root")),
            default_key_file=Path(default_key).expanduser() if default_key else None,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value in [defaults]: {exc}", path) from None
