from __future__ import annotations

import base64
import json
from typing import Any, Optional

try:  # pragma: no cover
    import boto3  # type: ignore
except Exception:  # pragma: no cover
    boto3 = None

from .errors import ConfigError

SECRET_PREFIX = "aws-secret:"


class SecretResolver:
    """Resolves ``aws-secret:<id>[#key]`` references in flat variable mappings."""

    def __init__(self):
        self._cache: dict[tuple[str, Optional[str]], Any] = {}

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: self._resolve_value(v) for k, v in values.items()}

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, str) and value.startswith(SECRET_PREFIX):
            reference = value[len(SECRET_PREFIX):]
            name, sep, key = reference.partition("#")
            if not name:
                raise ConfigError(f"empty secret reference '{value}'")
            return self._resolve_aws_secret(name, key if sep else None)
        return value

    def _resolve_aws_secret(self, name: str, key: Optional[str]) -> Any:
        if boto3 is None:
            raise ConfigError("boto3 is required to resolve aws-secret references (pip install boto3)")
        cache_key = (name, key)
        if cache_key in self._cache:
            return self._cache[cache_key]

        try:
            client = boto3.client("secretsmanager")
            response = client.get_secret_value(SecretId=name)
        except Exception as exc:  # noqa: BLE001
            raise ConfigError(f"Secret {name} could not be read: {exc}") from exc
        secret_str = response.get("SecretString")
        if secret_str is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise ConfigError(f"Secret {name} has no SecretString or SecretBinary")
            secret_str = base64.b64decode(binary).decode()

        value: Any = secret_str
        if key is not None:
            try:
                payload = json.loads(secret_str)
            except json.JSONDecodeError:
                payload = None
            if not isinstance(payload, dict):
                raise ConfigError(f"Secret {name} is not a JSON object, cannot select key '{key}'")
            try:
                value = payload[key]
            except KeyError:
                raise ConfigError(f"Secret {name} has no key '{key}'") from None

        self._cache[cache_key] = value
        return value
