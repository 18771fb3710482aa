"""Settings for locating ``pg_dump`` and connecting it to a server."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

ENV_PREFIX = "PGTEMPLATE_"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}

# Connection fields forwarded to pg_dump through libpq environment variables.
_LIBPQ_VARIABLES = {
    "host": "PGHOST",
    "port": "PGPORT",
    "user": "PGUSER",
    "password": "PGPASSWORD",
}


def _coerce_bool(value: Any, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ValueError(f"'{key}' must be a boolean, got {value!r}")


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class DumperSettings:
    """Where ``pg_dump`` lives and how it reaches the database.

    Connection fields left as ``None`` fall back to whatever libpq picks up
    from the calling environment (``PGHOST``, ``~/.pgpass`` and so on).
    """

    pg_dump: str = "pg_dump"
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    strip_schema_qualifier: bool = False

    def __post_init__(self) -> None:
        if not self.pg_dump or not str(self.pg_dump).strip():
            raise ValueError("'pg_dump' must be a non-empty executable name or path")
        if self.port is not None and not 0 < int(self.port) < 65536:
            raise ValueError("'port' must be between 1 and 65535")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "DumperSettings":
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise TypeError("Settings payload must be a mapping.")

        known = {item.name for item in fields(cls)}
        unknown = sorted(str(key) for key in payload if key not in known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")

        port_value = payload.get("port")
        port = None
        if port_value not in (None, ""):
            try:
                port = int(port_value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"'port' must be an integer, got {port_value!r}") from exc

        return cls(
            pg_dump=_optional_text(payload.get("pg_dump")) or "pg_dump",
            host=_optional_text(payload.get("host")),
            port=port,
            user=_optional_text(payload.get("user")),
            password=_optional_text(payload.get("password")),
            strip_schema_qualifier=_coerce_bool(
                payload.get("strip_schema_qualifier", False),
                key="strip_schema_qualifier",
            ),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DumperSettings":
        """Build settings from ``PGTEMPLATE_*`` variables."""

        source = os.environ if environ is None else environ
        payload: dict[str, Any] = {}
        for item in fields(cls):
            value = source.get(ENV_PREFIX + item.name.upper())
            if value is not None:
                payload[item.name] = value
        return cls.from_dict(payload)

    def merged(self, **overrides: Any) -> "DumperSettings":
        """Return a copy with every non-``None`` override applied."""

        changes = {key: value for key, value in overrides.items() if value is not None}
        if not changes:
            return self
        return replace(self, **changes)

    def environment(self) -> dict[str, str]:
        """libpq variables for the ``pg_dump`` process, only those that are set."""

        env: dict[str, str] = {}
        for name, variable in _LIBPQ_VARIABLES.items():
            value = getattr(self, name)
            if value is not None:
                env[variable] = str(value)
        return env

    def to_dict(self) -> Mapping[str, Any]:
        return {
            "pg_dump": self.pg_dump,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": "[REDACTED]" if self.password else None,
            "strip_schema_qualifier": self.strip_schema_qualifier,
        }


def load_settings(
    path: Path | str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> DumperSettings:
    """Load settings from the environment, overlaid with a JSON file if given."""

    settings = DumperSettings.from_env(environ)
    if path is None:
        return settings

    resolved = Path(path).expanduser()
    if not resolved.is_file():
        raise FileNotFoundError(f"Settings file not found: {resolved}")
    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Settings file {resolved} is not valid JSON: {exc}") from exc

    file_settings = DumperSettings.from_dict(payload)
    explicit = {key: getattr(file_settings, key) for key in payload}
    return settings.merged(**explicit)


__all__ = ["DumperSettings", "ENV_PREFIX", "load_settings"]
