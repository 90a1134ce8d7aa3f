"""StaySync configuration loading and validation.

Reads ``staysync.toml``, resolves ``${VAR}`` references from the environment,
and returns a validated :class:`StaySyncConfig` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from staysync import __version__
from staysync.feeds.models import MAX_GUEST_COUNT

CONFIG_FILENAME = "staysync.toml"
DEFAULT_USER_AGENT = f"StaySync/{__version__} (+calendar-sync)"

# Pattern matching ${VAR_NAME} with alphanumeric and underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_DB_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ASSIGNMENT_STRATEGIES = ("round_robin", "weighted")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [staysync.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class FeedsConfig:
    """Inbound feed settings from [staysync.feeds].

    ``timezone`` is the zone feed wall-clock times are assumed to be in. When
    unset, the parsing process's local zone is used. ``checkout_hour`` is the
    hour a date-only value is pinned to.
    """

    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 20.0
    max_concurrency: int = 4
    timezone: str | None = None
    checkout_hour: int = 10
    default_guest_count: int = 2

    @property
    def tzinfo(self) -> ZoneInfo | None:
        if self.timezone is None:
            return None
        return ZoneInfo(self.timezone)


@dataclass
class ExportConfig:
    """Outbound feed settings from [staysync.export]."""

    prodid: str = "-//StaySync//Calendar Feed//EN"
    past_days: int = 365
    future_days: int = 548
    cache_max_age: int = 300


@dataclass
class CleaningConfig:
    """Auto-assignment settings from [staysync.cleaning]."""

    strategy: str = "round_robin"


@dataclass
class ApiConfig:
    """HTTP server settings from [staysync.api]."""

    host: str = "127.0.0.1"
    port: int = 8300
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])


@dataclass
class StaySyncConfig:
    """Parsed and validated StaySync configuration."""

    name: str = "staysync"
    db_name: str = "staysync"
    db_schema: str | None = None
    feeds: FeedsConfig = field(default_factory=FeedsConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    cleaning: CleaningConfig = field(default_factory=CleaningConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


def resolve_env_vars(value: Any) -> Any:
    """Substitute ``${VAR}`` references in every string of a decoded TOML tree.

    Raises :class:`ConfigError` naming every variable that is not set.
    """
    if isinstance(value, dict):
        return {key: resolve_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value

    names = _ENV_VAR_PATTERN.findall(value)
    unset = [name for name in names if name not in os.environ]
    if unset:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(unset)} "
            f"(original: {value!r})"
        )
    return _ENV_VAR_PATTERN.sub(lambda match: os.environ[match.group(1)], value)


def _positive_int(section: dict, key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be an integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a positive integer.")
    return value


def _parse_feeds(section: dict) -> FeedsConfig:
    path = "staysync.feeds"
    timeout_raw = section.get("timeout_seconds", 20.0)
    try:
        timeout_seconds = float(timeout_raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.timeout_seconds: {timeout_raw!r}") from exc
    if timeout_seconds <= 0:
        raise ConfigError(f"Invalid {path}.timeout_seconds: must be greater than zero")

    timezone = section.get("timezone")
    if timezone is not None:
        if not isinstance(timezone, str) or not timezone.strip():
            raise ConfigError(f"{path}.timezone must be a non-empty string when set")
        timezone = timezone.strip()
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown {path}.timezone: {timezone!r}") from exc

    checkout_hour = int(section.get("checkout_hour", 10))
    if not 0 <= checkout_hour <= 23:
        raise ConfigError(f"Invalid {path}.checkout_hour: {checkout_hour!r}. Expected 0-23.")

    default_guest_count = _positive_int(section, "default_guest_count", 2, path)
    if default_guest_count > MAX_GUEST_COUNT:
        raise ConfigError(
            f"Invalid {path}.default_guest_count: {default_guest_count!r}. "
            f"Must be at most {MAX_GUEST_COUNT}."
        )

    user_agent = str(section.get("user_agent", DEFAULT_USER_AGENT)).strip() or DEFAULT_USER_AGENT

    return FeedsConfig(
        user_agent=user_agent,
        timeout_seconds=timeout_seconds,
        max_concurrency=_positive_int(section, "max_concurrency", 4, path),
        timezone=timezone,
        checkout_hour=checkout_hour,
        default_guest_count=default_guest_count,
    )


def _parse_export(section: dict) -> ExportConfig:
    path = "staysync.export"
    prodid = str(section.get("prodid", ExportConfig.prodid)).strip()
    if not prodid:
        raise ConfigError(f"{path}.prodid must be a non-empty string")
    return ExportConfig(
        prodid=prodid,
        past_days=_positive_int(section, "past_days", 365, path),
        future_days=_positive_int(section, "future_days", 548, path),
        cache_max_age=_positive_int(section, "cache_max_age", 300, path),
    )


def _parse_cleaning(section: dict) -> CleaningConfig:
    strategy = str(section.get("strategy", "round_robin")).strip().lower()
    if strategy not in _ASSIGNMENT_STRATEGIES:
        raise ConfigError(
            f"Invalid staysync.cleaning.strategy: {strategy!r}. "
            f"Expected one of {', '.join(_ASSIGNMENT_STRATEGIES)}."
        )
    return CleaningConfig(strategy=strategy)


def _parse_logging(section: dict) -> LoggingConfig:
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid staysync.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def _parse_api(section: dict) -> ApiConfig:
    raw_origins = section.get("cors_origins")
    if raw_origins is None:
        cors_origins = ["http://localhost:5173"]
    elif isinstance(raw_origins, list):
        cors_origins = [str(o).strip() for o in raw_origins if isinstance(o, str) and o.strip()]
    else:
        raise ConfigError("staysync.api.cors_origins must be a list of strings")
    return ApiConfig(
        host=str(section.get("host", "127.0.0.1")),
        port=_positive_int(section, "port", 8300, "staysync.api"),
        cors_origins=cors_origins,
    )


def parse_config(data: dict[str, Any]) -> StaySyncConfig:
    """Validate an already-decoded TOML mapping into a :class:`StaySyncConfig`."""
    data = resolve_env_vars(data)

    section = data.get("staysync")
    if not isinstance(section, dict):
        raise ConfigError("Missing [staysync] section in config")

    name = str(section.get("name", "staysync")).strip()
    if not name:
        raise ConfigError("staysync.name must be a non-empty string")

    db_section = section.get("db", {})
    db_name = str(db_section.get("name", name)).strip()
    if not db_name:
        raise ConfigError("staysync.db.name must be a non-empty string")

    db_schema_raw = db_section.get("schema")
    db_schema: str | None = None
    if db_schema_raw is not None:
        if not isinstance(db_schema_raw, str):
            raise ConfigError("staysync.db.schema must be a string when set")
        normalized_schema = db_schema_raw.strip()
        if _DB_SCHEMA_PATTERN.fullmatch(normalized_schema) is None:
            raise ConfigError(
                "Invalid staysync.db.schema: "
                f"{db_schema_raw!r}. Expected a valid SQL identifier-style value."
            )
        db_schema = normalized_schema

    return StaySyncConfig(
        name=name,
        db_name=db_name,
        db_schema=db_schema,
        feeds=_parse_feeds(section.get("feeds", {})),
        export=_parse_export(section.get("export", {})),
        cleaning=_parse_cleaning(section.get("cleaning", {})),
        logging=_parse_logging(section.get("logging", {})),
        api=_parse_api(section.get("api", {})),
    )


def load_config(config_path: Path) -> StaySyncConfig:
    """Load and validate ``staysync.toml``.

    Parameters
    ----------
    config_path:
        Either the TOML file itself or a directory containing ``staysync.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = config_path / CONFIG_FILENAME if config_path.is_dir() else config_path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
