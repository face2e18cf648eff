"""
Configuration Loader (``haccp_config.loader``).

Responsibility
--------------
Loads the YAML configuration file, applies environment overrides and
parses the result into the frozen ``haccp_config.schema`` dataclasses.
The single public entry point for runtime config is
``haccp_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Malformed values raise ``ConfigError`` naming the offending key; there
  are no silent fallbacks for values that are present but wrong.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective settings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong type / unknown choice  -> ``ConfigError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from haccp_config.schema import (
    LOG_LEVELS,
    NOTIFICATION_BACKENDS,
    AppConfig,
    DatabaseConfig,
    LoggingConfig,
    NotificationConfig,
    TelegramConfig,
)
from haccp_kernel.exceptions import ConfigError

# Environment variable -> (section path, key)
ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], str]] = {
    "HACCP_DATABASE_URL": (("database",), "url"),
    "HACCP_LOG_LEVEL": (("logging",), "level"),
    "TELEGRAM_BOT_TOKEN": (("notifications", "telegram"), "bot_token"),
    "HACCP_BASE_URL": (("notifications",), "base_url"),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if ``path`` does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError("<root>", "top level must be a mapping")
    return data


def apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with non-empty environment overrides applied."""
    result = copy.deepcopy(data)
    for var, (path, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        section = result
        for part in path:
            child = section.get(part)
            if not isinstance(child, dict):
                child = {}
                section[part] = child
            section = child
        section[key] = value
    return result


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(key, "must be a mapping")
    return value


def _positive_int(data: Mapping[str, Any], key: str, default: int, where: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{where}.{key}", f"must be a positive integer, got {value!r}")
    return value


def _bool(data: Mapping[str, Any], key: str, default: bool, where: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}.{key}", f"must be true or false, got {value!r}")
    return value


def parse_database(data: Mapping[str, Any]) -> DatabaseConfig:
    url = data.get("url", DatabaseConfig.url)
    if not isinstance(url, str) or not url.strip():
        raise ConfigError("database.url", "must be a non-empty string")
    return DatabaseConfig(
        url=url.strip(),
        echo=_bool(data, "echo", False, "database"),
        pool_size=_positive_int(data, "pool_size", 20, "database"),
        max_overflow=_positive_int(data, "max_overflow", 10, "database"),
        pool_timeout=_positive_int(data, "pool_timeout", 30, "database"),
    )


def parse_logging(data: Mapping[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        raise ConfigError("logging.level", f"unknown level {level!r}")
    return LoggingConfig(level=level)


def parse_notifications(data: Mapping[str, Any]) -> NotificationConfig:
    backend = data.get("backend", "logging")
    if backend not in NOTIFICATION_BACKENDS:
        raise ConfigError(
            "notifications.backend",
            f"must be one of {sorted(NOTIFICATION_BACKENDS)}, got {backend!r}",
        )

    telegram = _section(data, "telegram")
    timeout = telegram.get("timeout_seconds", 10.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(
            "notifications.telegram.timeout_seconds",
            f"must be a positive number, got {timeout!r}",
        )
    token = telegram.get("bot_token")

    return NotificationConfig(
        backend=backend,
        base_url=str(data.get("base_url", NotificationConfig.base_url)).rstrip("/"),
        detached=_bool(data, "detached", False, "notifications"),
        max_workers=_positive_int(data, "max_workers", 4, "notifications"),
        telegram=TelegramConfig(
            api_base=str(telegram.get("api_base", TelegramConfig.api_base)).rstrip("/"),
            bot_token=str(token) if token else None,
            timeout_seconds=float(timeout),
        ),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 checksum of the canonical JSON serialization of ``data``.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> AppConfig:
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ConfigError("version", f"must be an integer, got {version!r}")

    # The token is a secret; it must not influence the logged checksum.
    fingerprint = copy.deepcopy(data)
    notifications = fingerprint.get("notifications")
    if isinstance(notifications, dict) and isinstance(notifications.get("telegram"), dict):
        notifications["telegram"].pop("bot_token", None)

    return AppConfig(
        config_id=str(data.get("config_id", "haccp")),
        version=version,
        database=parse_database(_section(data, "database")),
        logging=parse_logging(_section(data, "logging")),
        notifications=parse_notifications(_section(data, "notifications")),
        checksum=compute_checksum(fingerprint),
    )
