"""
haccp_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration.  Sits beside ``haccp_kernel`` and below
    ``haccp_services`` and the CLI.  Imports only ``haccp_kernel.exceptions``
    from the kernel; the kernel MUST NEVER import from ``haccp_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Environment overrides (``HACCP_DATABASE_URL``, ``HACCP_LOG_LEVEL``,
      ``TELEGRAM_BOT_TOKEN``, ``HACCP_BASE_URL``) win over the file.
    - Deterministic identity: the same effective settings always produce
      the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the given configuration file does not exist.
    - ``ConfigError`` -- a value is present but malformed.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``haccp_config_trace`` log entry with the config_id, version and
    checksum, tying log output to the configuration that produced it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from haccp_config.loader import apply_env_overrides, load_yaml_file, parse_config
from haccp_config.schema import (
    AppConfig,
    DatabaseConfig,
    LoggingConfig,
    NotificationConfig,
    TelegramConfig,
)

_logger = logging.getLogger("haccp_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "haccp.yaml"


def get_active_config(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to haccp_config/defaults/haccp.yaml.
        env: Environment to read overrides from.  Defaults to ``os.environ``.

    Returns:
        AppConfig -- frozen and validated.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ConfigError: If a value is malformed.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = apply_env_overrides(
        load_yaml_file(source),
        os.environ if env is None else env,
    )
    config = parse_config(data)

    _logger.info(
        "haccp_config_trace",
        extra={
            "trace_type": "haccp_config_trace",
            "config_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "config_source": str(source),
            "notification_backend": config.notifications.backend,
        },
    )
    return config


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "DEFAULT_CONFIG_PATH",
    "LoggingConfig",
    "NotificationConfig",
    "TelegramConfig",
    "get_active_config",
]
