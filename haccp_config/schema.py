"""
Runtime configuration schema.

Frozen dataclasses the loader parses ``haccp.yaml`` into.  ``AppConfig``
is the only object callers ever see.
"""

from __future__ import annotations

from dataclasses import dataclass, field

NOTIFICATION_BACKENDS = frozenset({"telegram", "logging", "recording"})
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///haccp.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class TelegramConfig:
    api_base: str = "https://api.telegram.org"
    bot_token: str | None = None
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)


@dataclass(frozen=True)
class NotificationConfig:
    backend: str = "logging"
    base_url: str = "http://localhost:3000"
    detached: bool = False
    max_workers: int = 4
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    """Validated runtime configuration.

    ``checksum`` identifies the effective settings (file plus environment
    overrides) so a log line can be tied to the exact configuration.
    """

    config_id: str
    version: int
    database: DatabaseConfig
    logging: LoggingConfig
    notifications: NotificationConfig
    checksum: str = ""
