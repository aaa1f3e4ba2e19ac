"""
Configuration management for learnstore.

All configuration is done via environment variables; there are no config
files. This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for a single-user desktop install
    - Invalid values fail at startup, never on first use

How to change safely:
    - Add new settings with defaults that keep existing installs working
    - Never change the default store file name; existing data lives there
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("json", "text")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class StorageConfig:
    """Local store configuration.

    Attributes:
        data_dir: Directory holding the store file
        db_file: Store file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        lock_timeout_seconds: Maximum wait for exclusive access to the
            connection (0 or less waits forever)
    """

    data_dir: str = "~/.learnstore"
    db_file: str = "local.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    lock_timeout_seconds: float = 30.0

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir).expanduser() / self.db_file

    @property
    def lock_timeout(self) -> float | None:
        return self.lock_timeout_seconds if self.lock_timeout_seconds > 0 else None

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("LEARNSTORE_DATA_DIR", "~/.learnstore"),
            db_file=os.getenv("LEARNSTORE_DB_FILE", "local.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            lock_timeout_seconds=float(os.getenv("STORE_LOCK_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class ApiConfig:
    """Command surface (HTTP) configuration.

    Attributes:
        host: Interface to bind
        port: Port to bind
        cors_origins: Origins allowed to call the API (the UI shell)
    """

    host: str = "127.0.0.1"
    port: int = 8765
    cors_origins: tuple[str, ...] = ("http://localhost:3000", "tauri://localhost")

    @classmethod
    def from_env(cls) -> ApiConfig:
        origins = os.getenv("API_CORS_ORIGINS")
        return cls(
            host=os.getenv("API_HOST", "127.0.0.1"),
            port=int(os.getenv("API_PORT", "8765")),
            cors_origins=(
                tuple(o.strip() for o in origins.split(",") if o.strip())
                if origins is not None
                else cls.cors_origins
            ),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass
class AppConfig:
    """Complete process configuration.

    Attributes:
        storage: Local store configuration
        api: Command surface configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If a value is missing or invalid
        """
        config = cls(
            storage=StorageConfig.from_env(),
            api=ApiConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_file or "/" in self.storage.db_file:
            raise ValueError(f"LEARNSTORE_DB_FILE must be a plain file name, got '{self.storage.db_file}'")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be >= 0")
        if not 0 < self.api.port < 65536:
            raise ValueError(f"API_PORT must be between 1 and 65535, got {self.api.port}")
        if self.observability.log_level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {_LOG_LEVELS}")
        if self.observability.log_format not in _LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {_LOG_FORMATS}")

        if not os.path.exists(os.path.expanduser(self.storage.data_dir)):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created when the store is opened."
            )

    def log_config(self) -> None:
        logger.info(
            "Configuration loaded",
            extra={
                "db_path": str(self.storage.db_path),
                "wal_mode": self.storage.wal_mode,
                "busy_timeout_ms": self.storage.busy_timeout_ms,
                "lock_timeout_seconds": self.storage.lock_timeout_seconds,
                "api_host": self.api.host,
                "api_port": self.api.port,
                "log_level": self.observability.log_level,
            },
        )
