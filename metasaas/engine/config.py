"""
Configuration management for the entity engine.

All configuration comes from environment variables; there are no config
files. Each section is a frozen dataclass with a from_env() constructor.

Invariants:
    - Every setting has a default suitable for local development
    - Secrets are never logged

How to change safely:
    - Add new settings with defaults so existing deployments keep booting
    - Validate cross-field rules in EngineConfig.validate()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

LOG_FORMATS = ("json", "text")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        database_path: Path of the database file holding every tenant
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    database_path: str = "./data/metasaas.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("METASAAS_DATABASE_PATH", "./data/metasaas.db"),
            wal_mode=_env_bool("METASAAS_WAL_MODE", True),
            busy_timeout_ms=int(os.getenv("METASAAS_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("METASAAS_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class WebhookConfig:
    """Outgoing webhook delivery.

    Attributes:
        timeout_seconds: Per-request timeout
        user_agent: User-Agent header sent with every delivery
    """

    timeout_seconds: float = 10.0
    user_agent: str = "metasaas-engine"

    @classmethod
    def from_env(cls) -> WebhookConfig:
        return cls(
            timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10")),
            user_agent=os.getenv("WEBHOOK_USER_AGENT", "metasaas-engine"),
        )


@dataclass(frozen=True)
class AuditConfig:
    """Audit log configuration.

    Attributes:
        enabled: Whether dispatches are written to the audit log
        max_input_chars: Truncation limit of the stored input JSON
    """

    enabled: bool = True
    max_input_chars: int = 10_000

    @classmethod
    def from_env(cls) -> AuditConfig:
        return cls(
            enabled=_env_bool("AUDIT_ENABLED", True),
            max_input_chars=int(os.getenv("AUDIT_MAX_INPUT_CHARS", "10000")),
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
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        storage: SQLite storage configuration
        webhooks: Webhook delivery configuration
        audit: Audit log configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If a value is malformed or invalid
        """
        config = cls(
            storage=StorageConfig.from_env(),
            webhooks=WebhookConfig.from_env(),
            audit=AuditConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.database_path:
            raise ValueError("METASAAS_DATABASE_PATH cannot be empty")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("METASAAS_BUSY_TIMEOUT_MS must be >= 0")
        if self.webhooks.timeout_seconds <= 0:
            raise ValueError("WEBHOOK_TIMEOUT_SECONDS must be > 0")
        if self.audit.max_input_chars <= 0:
            raise ValueError("AUDIT_MAX_INPUT_CHARS must be > 0")
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. "
                f"Must be one of: {', '.join(LOG_FORMATS)}"
            )
        if self.observability.log_level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid LOG_LEVEL '{self.observability.log_level}'. "
                f"Must be one of: {', '.join(LOG_LEVELS)}"
            )

        parent = os.path.dirname(os.path.abspath(self.storage.database_path))
        if not os.path.exists(parent):
            logger.warning(
                f"Database directory does not exist: {parent}. It will be created on first connect."
            )

    def log_config(self) -> None:
        logger.info(
            "Engine configuration loaded",
            extra={
                "database_path": self.storage.database_path,
                "wal_mode": self.storage.wal_mode,
                "audit_enabled": self.audit.enabled,
                "webhook_timeout_seconds": self.webhooks.timeout_seconds,
                "log_level": self.observability.log_level,
            },
        )
