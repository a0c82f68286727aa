"""
Configuration management for MergeDoc.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Identifiers (namespace, table, database) are validated before use
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Identifier settings must be checked in StoreConfig.validate()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from .ids import IdType
from .sanitize import is_valid_namespace, is_valid_table_name

logger = logging.getLogger(__name__)


class BackendKind(Enum):
    """Supported storage backends."""

    CLICKHOUSE = "clickhouse"
    SQLITE = "sqlite"


def _optional_timeout(raw: str | None, default: int | None) -> int | None:
    if raw is None:
        return default
    if raw.strip().lower() in ("", "none", "null"):
        return None
    return int(raw)


@dataclass(frozen=True)
class ClickHouseConfig:
    """ClickHouse HTTP interface configuration.

    Attributes:
        url: Base URL of the HTTP interface
        database: Database holding the document, edge, staging and event tables
        username: User name (sent as X-ClickHouse-User)
        password: Password (sent as X-ClickHouse-Key)
        timezone: Session timezone for DateTime rendering
        timeout_seconds: Request timeout
    """

    url: str = "http://localhost:8123"
    database: str = "mergedoc"
    username: str = "default"
    password: str = ""
    timezone: str = "UTC"
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> ClickHouseConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("CLICKHOUSE_URL", "http://localhost:8123"),
            database=os.getenv("CLICKHOUSE_DATABASE", "mergedoc"),
            username=os.getenv("CLICKHOUSE_USERNAME", "default"),
            password=os.getenv("CLICKHOUSE_PASSWORD", ""),
            timezone=os.getenv("CLICKHOUSE_TIMEZONE", "UTC"),
            timeout_seconds=float(os.getenv("CLICKHOUSE_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class SQLiteConfig:
    """Embedded SQLite backend configuration.

    Attributes:
        path: Database file path
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    path: str = "./mergedoc.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> SQLiteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("SQLITE_PATH", "./mergedoc.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class DocumentConfig:
    """Document store configuration.

    Attributes:
        namespace: Namespace all rows are scoped to
        table: Document table name (edges go to <table>_relationships)
        id_type: Identifier kind for new documents ("text" or "uuid")
        transaction_timeout_ms: Default transaction expiry (None = no expiry)
    """

    namespace: str = "default"
    table: str = "mergedoc"
    id_type: str = "text"
    transaction_timeout_ms: int | None = 30_000

    @classmethod
    def from_env(cls) -> DocumentConfig:
        """Load configuration from environment variables."""
        return cls(
            namespace=os.getenv("MERGEDOC_NAMESPACE", "default"),
            table=os.getenv("MERGEDOC_TABLE", "mergedoc"),
            id_type=os.getenv("MERGEDOC_ID_TYPE", "text"),
            transaction_timeout_ms=_optional_timeout(
                os.getenv("MERGEDOC_TX_TIMEOUT_MS"), 30_000
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
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class StoreConfig:
    """Complete store configuration.

    Attributes:
        backend: Which backend to use
        clickhouse: ClickHouse configuration (if backend is CLICKHOUSE)
        sqlite: SQLite configuration (if backend is SQLITE)
        documents: Document store configuration
        observability: Logging configuration
    """

    backend: BackendKind = BackendKind.CLICKHOUSE
    clickhouse: ClickHouseConfig = field(default_factory=ClickHouseConfig)
    sqlite: SQLiteConfig = field(default_factory=SQLiteConfig)
    documents: DocumentConfig = field(default_factory=DocumentConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Returns:
            StoreConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("MERGEDOC_BACKEND", "clickhouse").lower()
        try:
            backend = BackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid MERGEDOC_BACKEND '{backend_str}'. Must be one of: clickhouse, sqlite"
            )

        config = cls(
            backend=backend,
            clickhouse=ClickHouseConfig.from_env(),
            sqlite=SQLiteConfig.from_env(),
            documents=DocumentConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not is_valid_namespace(self.documents.namespace):
            raise ValueError(f"MERGEDOC_NAMESPACE '{self.documents.namespace}' is not valid")
        if not is_valid_table_name(self.documents.table):
            raise ValueError(f"MERGEDOC_TABLE '{self.documents.table}' is not a valid table name")
        IdType.from_str(self.documents.id_type)
        timeout = self.documents.transaction_timeout_ms
        if timeout is not None and timeout <= 0:
            raise ValueError("MERGEDOC_TX_TIMEOUT_MS must be positive or 'none'")

        if self.backend == BackendKind.CLICKHOUSE:
            if not self.clickhouse.url:
                raise ValueError("CLICKHOUSE_URL is required when MERGEDOC_BACKEND=clickhouse")
            if not is_valid_table_name(self.clickhouse.database):
                raise ValueError(
                    f"CLICKHOUSE_DATABASE '{self.clickhouse.database}' is not a valid name"
                )
        elif self.backend == BackendKind.SQLITE:
            if not self.sqlite.path:
                raise ValueError("SQLITE_PATH is required when MERGEDOC_BACKEND=sqlite")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Store configuration loaded",
            extra={
                "backend": self.backend.value,
                "clickhouse_url": self.clickhouse.url
                if self.backend == BackendKind.CLICKHOUSE
                else None,
                "clickhouse_database": self.clickhouse.database
                if self.backend == BackendKind.CLICKHOUSE
                else None,
                "clickhouse_password": "***" if self.clickhouse.password else None,
                "sqlite_path": self.sqlite.path if self.backend == BackendKind.SQLITE else None,
                "namespace": self.documents.namespace,
                "table": self.documents.table,
                "id_type": self.documents.id_type,
                "log_level": self.observability.log_level,
            },
        )
