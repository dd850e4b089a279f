"""
LedgerConfig schema.

Frozen dataclasses for the ledger's runtime configuration.  YAML files are
parsed into these types by the loader; the rest of the system only ever
sees a LedgerConfig returned by ``colony_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection and pool settings."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    sqlite_busy_timeout: float = 30.0


@dataclass(frozen=True)
class QueryConfig:
    """Ledger query limits."""

    default_limit: int = 100
    max_limit: int = 500


@dataclass(frozen=True)
class LockConfig:
    """Stock key lock acquisition."""

    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class LedgerConfig:
    """Root configuration artifact."""

    config_id: str
    version: int
    database: DatabaseConfig
    query: QueryConfig = field(default_factory=QueryConfig)
    locks: LockConfig = field(default_factory=LockConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
