"""
Configuration Loader (``colony_config.loader``).

Responsibility
--------------
Loads the ledger YAML file and parses it into the frozen dataclasses of
``colony_config.schema``.  Runtime callers go through
``colony_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` or ``KeyError`` with a
  descriptive message; required fields have no silent defaults.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  canonical JSON form of the raw document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``database.url``  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from colony_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LockConfig,
    LoggingConfig,
    QueryConfig,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return data


def _positive_int(section: str, name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{section}.{name} must be a positive integer, got {value!r}")
    return value


def _non_negative_int(section: str, name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{section}.{name} must be a non-negative integer, got {value!r}")
    return value


def _positive_float(section: str, name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{section}.{name} must be a positive number, got {value!r}")
    return float(value)


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    """Parse the ``database`` section.  ``url`` is required."""
    defaults = DatabaseConfig(url="")
    url = data["url"]
    if not isinstance(url, str) or not url:
        raise ValueError("database.url must be a non-empty string")
    return DatabaseConfig(
        url=url,
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=_positive_int("database", "pool_size", data.get("pool_size", defaults.pool_size)),
        max_overflow=_non_negative_int(
            "database", "max_overflow", data.get("max_overflow", defaults.max_overflow)
        ),
        pool_timeout=_positive_int(
            "database", "pool_timeout", data.get("pool_timeout", defaults.pool_timeout)
        ),
        pool_recycle=_positive_int(
            "database", "pool_recycle", data.get("pool_recycle", defaults.pool_recycle)
        ),
        sqlite_busy_timeout=_positive_float(
            "database",
            "sqlite_busy_timeout",
            data.get("sqlite_busy_timeout", defaults.sqlite_busy_timeout),
        ),
    )


def parse_query(data: dict[str, Any]) -> QueryConfig:
    """Parse the ``query`` section; default_limit may not exceed max_limit."""
    defaults = QueryConfig()
    default_limit = _positive_int(
        "query", "default_limit", data.get("default_limit", defaults.default_limit)
    )
    max_limit = _positive_int("query", "max_limit", data.get("max_limit", defaults.max_limit))
    if default_limit > max_limit:
        raise ValueError(
            f"query.default_limit ({default_limit}) exceeds query.max_limit ({max_limit})"
        )
    return QueryConfig(default_limit=default_limit, max_limit=max_limit)


def parse_locks(data: dict[str, Any]) -> LockConfig:
    """Parse the ``locks`` section."""
    return LockConfig(
        timeout_seconds=_positive_float(
            "locks", "timeout_seconds", data.get("timeout_seconds", LockConfig().timeout_seconds)
        ),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    """Parse the ``logging`` section."""
    level = str(data.get("level", LoggingConfig().level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a full LedgerConfig from a raw YAML document.

    Postconditions:
        - ``checksum`` is the SHA-256 of ``data`` in canonical JSON form.
    Raises:
        KeyError: if ``config_id`` or ``database.url`` is missing.
        ValueError: if any value is out of range.
    """
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"version must be an integer, got {version!r}")
    return LedgerConfig(
        config_id=str(data["config_id"]),
        version=version,
        database=parse_database(data.get("database") or {}),
        query=parse_query(data.get("query") or {}),
        locks=parse_locks(data.get("locks") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )


def log_level(config: LedgerConfig) -> int:
    """The configured level as a ``logging`` module constant."""
    return logging.getLevelName(config.logging.level)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
