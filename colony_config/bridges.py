"""
Config -> Kernel Bridges.

Functions that convert a LedgerConfig into kernel-compatible inputs.  These
live in colony_config (the producer) because the kernel must NEVER import
colony_config.

Usage:
    from colony_config.bridges import build_engine_settings, engine_kwargs

    config = get_active_config()
    init_engine_from_url(config.database.url, **engine_kwargs(config))
    settings = build_engine_settings(config)
"""

from __future__ import annotations

from typing import Any

from colony_config.schema import LedgerConfig
from colony_ledger.services.ledger_engine import EngineSettings


def build_engine_settings(config: LedgerConfig) -> EngineSettings:
    """EngineSettings from the query and lock sections."""
    return EngineSettings(
        default_query_limit=config.query.default_limit,
        max_query_limit=config.query.max_limit,
        lock_timeout_seconds=config.locks.timeout_seconds,
    )


def engine_kwargs(config: LedgerConfig) -> dict[str, Any]:
    """Keyword arguments for colony_ledger.db.engine.init_engine_from_url."""
    db = config.database
    return {
        "echo": db.echo,
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
        "sqlite_busy_timeout": db.sqlite_busy_timeout,
    }
