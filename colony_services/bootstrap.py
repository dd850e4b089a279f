"""
Bootstrap -- build a LedgerEngine from configuration.

Responsibility:
    The single production entrypoint that turns a LedgerConfig into a
    running engine.  Loads config via get_active_config() when none is
    given, configures structured logging at the configured level,
    initializes the database engine, creates missing tables, and registers
    the ledger immutability listeners.

Failure modes:
    - Configuration errors from get_active_config() propagate unchanged.
    - sqlalchemy.exc.OperationalError if the database is unreachable while
      creating tables.
"""

from __future__ import annotations

from pathlib import Path

from colony_config import LedgerConfig, get_active_config
from colony_config.bridges import build_engine_settings, engine_kwargs
from colony_config.loader import log_level
from colony_ledger.db.engine import create_tables, get_session_factory, init_engine_from_url
from colony_ledger.db.immutability import register_immutability_listeners
from colony_ledger.domain.clock import Clock, SystemClock
from colony_ledger.logging_config import configure_logging, get_logger
from colony_ledger.services.alert_notifier import AlertNotifier
from colony_ledger.services.ledger_engine import LedgerEngine

logger = get_logger("services.bootstrap")


def build_ledger_engine(
    config: LedgerConfig | None = None,
    config_path: Path | None = None,
    clock: Clock | None = None,
    alert_notifier: AlertNotifier | None = None,
    database_url: str | None = None,
    create_schema: bool = True,
) -> LedgerEngine:
    """Build a LedgerEngine from config (single entrypoint for production).

    Args:
        config: Already-loaded configuration.  Loaded from config_path (or
            the default file) when omitted.
        config_path: Optional path to a configuration YAML file.
        clock: Optional clock; default SystemClock.
        alert_notifier: Optional receiver for threshold breaches.
        database_url: Overrides config.database.url (operator tooling).
        create_schema: Create missing tables before returning.

    Returns:
        LedgerEngine bound to the process-wide session factory.
    """
    if config is None:
        config = get_active_config(config_path)

    configure_logging(level=log_level(config))

    url = database_url or config.database.url
    init_engine_from_url(url, **engine_kwargs(config))
    if create_schema:
        create_tables()
    register_immutability_listeners()

    logger.info(
        "ledger_engine_built",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "alert_notifier": type(alert_notifier).__name__ if alert_notifier else None,
        },
    )
    return LedgerEngine(
        get_session_factory(),
        clock=clock or SystemClock(),
        settings=build_engine_settings(config),
        alert_notifier=alert_notifier,
    )
