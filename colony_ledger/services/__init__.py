"""Imperative shell of the colony ledger: stores, locks, and the engine."""

from colony_ledger.services.alert_notifier import (
    AlertNotifier,
    CallbackAlertNotifier,
    LoggingAlertNotifier,
)
from colony_ledger.services.key_locks import KeyLockManager
from colony_ledger.services.ledger_engine import EngineSettings, LedgerEngine
from colony_ledger.services.ledger_store import LedgerStore
from colony_ledger.services.stock_store import StockStore

__all__ = [
    "AlertNotifier",
    "CallbackAlertNotifier",
    "EngineSettings",
    "KeyLockManager",
    "LedgerEngine",
    "LedgerStore",
    "LoggingAlertNotifier",
    "StockStore",
]
