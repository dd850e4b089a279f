"""Domain models for the colony ledger."""

from colony_ledger.models.ledger import InboundReceipt, LedgerEntry, MovementKind
from colony_ledger.models.registry import (
    Dome,
    DomeStatus,
    DomeType,
    Resource,
    ResourceCategory,
)
from colony_ledger.models.stock import StockRow

__all__ = [
    "Dome",
    "DomeStatus",
    "DomeType",
    "InboundReceipt",
    "LedgerEntry",
    "MovementKind",
    "Resource",
    "ResourceCategory",
    "StockRow",
]
