"""Read-only selectors over the ledger, stock levels and registry."""

from colony_ledger.selectors.ledger_selector import LedgerSelector
from colony_ledger.selectors.stock_selector import RegistrySelector, StockSelector

__all__ = ["LedgerSelector", "RegistrySelector", "StockSelector"]
