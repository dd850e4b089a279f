"""
Colony Ledger - Resource ledger and transfer engine for the colony dashboard.

A stock-keeping kernel with:
- Non-negative per-dome stock levels
- Atomic inter-dome transfers (both sides or neither)
- An append-only, immutable movement ledger
- Per-key linearizable mutations under concurrency
"""

__version__ = "0.1.0"
