"""
KeyLockManager -- in-process mutexes per (dome, resource) stock key.

Responsibility:
    Serializes read-check-write sequences on the same stock key within one
    process.  A unit of work acquires every key it will touch, in canonical
    (sorted) order, before it opens its database transaction.

Architecture position:
    Kernel > Services -- imperative shell infrastructure, used only by
    LedgerEngine.

Invariants enforced:
    - Per-key linearizability: two units of work touching the same key never
      interleave.
    - Deadlock freedom: keys are always acquired in sorted order, so two
      transfers in opposite directions between the same dome pair cannot
      each hold one key while waiting for the other.

Failure modes:
    - LockTimeoutError if a key is not acquired within the timeout.  Keys
      already acquired by the same call are released first.

Non-goals:
    - Cross-process exclusion.  On PostgreSQL that is provided by
      SELECT ... FOR UPDATE on the stock rows inside the transaction.
"""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from uuid import UUID

from colony_ledger.exceptions import LockTimeoutError
from colony_ledger.logging_config import get_logger

logger = get_logger("services.key_locks")

StockKey = tuple[UUID, UUID]


def canonical_order(keys: Iterable[StockKey]) -> list[StockKey]:
    """Deduplicate keys and sort them by their string form."""
    return sorted(set(keys), key=lambda k: (str(k[0]), str(k[1])))


class _LockSlot:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyLockManager:
    """
    Registry of per-key locks with reference counting.

    Slots are created on demand and discarded once no caller holds or waits
    on them, so the registry does not grow with the number of keys ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[StockKey, _LockSlot] = {}

    def _checkout(self, key: StockKey) -> _LockSlot:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = _LockSlot()
                self._slots[key] = slot
            slot.holders += 1
            return slot

    def _checkin(self, key: StockKey) -> None:
        with self._guard:
            slot = self._slots[key]
            slot.holders -= 1
            if slot.holders == 0:
                del self._slots[key]

    @contextmanager
    def acquire(self, keys: Iterable[StockKey], timeout: float) -> Iterator[list[StockKey]]:
        """
        Hold the locks for every key for the duration of the block.

        Args:
            keys: Stock keys to lock (duplicates are ignored).
            timeout: Seconds to wait for each key.

        Yields:
            The keys in the order they were acquired.

        Raises:
            LockTimeoutError: If any key could not be acquired in time.
        """
        ordered = canonical_order(keys)
        acquired: list[tuple[StockKey, _LockSlot]] = []
        try:
            for key in ordered:
                slot = self._checkout(key)
                if not slot.lock.acquire(timeout=timeout):
                    self._checkin(key)
                    logger.warning(
                        "stock_lock_timeout",
                        extra={"lock_key": key_label(key), "timeout_seconds": timeout},
                    )
                    raise LockTimeoutError(key_label(key), timeout)
                acquired.append((key, slot))
            yield ordered
        finally:
            for key, slot in reversed(acquired):
                slot.lock.release()
                self._checkin(key)

    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._slots)


def key_label(key: StockKey) -> str:
    """Printable form of a stock key, as used in logs and errors."""
    return f"{key[0]}:{key[1]}"
