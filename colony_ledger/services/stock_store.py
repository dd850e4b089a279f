"""
StockStore -- durable stock levels keyed by (dome, resource).

Responsibility:
    Reads and mutates StockRow rows inside the caller's transaction.
    apply_delta is the movement-accounting path; upsert_absolute is the
    administrative override path.

Architecture position:
    Kernel > Services -- imperative shell.  Called by LedgerEngine inside a
    unit of work that already holds the in-process key locks.

Invariants enforced:
    S2 -- quantity >= 0.  apply_delta checks the resulting quantity against
          the row it has just locked, so the check and the write see the
          same value.
    Lock order: lock_rows takes row locks in canonical key order, matching
          the in-process KeyLockManager order.
    Row-level locking: every read on the mutation path is
          SELECT ... FOR UPDATE (a no-op on SQLite, where BEGIN IMMEDIATE
          already serializes writers).

Failure modes:
    - InsufficientStockError if a delta would make quantity negative,
      including a negative delta against an absent row.
    - InvalidMovementError if upsert_absolute receives negative values.
    - IntegrityError on a concurrent first-insert race is absorbed with a
      savepoint rollback and a locked re-read.

Non-goals:
    - Does NOT call session.commit() -- the unit of work owns boundaries.
    - Does NOT write ledger entries.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from colony_ledger.domain.clock import Clock, SystemClock
from colony_ledger.domain.dtos import StockRowRecord
from colony_ledger.exceptions import InsufficientStockError, InvalidMovementError
from colony_ledger.logging_config import get_logger
from colony_ledger.models.registry import Resource
from colony_ledger.models.stock import StockRow
from colony_ledger.services.key_locks import StockKey, canonical_order

logger = get_logger("services.stock_store")

ZERO = Decimal("0")


class StockStore:
    """
    Stock levels for one session.

    Contract:
        All mutating calls must run inside a transaction; the caller commits
        or rolls back.  Returned values are StockRowRecord snapshots, never
        ORM instances.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _select_row(self, dome_id: UUID, resource_id: UUID, for_update: bool) -> StockRow | None:
        stmt = select(StockRow).where(
            StockRow.dome_id == dome_id,
            StockRow.resource_id == resource_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_or_create(self, dome_id: UUID, resource_id: UUID) -> tuple[StockRow, bool]:
        """Return the locked row for a key, inserting an empty one if absent."""
        row = self._select_row(dome_id, resource_id, for_update=True)
        if row is not None:
            return row, False

        # Savepoint so a lost insert race does not roll back the whole unit of work
        savepoint = self._session.begin_nested()
        try:
            row = StockRow(
                dome_id=dome_id,
                resource_id=resource_id,
                quantity=ZERO,
                reserved=ZERO,
                last_updated=self._clock.now(),
            )
            self._session.add(row)
            self._session.flush()
            savepoint.commit()
            return row, True
        except IntegrityError:
            logger.debug(
                "stock_row_insert_race_retry",
                extra={"dome_id": str(dome_id), "resource_id": str(resource_id)},
            )
            savepoint.rollback()
            row = self._select_row(dome_id, resource_id, for_update=True)
            if row is None:
                raise
            return row, False

    def lock_rows(self, keys: Iterable[StockKey]) -> int:
        """
        Lock the existing rows of every key, in canonical key order.

        Rows are locked up front so every process takes its row locks in the
        same order as the in-process key locks.  Keys without a row are
        skipped; apply_delta creates them later.

        Returns:
            The number of rows locked.
        """
        locked = 0
        for dome_id, resource_id in canonical_order(keys):
            if self._select_row(dome_id, resource_id, for_update=True) is not None:
                locked += 1
        return locked

    def get(self, dome_id: UUID, resource_id: UUID) -> StockRowRecord | None:
        """Current stock for one key, or None if the resource was never received."""
        row = self._select_row(dome_id, resource_id, for_update=False)
        return StockRowRecord.from_model(row) if row is not None else None

    def list_by_dome(self, dome_id: UUID) -> list[StockRowRecord]:
        """All stock rows of a dome, ordered by resource code."""
        rows = self._session.execute(
            select(StockRow)
            .join(Resource, Resource.id == StockRow.resource_id)
            .where(StockRow.dome_id == dome_id)
            .order_by(Resource.code, StockRow.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [StockRowRecord.from_model(row) for row in rows]

    def upsert_absolute(
        self,
        dome_id: UUID,
        resource_id: UUID,
        quantity: Decimal,
        reserved: Decimal,
        min_threshold: Decimal | None = None,
        max_threshold: Decimal | None = None,
    ) -> StockRowRecord:
        """
        Set a stock row to exactly these values, creating it if absent.

        Administrative correction only: no ledger entry is written, so the
        row stops reconciling with the ledger by the difference.

        Raises:
            InvalidMovementError: If quantity or reserved is negative.
        """
        if quantity < ZERO:
            raise InvalidMovementError("quantity must be non-negative", amount=str(quantity))
        if reserved < ZERO:
            raise InvalidMovementError("reserved must be non-negative", amount=str(reserved))

        row, _created = self._lock_or_create(dome_id, resource_id)
        row.quantity = quantity
        row.reserved = reserved
        row.min_threshold = min_threshold
        row.max_threshold = max_threshold
        row.last_updated = self._clock.now()
        self._session.flush()
        return StockRowRecord.from_model(row)

    def apply_delta(self, dome_id: UUID, resource_id: UUID, delta: Decimal) -> StockRowRecord:
        """
        Atomically add delta to a row's quantity.

        An absent row is created with quantity = delta when delta >= 0.

        Preconditions:
            - The caller holds the key lock for (dome_id, resource_id).
        Postconditions:
            - The row is locked until the transaction ends.
            - quantity >= 0.

        Raises:
            InsufficientStockError: If the resulting quantity would be negative.
        """
        row = self._select_row(dome_id, resource_id, for_update=True)
        available = row.quantity if row is not None else ZERO

        # INVARIANT S2: check against the locked value, before any write
        if available + delta < ZERO:
            raise InsufficientStockError(
                dome_id=str(dome_id),
                resource_id=str(resource_id),
                requested=str(-delta),
                available=str(available),
            )

        if row is None:
            row, _created = self._lock_or_create(dome_id, resource_id)

        row.quantity = row.quantity + delta
        row.last_updated = self._clock.now()
        self._session.flush()

        logger.debug(
            "stock_delta_applied",
            extra={
                "dome_id": str(dome_id),
                "resource_id": str(resource_id),
                "delta": str(delta),
                "quantity": str(row.quantity),
            },
        )
        return StockRowRecord.from_model(row)
