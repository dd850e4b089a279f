"""
Module: colony_ledger.selectors.ledger_selector
Responsibility: Read-only queries over the movement ledger: the filtered
    ledger query, stock-versus-ledger reconciliation, and transfer pairing
    checks.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - Bounded results: every ledger query has a limit between 1 and the
      configured maximum.
    - Deterministic ordering: created_at descending, then id descending.

Failure modes:
    - InvalidLedgerFilterError for limit < 1, naive datetimes, or an empty
      time range.  Returns empty lists when nothing matches (never raises on
      absence of data).

Audit relevance:
    reconcile() and unpaired_transfers() are the audit checks for the two
    ledger invariants: stock equals the running sum of entries, and every
    transfer is exactly one TRANSFER_OUT/TRANSFER_IN pair.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from colony_ledger.domain.dtos import LedgerEntryRecord, LedgerFilter, StockDiscrepancy
from colony_ledger.exceptions import InvalidLedgerFilterError
from colony_ledger.models.ledger import LedgerEntry, MovementKind
from colony_ledger.models.stock import StockRow
from colony_ledger.selectors.base import BaseSelector

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 500


def _require_aware(field: str, value: datetime | None) -> None:
    if value is not None and value.tzinfo is None:
        raise InvalidLedgerFilterError(field, "datetime must be timezone-aware")


class LedgerSelector(BaseSelector):
    """
    Selector for ledger queries.

    Contract:
        query() returns a snapshot list of LedgerEntryRecord, newest first.
    """

    def __init__(
        self,
        session,
        default_limit: int = DEFAULT_QUERY_LIMIT,
        max_limit: int = MAX_QUERY_LIMIT,
    ):
        super().__init__(session)
        self._default_limit = default_limit
        self._max_limit = max_limit

    def resolve_limit(self, limit: int | None) -> int:
        """Apply the default and cap at the configured maximum."""
        if limit is None:
            return min(self._default_limit, self._max_limit)
        if limit < 1:
            raise InvalidLedgerFilterError("limit", f"must be >= 1, got {limit}")
        return min(limit, self._max_limit)

    def query(self, ledger_filter: LedgerFilter) -> list[LedgerEntryRecord]:
        """
        Ledger entries matching every set filter field.

        Time range is half-open: from_time <= created_at < to_time.

        Raises:
            InvalidLedgerFilterError: If the filter is out of bounds.
        """
        limit = self.resolve_limit(ledger_filter.limit)
        _require_aware("from_time", ledger_filter.from_time)
        _require_aware("to_time", ledger_filter.to_time)
        if (
            ledger_filter.from_time is not None
            and ledger_filter.to_time is not None
            and ledger_filter.from_time >= ledger_filter.to_time
        ):
            raise InvalidLedgerFilterError("from_time", "must be earlier than to_time")

        stmt = select(LedgerEntry)
        if ledger_filter.dome_id is not None:
            stmt = stmt.where(LedgerEntry.dome_id == ledger_filter.dome_id)
        if ledger_filter.resource_id is not None:
            stmt = stmt.where(LedgerEntry.resource_id == ledger_filter.resource_id)
        if ledger_filter.movement_kind is not None:
            kind = MovementKind(ledger_filter.movement_kind)
            stmt = stmt.where(LedgerEntry.movement_kind == kind.value)
        if ledger_filter.from_time is not None:
            stmt = stmt.where(LedgerEntry.created_at >= ledger_filter.from_time)
        if ledger_filter.to_time is not None:
            stmt = stmt.where(LedgerEntry.created_at < ledger_filter.to_time)

        stmt = stmt.order_by(
            LedgerEntry.created_at.desc(),
            LedgerEntry.id.desc(),
        ).limit(limit)

        entries = self.session.execute(stmt).scalars().all()
        return [LedgerEntryRecord.from_model(entry) for entry in entries]

    def entries_for_transfer(self, transfer_correlation_id: UUID) -> list[LedgerEntryRecord]:
        """Both entries of one transfer (TRANSFER_OUT first)."""
        entries = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.transfer_correlation_id == transfer_correlation_id)
            .order_by(LedgerEntry.amount)
        ).scalars().all()
        return [LedgerEntryRecord.from_model(entry) for entry in entries]

    def ledger_sums(self, dome_id: UUID | None = None) -> dict[tuple[UUID, UUID], Decimal]:
        """Running sum of entry amounts per (dome_id, resource_id)."""
        stmt = select(
            LedgerEntry.dome_id,
            LedgerEntry.resource_id,
            func.sum(LedgerEntry.amount),
        ).group_by(LedgerEntry.dome_id, LedgerEntry.resource_id)
        if dome_id is not None:
            stmt = stmt.where(LedgerEntry.dome_id == dome_id)
        return {
            (row_dome, row_resource): Decimal(total)
            for row_dome, row_resource, total in self.session.execute(stmt).all()
        }

    def reconcile(self, dome_id: UUID | None = None) -> list[StockDiscrepancy]:
        """
        Stock rows whose quantity differs from the sum of their ledger entries.

        Keys that have ledger entries but no stock row are compared against
        a quantity of zero.
        """
        sums = self.ledger_sums(dome_id)

        stmt = select(StockRow.dome_id, StockRow.resource_id, StockRow.quantity)
        if dome_id is not None:
            stmt = stmt.where(StockRow.dome_id == dome_id)
        quantities = {
            (row_dome, row_resource): quantity
            for row_dome, row_resource, quantity in self.session.execute(stmt).all()
        }

        discrepancies = []
        for key in sorted(set(sums) | set(quantities), key=lambda k: (str(k[0]), str(k[1]))):
            stock_quantity = quantities.get(key, Decimal("0"))
            ledger_sum = sums.get(key, Decimal("0"))
            if stock_quantity != ledger_sum:
                discrepancies.append(StockDiscrepancy(
                    dome_id=key[0],
                    resource_id=key[1],
                    stock_quantity=stock_quantity,
                    ledger_sum=ledger_sum,
                ))
        return discrepancies

    def unpaired_transfers(self) -> list[UUID]:
        """
        Correlation ids that are not exactly one TRANSFER_OUT plus one
        TRANSFER_IN with negated amounts in the same resource.
        """
        entries = self.session.execute(
            select(LedgerEntry).where(LedgerEntry.transfer_correlation_id.is_not(None))
        ).scalars().all()

        groups: dict[UUID, list[LedgerEntry]] = {}
        for entry in entries:
            groups.setdefault(entry.transfer_correlation_id, []).append(entry)

        broken: list[UUID] = []
        for correlation_id, group in groups.items():
            kinds = sorted(MovementKind(e.movement_kind).value for e in group)
            if kinds != [MovementKind.TRANSFER_IN.value, MovementKind.TRANSFER_OUT.value]:
                broken.append(correlation_id)
                continue
            out_entry, in_entry = sorted(group, key=lambda e: e.amount)
            if (
                out_entry.amount + in_entry.amount != 0
                or out_entry.movement_kind != MovementKind.TRANSFER_OUT.value
                or out_entry.resource_id != in_entry.resource_id
                or out_entry.dome_id == in_entry.dome_id
            ):
                broken.append(correlation_id)
        return broken
