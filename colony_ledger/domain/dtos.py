"""
DTOs -- Immutable data transfer objects for the ledger engine.

Responsibility:
    Defines the frozen values that cross the engine boundary: inputs
    (InboundItem, LedgerEntryDraft, LedgerFilter) and outputs
    (StockRowRecord, LedgerEntryRecord, InboundResult, TransferResult,
    MovementResult, ThresholdBreach, StockDiscrepancy).

Architecture position:
    Kernel > Domain.  Free of sessions and database access.  from_model()
    class methods are boundary converters, invoked only by stores and
    selectors.  Callers never receive ORM instances.

Data flow:
    LedgerEntryDraft -> LedgerStore.append_many -> LedgerEntryRecord
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from colony_ledger.models.ledger import MovementKind

if TYPE_CHECKING:
    from colony_ledger.models.ledger import LedgerEntry as LedgerEntryModel
    from colony_ledger.models.stock import StockRow as StockRowModel


@dataclass(frozen=True)
class StockRowRecord:
    """Snapshot of one (dome, resource) stock level."""

    id: UUID
    dome_id: UUID
    resource_id: UUID
    quantity: Decimal
    reserved: Decimal
    min_threshold: Decimal | None
    max_threshold: Decimal | None
    last_updated: datetime

    @property
    def available(self) -> Decimal:
        """Quantity not held in reserve (may be negative if over-reserved)."""
        return self.quantity - self.reserved

    @classmethod
    def from_model(cls, row: StockRowModel) -> StockRowRecord:
        return cls(
            id=row.id,
            dome_id=row.dome_id,
            resource_id=row.resource_id,
            quantity=row.quantity,
            reserved=row.reserved,
            min_threshold=row.min_threshold,
            max_threshold=row.max_threshold,
            last_updated=row.last_updated,
        )


@dataclass(frozen=True)
class InboundItem:
    """One line of an inbound shipment: a resource and a positive amount."""

    resource_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class LedgerEntryDraft:
    """
    A ledger entry before it is stored.

    Contract:
        The ledger store assigns id and created_at on append.  amount is
        already signed according to movement_kind.
    """

    resource_id: UUID
    dome_id: UUID
    movement_kind: MovementKind
    amount: Decimal
    transfer_correlation_id: UUID | None = None
    inbound_receipt_id: UUID | None = None
    mission_name: str | None = None
    operator_id: str | None = None
    notes: str | None = None
    metadata: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class LedgerEntryRecord:
    """A stored, immutable ledger entry."""

    id: UUID
    resource_id: UUID
    dome_id: UUID
    movement_kind: MovementKind
    amount: Decimal
    transfer_correlation_id: UUID | None
    inbound_receipt_id: UUID | None
    mission_name: str | None
    operator_id: str | None
    notes: str | None
    metadata: Mapping[str, Any] | None
    created_at: datetime

    @classmethod
    def from_model(cls, entry: LedgerEntryModel) -> LedgerEntryRecord:
        return cls(
            id=entry.id,
            resource_id=entry.resource_id,
            dome_id=entry.dome_id,
            movement_kind=MovementKind(entry.movement_kind),
            amount=entry.amount,
            transfer_correlation_id=entry.transfer_correlation_id,
            inbound_receipt_id=entry.inbound_receipt_id,
            mission_name=entry.mission_name,
            operator_id=entry.operator_id,
            notes=entry.notes,
            metadata=dict(entry.entry_metadata) if entry.entry_metadata else None,
            created_at=entry.created_at,
        )


@dataclass(frozen=True)
class LedgerFilter:
    """
    Ledger query filter.

    Time range is half-open: from_time <= created_at < to_time.
    limit=None means the configured default.
    """

    dome_id: UUID | None = None
    resource_id: UUID | None = None
    movement_kind: MovementKind | None = None
    from_time: datetime | None = None
    to_time: datetime | None = None
    limit: int | None = None


@dataclass(frozen=True)
class InboundResult:
    """Outcome of RecordInbound."""

    dome_id: UUID
    mission_name: str | None
    items: tuple[InboundItem, ...]
    stock: tuple[StockRowRecord, ...]
    entries: tuple[LedgerEntryRecord, ...]
    idempotency_key: str | None = None
    replayed: bool = False


@dataclass(frozen=True)
class TransferResult:
    """Outcome of TransferResources."""

    transfer_correlation_id: UUID
    from_dome_id: UUID
    to_dome_id: UUID
    resource_id: UUID
    amount: Decimal
    source_stock: tuple[StockRowRecord, ...]
    target_stock: tuple[StockRowRecord, ...]
    entries: tuple[LedgerEntryRecord, ...]


@dataclass(frozen=True)
class MovementResult:
    """Outcome of RecordMovement."""

    stock: StockRowRecord
    entry: LedgerEntryRecord


class BreachKind(str, Enum):
    """Which threshold a stock level crossed."""

    MIN = "MIN"
    MAX = "MAX"


@dataclass(frozen=True)
class ThresholdBreach:
    """Signal sent to the alert notifier after a committed mutation."""

    dome_id: UUID
    resource_id: UUID
    quantity: Decimal
    threshold: Decimal
    kind: BreachKind


@dataclass(frozen=True)
class StockDiscrepancy:
    """A stock row whose quantity differs from the sum of its ledger entries."""

    dome_id: UUID
    resource_id: UUID
    stock_quantity: Decimal
    ledger_sum: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stock_quantity - self.ledger_sum
