"""
Module: colony_ledger.models.ledger
Responsibility: ORM persistence for the append-only resource movement ledger
    and for inbound shipment receipts (idempotency anchors).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    L1 -- Append-only.  LedgerEntry and InboundReceipt rows are never updated
          or deleted (db/immutability.py listeners).
    L2 -- Sign convention.  amount < 0 for outbound kinds (TRANSFER_OUT,
          CONSUMPTION, LOSS), amount > 0 for inbound kinds (EARTH_IMPORT,
          EXTRACTION, PRODUCTION, TRANSFER_IN); ADJUSTMENT may be either.
    L3 -- Transfer pairing.  transfer_correlation_id is set on exactly the two
          entries (one TRANSFER_OUT, one TRANSFER_IN) written by one transfer.
    L4 -- Idempotent receipts.  InboundReceipt.idempotency_key is unique.

Audit relevance:
    The ledger is the audit trail.  For every (dome_id, resource_id) the sum of
    LedgerEntry.amount equals the StockRow quantity after any sequence of
    engine operations starting from an empty state.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from colony_ledger.db.base import Base, UTCDateTime, UUIDString


class MovementKind(str, Enum):
    """Category of a ledger entry."""

    EARTH_IMPORT = "EARTH_IMPORT"
    EXTRACTION = "EXTRACTION"
    PRODUCTION = "PRODUCTION"
    CONSUMPTION = "CONSUMPTION"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    LOSS = "LOSS"
    ADJUSTMENT = "ADJUSTMENT"

    @property
    def is_inbound(self) -> bool:
        return self in _INBOUND_KINDS

    @property
    def is_outbound(self) -> bool:
        return self in _OUTBOUND_KINDS

    @property
    def is_transfer(self) -> bool:
        return self in (MovementKind.TRANSFER_IN, MovementKind.TRANSFER_OUT)


_INBOUND_KINDS = frozenset({
    MovementKind.EARTH_IMPORT,
    MovementKind.EXTRACTION,
    MovementKind.PRODUCTION,
    MovementKind.TRANSFER_IN,
})

_OUTBOUND_KINDS = frozenset({
    MovementKind.CONSUMPTION,
    MovementKind.LOSS,
    MovementKind.TRANSFER_OUT,
})


class InboundReceipt(Base):
    """
    Record of one processed inbound shipment carrying an idempotency key.

    Written in the same unit of work as the shipment's stock deltas and
    ledger entries, so a committed receipt implies a fully applied shipment.
    """

    __tablename__ = "inbound_receipts"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_inbound_idempotency"),
    )

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)

    dome_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("domes.id"),
        nullable=False,
    )

    item_count: Mapped[int] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<InboundReceipt {self.idempotency_key}: dome={self.dome_id} items={self.item_count}>"


class LedgerEntry(Base):
    """
    One immutable fact: this amount of this resource moved, in this dome,
    for this reason, at this time.

    Contract:
        Created exactly once by the ledger store during an engine operation.
        Never updated or deleted (L1).

    Guarantees:
        - created_at is set once from the injected clock.
        - transfer_correlation_id is shared by exactly two entries (L3).
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        Index("idx_ledger_dome_created", "dome_id", "created_at"),
        Index("idx_ledger_resource", "resource_id"),
        Index("idx_ledger_kind", "movement_kind"),
        Index("idx_ledger_transfer", "transfer_correlation_id"),
        Index("idx_ledger_created_at", "created_at"),
    )

    resource_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("resources.id"),
        nullable=False,
    )

    dome_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("domes.id"),
        nullable=False,
    )

    movement_kind: Mapped[MovementKind] = mapped_column(
        String(20),
        nullable=False,
    )

    # Signed: negative for outbound, positive for inbound (L2)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    transfer_correlation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    inbound_receipt_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("inbound_receipts.id"),
        nullable=True,
    )

    # Causal metadata
    mission_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    operator_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    entry_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.id}: {self.movement_kind} {self.amount} "
            f"dome={self.dome_id} resource={self.resource_id}>"
        )
