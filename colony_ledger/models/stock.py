"""
Module: colony_ledger.models.stock
Responsibility: ORM persistence for per-dome stock levels -- the materialized
    quantity of one resource inside one dome.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    S1 -- (dome_id, resource_id) is unique.
    S2 -- quantity >= 0 and reserved >= 0 (CHECK constraints, plus the
          application-level check in StockStore.apply_delta).

Failure modes:
    - IntegrityError on a second row for the same (dome_id, resource_id).
    - IntegrityError if a flush would store a negative quantity.

Audit relevance:
    A StockRow is a cache.  Its quantity is always reconcilable with the
    running sum of LedgerEntry.amount for the same key, except after an
    administrative direct set (which is documented as non-auditable).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from colony_ledger.db.base import Base, UTCDateTime, UUIDString


class StockRow(Base):
    """
    Available quantity of one resource inside one dome.

    Contract:
        Created implicitly on the first receipt of a resource into a dome.
        Mutated only by the stock store on behalf of the ledger engine.
        Never deleted by the engine.

    Non-goals:
        - reserved is tracked but not reconciled against debits.
    """

    __tablename__ = "stock_rows"

    __table_args__ = (
        UniqueConstraint("dome_id", "resource_id", name="uq_stock_dome_resource"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_stock_reserved_non_negative"),
        Index("idx_stock_dome", "dome_id"),
    )

    dome_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("domes.id"),
        nullable=False,
    )

    resource_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("resources.id"),
        nullable=False,
    )

    # INVARIANT S2: quantity >= 0 for every committed state
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    reserved: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    min_threshold: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    max_threshold: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    last_updated: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<StockRow dome={self.dome_id} resource={self.resource_id} "
            f"qty={self.quantity} reserved={self.reserved}>"
        )
