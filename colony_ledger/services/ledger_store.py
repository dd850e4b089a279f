"""
LedgerStore -- append-only persistence for resource movements.

Responsibility:
    Validates LedgerEntryDraft batches, assigns ids and creation timestamps,
    persists them all-or-nothing, and serves the filtered ledger query.
    Also records InboundReceipt idempotency anchors.

Architecture position:
    Kernel > Services -- imperative shell.  Called by LedgerEngine inside a
    unit of work; all writes happen in the caller's transaction.

Invariants enforced:
    L1 -- Append-only: this store only ever INSERTs (updates and deletes are
          blocked by db/immutability.py).
    L2 -- Sign convention per movement kind.
    L3 -- Transfer pairing: a batch that carries a transfer_correlation_id
          must carry exactly one TRANSFER_OUT and one TRANSFER_IN for it, in
          the same resource, in different domes, with negated amounts.
    Batch atomicity: append_many writes inside a savepoint; a failure leaves
          no entry of the batch in the session.

Failure modes:
    - InvalidMovementError for drafts that violate L2 or L3.
    - InvalidMetadataError for unbounded or non-scalar metadata.
    - SQLAlchemyError propagates (the engine turns it into
      LedgerWriteFailedError after rolling back the unit of work).
    - DuplicateReceipt if an idempotency key was already recorded.

Non-goals:
    - Does NOT call session.commit() -- the unit of work owns boundaries.
"""

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from colony_ledger.domain.clock import Clock, SystemClock
from colony_ledger.domain.dtos import LedgerEntryDraft, LedgerEntryRecord, LedgerFilter
from colony_ledger.domain.metadata import normalise_metadata
from colony_ledger.exceptions import InvalidMovementError
from colony_ledger.logging_config import get_logger
from colony_ledger.models.ledger import InboundReceipt, LedgerEntry, MovementKind
from colony_ledger.selectors.ledger_selector import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    LedgerSelector,
)

logger = get_logger("services.ledger_store")


class DuplicateReceipt(Exception):
    """An inbound receipt with this idempotency key already exists."""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Inbound receipt already recorded: {idempotency_key}")


def _validate_sign(draft: LedgerEntryDraft) -> None:
    kind = MovementKind(draft.movement_kind)
    amount = draft.amount
    if amount == 0:
        raise InvalidMovementError("amount must be non-zero", kind.value, str(amount))
    if kind.is_inbound and amount < 0:
        raise InvalidMovementError(f"{kind.value} amount must be positive", kind.value, str(amount))
    if kind.is_outbound and amount > 0:
        raise InvalidMovementError(f"{kind.value} amount must be negative", kind.value, str(amount))
    if kind.is_transfer and draft.transfer_correlation_id is None:
        raise InvalidMovementError(
            f"{kind.value} requires a transfer_correlation_id", kind.value, str(amount)
        )
    if not kind.is_transfer and draft.transfer_correlation_id is not None:
        raise InvalidMovementError(
            f"{kind.value} must not carry a transfer_correlation_id", kind.value, str(amount)
        )


def _validate_pairs(drafts: Sequence[LedgerEntryDraft]) -> None:
    groups: dict[UUID, list[LedgerEntryDraft]] = {}
    for draft in drafts:
        if draft.transfer_correlation_id is not None:
            groups.setdefault(draft.transfer_correlation_id, []).append(draft)

    for correlation_id, group in groups.items():
        kinds = sorted(MovementKind(d.movement_kind).value for d in group)
        if kinds != [MovementKind.TRANSFER_IN.value, MovementKind.TRANSFER_OUT.value]:
            raise InvalidMovementError(
                f"transfer {correlation_id} must be exactly one TRANSFER_OUT and one TRANSFER_IN"
            )
        out_draft, in_draft = sorted(group, key=lambda d: d.amount)
        if out_draft.amount + in_draft.amount != 0:
            raise InvalidMovementError(f"transfer {correlation_id} amounts do not cancel")
        if out_draft.resource_id != in_draft.resource_id:
            raise InvalidMovementError(f"transfer {correlation_id} mixes resources")
        if out_draft.dome_id == in_draft.dome_id:
            raise InvalidMovementError(f"transfer {correlation_id} stays in one dome")


class LedgerStore:
    """
    Append-only ledger for one session.

    Contract:
        append/append_many return LedgerEntryRecord snapshots with id and
        created_at assigned.  Existing rows are never touched.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_query_limit: int = DEFAULT_QUERY_LIMIT,
        max_query_limit: int = MAX_QUERY_LIMIT,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._selector = LedgerSelector(session, default_query_limit, max_query_limit)

    def append(self, draft: LedgerEntryDraft) -> LedgerEntryRecord:
        """Persist one entry.  Transfer entries must go through append_many."""
        return self.append_many([draft])[0]

    def append_many(self, drafts: Sequence[LedgerEntryDraft]) -> list[LedgerEntryRecord]:
        """
        Persist a batch of entries, all or nothing.

        Preconditions:
            - drafts is non-empty.
        Postconditions:
            - Every entry is flushed in the caller's transaction, sharing one
              created_at, or (on any error) none is.

        Raises:
            InvalidMovementError: If a draft violates sign or pairing rules.
            InvalidMetadataError: If a draft carries invalid metadata.
        """
        if not drafts:
            raise InvalidMovementError("ledger batch must not be empty")

        # Validate the whole batch before anything reaches the session
        for draft in drafts:
            _validate_sign(draft)
        _validate_pairs(drafts)
        metadata = [normalise_metadata(draft.metadata) for draft in drafts]

        created_at = self._clock.now()
        entries = [
            LedgerEntry(
                id=uuid4(),
                resource_id=draft.resource_id,
                dome_id=draft.dome_id,
                movement_kind=MovementKind(draft.movement_kind).value,
                amount=draft.amount,
                transfer_correlation_id=draft.transfer_correlation_id,
                inbound_receipt_id=draft.inbound_receipt_id,
                mission_name=draft.mission_name,
                operator_id=draft.operator_id,
                notes=draft.notes,
                entry_metadata=dict(meta) if meta is not None else None,
                created_at=created_at,
            )
            for draft, meta in zip(drafts, metadata)
        ]

        with self._session.begin_nested():
            self._session.add_all(entries)
            self._session.flush()

        logger.debug(
            "ledger_entries_appended",
            extra={
                "entry_count": len(entries),
                "kinds": sorted({e.movement_kind for e in entries}),
            },
        )
        return [LedgerEntryRecord.from_model(entry) for entry in entries]

    def find_receipt(self, idempotency_key: str) -> InboundReceipt | None:
        """The receipt recorded under an idempotency key, if any."""
        return self._session.execute(
            select(InboundReceipt).where(InboundReceipt.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def record_receipt(self, idempotency_key: str, dome_id: UUID, item_count: int) -> UUID:
        """
        Insert the idempotency anchor of an inbound shipment.

        Raises:
            DuplicateReceipt: If the key was recorded by a concurrent
                transaction that committed first.
        """
        receipt = InboundReceipt(
            id=uuid4(),
            idempotency_key=idempotency_key,
            dome_id=dome_id,
            item_count=item_count,
            created_at=self._clock.now(),
        )
        try:
            with self._session.begin_nested():
                self._session.add(receipt)
                self._session.flush()
        except IntegrityError as exc:
            raise DuplicateReceipt(idempotency_key) from exc
        return receipt.id

    def entries_for_receipt(self, receipt_id: UUID) -> list[LedgerEntryRecord]:
        """Ledger entries written with an inbound receipt."""
        entries = self._session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.inbound_receipt_id == receipt_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        ).scalars().all()
        return [LedgerEntryRecord.from_model(entry) for entry in entries]

    def query(self, ledger_filter: LedgerFilter) -> list[LedgerEntryRecord]:
        """Filtered snapshot of the ledger, newest first."""
        return self._selector.query(ledger_filter)


def signed_amount(kind: MovementKind, amount: Decimal) -> Decimal:
    """Apply the sign convention of a directional movement kind to a positive amount."""
    kind = MovementKind(kind)
    if kind.is_outbound:
        return -amount
    return amount
