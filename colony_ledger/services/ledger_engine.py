"""
LedgerEngine -- the resource ledger and transfer engine.

Responsibility:
    The only component that mutates stock.  Exposes the mutation operations
    (record_inbound, transfer_resources, record_movement, direct_set) and the
    read operations (query_ledger and the stock/audit reads), enforces the
    domain rules, and writes stock and ledger together.

Architecture position:
    Kernel > Services -- imperative shell.  Stateless between calls: all
    state lives in the stock and ledger tables.  Constructed once per
    process with a session factory and passed to callers by reference.

Invariants enforced:
    S2 -- Non-negativity: every debit is checked against the locked row.
    T1 -- Transfer atomicity: source debit, destination credit and both
          ledger entries commit in one transaction or not at all.
    T2 -- Transfer pairing: the two entries share one fresh correlation id
          and cancel in amount.
    I1 -- Inbound atomicity: every item of a shipment is applied, with its
          ledger entry, or none is.
    Linearizability per (dome, resource): keys are locked in canonical order
          before the transaction opens, and the existing stock rows are
          locked FOR UPDATE in that order by its first statements.

Failure modes:
    - InvalidTransferError / InvalidMovementError / InvalidMetadataError /
      UnknownDomeOrResourceError / InsufficientStockError: caller errors,
      raised before anything is committed.
    - StoreUnavailableError: any persistence failure; the unit of work is
      rolled back first, so no partial effect is observable.
    - LedgerWriteFailedError: the ledger append failed after stock deltas
      were staged; the deltas are rolled back with it.
    - LockTimeoutError: a stock key was not acquired in time.

Non-goals:
    - No automatic retries.  Retrying a non-idempotent debit could apply it
      twice; callers decide, using the retryable flag on the error.
    - Alert rule evaluation.  Breaches are handed to an AlertNotifier after
      commit and its failures never undo the mutation.
"""

from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Context, Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from colony_ledger.domain.clock import Clock, SystemClock
from colony_ledger.domain.dtos import (
    InboundItem,
    InboundResult,
    LedgerEntryDraft,
    LedgerEntryRecord,
    LedgerFilter,
    MovementResult,
    StockDiscrepancy,
    StockRowRecord,
    TransferResult,
)
from colony_ledger.domain.thresholds import evaluate_thresholds
from colony_ledger.exceptions import (
    InsufficientStockError,
    InvalidMovementError,
    InvalidTransferError,
    LedgerWriteFailedError,
    StoreUnavailableError,
    UnknownDomeOrResourceError,
)
from colony_ledger.logging_config import LogContext, error_envelope, get_logger
from colony_ledger.models.ledger import MovementKind
from colony_ledger.selectors.ledger_selector import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    LedgerSelector,
)
from colony_ledger.selectors.stock_selector import RegistrySelector, StockSelector
from colony_ledger.services.alert_notifier import AlertNotifier
from colony_ledger.services.key_locks import KeyLockManager, StockKey, canonical_order, key_label
from colony_ledger.services.ledger_store import DuplicateReceipt, LedgerStore, signed_amount
from colony_ledger.services.stock_store import StockStore

logger = get_logger("services.ledger_engine")

# Kinds recorded through record_movement; the others have dedicated operations
GENERIC_MOVEMENT_KINDS = frozenset({
    MovementKind.EXTRACTION,
    MovementKind.PRODUCTION,
    MovementKind.CONSUMPTION,
    MovementKind.LOSS,
    MovementKind.ADJUSTMENT,
})

# Matches the Numeric(38, 9) quantity columns
QUANTITY_QUANTUM = Decimal("0.000000001")
_QUANTITY_CONTEXT = Context(prec=38)

INBOUND_NOTE = "Inbound supply"
TRANSFER_NOTE = "Transfer between domes"


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for LedgerEngine (bridged from configuration)."""

    default_query_limit: int = DEFAULT_QUERY_LIMIT
    max_query_limit: int = MAX_QUERY_LIMIT
    lock_timeout_seconds: float = 10.0


def _to_decimal(value: Any, field: str) -> Decimal:
    """Coerce a caller-supplied number to a finite Decimal the quantity columns store exactly."""
    if isinstance(value, bool):
        raise InvalidMovementError(f"{field} must be a number", amount=str(value))
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(str(value))
        else:
            result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidMovementError(f"{field} must be a number", amount=str(value)) from exc
    if not result.is_finite():
        raise InvalidMovementError(f"{field} must be finite", amount=str(value))
    try:
        stored = result.quantize(QUANTITY_QUANTUM, context=_QUANTITY_CONTEXT)
    except InvalidOperation as exc:
        raise InvalidMovementError(f"{field} is out of range", amount=str(value)) from exc
    if stored != result:
        raise InvalidMovementError(
            f"{field} has more than 9 decimal places", amount=str(value)
        )
    return result


def _positive(value: Any, field: str = "amount") -> Decimal:
    amount = _to_decimal(value, field)
    if amount <= 0:
        raise InvalidMovementError(f"{field} must be positive", amount=str(amount))
    return amount


class _UnitOfWork:
    """Session-bound stores shared by the steps of one engine operation."""

    def __init__(self, session: Session, clock: Clock, settings: EngineSettings):
        self.session = session
        self.stock = StockStore(session, clock)
        self.ledger = LedgerStore(
            session,
            clock,
            default_query_limit=settings.default_query_limit,
            max_query_limit=settings.max_query_limit,
        )
        self.registry = RegistrySelector(session)

    def require_known(self, dome_ids: Iterable[UUID], resource_ids: Iterable[UUID]) -> None:
        missing_domes = self.registry.missing_domes(set(dome_ids))
        if missing_domes:
            raise UnknownDomeOrResourceError("dome", str(sorted(missing_domes, key=str)[0]))
        missing_resources = self.registry.missing_resources(set(resource_ids))
        if missing_resources:
            raise UnknownDomeOrResourceError("resource", str(sorted(missing_resources, key=str)[0]))


class LedgerEngine:
    """
    Resource ledger and transfer engine.

    Contract:
        Every public mutation runs as one unit of work with exactly two
        terminal outcomes: fully committed or fully rolled back.  Results
        are frozen DTO snapshots taken inside the committed transaction.

    Guarantees:
        - Stock never goes negative in any committed state.
        - Every quantity change (except direct_set) is traceable to exactly
          one ledger entry, and every transfer to exactly two.
        - Errors are raised, never logged-and-swallowed; the only swallowed
          failures are alert notifier callbacks, which run after commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        alert_notifier: AlertNotifier | None = None,
        lock_manager: KeyLockManager | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._alert_notifier = alert_notifier
        self._locks = lock_manager or KeyLockManager()

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        keys: Iterable[StockKey] = (),
    ) -> Iterator[_UnitOfWork]:
        """
        Lock keys, open a transaction, and commit or roll back as one unit.

        Keys are locked before the transaction begins: a caller waiting for
        a key holds no database locks.  Inside the transaction the existing
        stock rows are locked in the same canonical order.
        """
        ordered = canonical_order(keys)
        stock_keys = ",".join(key_label(key) for key in ordered) or None
        with LogContext.bind(operation=operation, stock_keys=stock_keys):
            with self._locks.acquire(ordered, self._settings.lock_timeout_seconds):
                session = self._session_factory()
                try:
                    uow = _UnitOfWork(session, self._clock, self._settings)
                    if ordered:
                        uow.stock.lock_rows(ordered)
                    yield uow
                    session.commit()
                    logger.debug("unit_of_work_committed")
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.warning(
                        "unit_of_work_rolled_back",
                        extra={"reason": type(exc).__name__},
                        exc_info=True,
                    )
                    raise StoreUnavailableError(operation, str(exc)) from exc
                except Exception as exc:
                    session.rollback()
                    logger.info(
                        "unit_of_work_rolled_back",
                        extra={"reason": type(exc).__name__, "error": error_envelope(exc)},
                    )
                    raise
                finally:
                    session.close()

    def _append(
        self,
        uow: _UnitOfWork,
        operation: str,
        drafts: Sequence[LedgerEntryDraft],
    ) -> list[LedgerEntryRecord]:
        try:
            return uow.ledger.append_many(drafts)
        except SQLAlchemyError as exc:
            raise LedgerWriteFailedError(operation, str(exc)) from exc

    def _notify(self, records: Iterable[StockRowRecord]) -> None:
        """Hand threshold breaches of committed rows to the notifier."""
        if self._alert_notifier is None:
            return
        for record in records:
            for breach in evaluate_thresholds(record):
                try:
                    self._alert_notifier.notify(breach)
                except Exception:
                    # Already committed
                    logger.warning(
                        "threshold_breach_notify_failed",
                        extra={
                            "dome_id": str(breach.dome_id),
                            "resource_id": str(breach.resource_id),
                            "breach_kind": breach.kind.value,
                        },
                        exc_info=True,
                    )

    # ------------------------------------------------------------------
    # RecordInbound
    # ------------------------------------------------------------------

    def record_inbound(
        self,
        dome_id: UUID,
        items: Sequence[InboundItem],
        mission_name: str | None = None,
        operator_id: str | None = None,
        idempotency_key: str | None = None,
        notes: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> InboundResult:
        """
        Receive a shipment into one dome.

        Every item's stock delta and EARTH_IMPORT entry commit together.
        With an idempotency_key, a repeated call applies nothing and returns
        the dome's current stock with replayed=True.

        Raises:
            InvalidMovementError: Empty shipment, non-positive amount, or an
                idempotency key already used for another dome.
            UnknownDomeOrResourceError: Unknown dome or resource.
            StoreUnavailableError / LedgerWriteFailedError: Rolled back.
        """
        if not items:
            raise InvalidMovementError("inbound shipment must contain at least one item")
        normalised = tuple(
            InboundItem(resource_id=item.resource_id, amount=_positive(item.amount))
            for item in items
        )
        keys = [(dome_id, item.resource_id) for item in normalised]

        with LogContext.bind(operator_id=operator_id, dome_id=dome_id):
            args = (dome_id, normalised, mission_name, operator_id, idempotency_key, notes, metadata, keys)
            try:
                result, touched = self._apply_inbound(*args)
            except DuplicateReceipt:
                # Lost the race on the idempotency key: the winner committed, answer as a replay
                result, touched = self._apply_inbound(*args)

            if result.replayed:
                logger.info(
                    "inbound_replayed",
                    extra={"idempotency_key": idempotency_key, "item_count": len(normalised)},
                )
            else:
                logger.info(
                    "inbound_recorded",
                    extra={
                        "mission_name": mission_name,
                        "item_count": len(normalised),
                        "idempotency_key": idempotency_key,
                    },
                )
                self._notify(touched)
        return result

    def _apply_inbound(
        self,
        dome_id: UUID,
        items: tuple[InboundItem, ...],
        mission_name: str | None,
        operator_id: str | None,
        idempotency_key: str | None,
        notes: str | None,
        metadata: Mapping[str, Any] | None,
        keys: list[StockKey],
    ) -> tuple[InboundResult, list[StockRowRecord]]:
        with self._unit_of_work("record_inbound", keys) as uow:
            uow.require_known([dome_id], [item.resource_id for item in items])

            receipt_id = None
            if idempotency_key is not None:
                existing = uow.ledger.find_receipt(idempotency_key)
                if existing is not None:
                    if existing.dome_id != dome_id:
                        raise InvalidMovementError(
                            f"idempotency key {idempotency_key!r} was used for another dome"
                        )
                    replay = InboundResult(
                        dome_id=dome_id,
                        mission_name=mission_name,
                        items=items,
                        stock=tuple(uow.stock.list_by_dome(dome_id)),
                        entries=tuple(uow.ledger.entries_for_receipt(existing.id)),
                        idempotency_key=idempotency_key,
                        replayed=True,
                    )
                    return replay, []
                receipt_id = uow.ledger.record_receipt(idempotency_key, dome_id, len(items))

            # New rows are inserted in canonical key order too; the last
            # snapshot per key is the committed one
            touched: dict[StockKey, StockRowRecord] = {}
            for item in sorted(items, key=lambda i: str(i.resource_id)):
                touched[(dome_id, item.resource_id)] = uow.stock.apply_delta(
                    dome_id, item.resource_id, item.amount
                )

            entries = self._append(uow, "record_inbound", [
                LedgerEntryDraft(
                    resource_id=item.resource_id,
                    dome_id=dome_id,
                    movement_kind=MovementKind.EARTH_IMPORT,
                    amount=item.amount,
                    inbound_receipt_id=receipt_id,
                    mission_name=mission_name,
                    operator_id=operator_id,
                    notes=notes or INBOUND_NOTE,
                    metadata=metadata,
                )
                for item in items
            ])

            result = InboundResult(
                dome_id=dome_id,
                mission_name=mission_name,
                items=items,
                stock=tuple(uow.stock.list_by_dome(dome_id)),
                entries=tuple(entries),
                idempotency_key=idempotency_key,
            )
        return result, list(touched.values())

    # ------------------------------------------------------------------
    # TransferResources
    # ------------------------------------------------------------------

    def transfer_resources(
        self,
        from_dome_id: UUID,
        to_dome_id: UUID,
        resource_id: UUID,
        amount: Decimal,
        operator_id: str | None = None,
        notes: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransferResult:
        """
        Move an amount of one resource between two domes, atomically.

        The source debit, destination credit and the TRANSFER_OUT/TRANSFER_IN
        entry pair commit together or not at all.

        Raises:
            InvalidTransferError: Source and destination are the same dome.
            InvalidMovementError: Non-positive amount.
            UnknownDomeOrResourceError: Unknown dome or resource.
            InsufficientStockError: Source has less than amount (or no row).
            StoreUnavailableError / LedgerWriteFailedError: Rolled back.
        """
        if from_dome_id == to_dome_id:
            raise InvalidTransferError(str(from_dome_id), str(to_dome_id))
        amount = _positive(amount)

        transfer_id = uuid4()
        keys = [(from_dome_id, resource_id), (to_dome_id, resource_id)]

        with LogContext.bind(operator_id=operator_id, transfer_id=transfer_id):
            try:
                with self._unit_of_work("transfer_resources", keys) as uow:
                    uow.require_known([from_dome_id, to_dome_id], [resource_id])

                    # INVARIANT T1: debit, credit and both entries share one transaction
                    source = uow.stock.apply_delta(from_dome_id, resource_id, -amount)
                    target = uow.stock.apply_delta(to_dome_id, resource_id, amount)

                    # INVARIANT T2: one correlation id, cancelling amounts
                    entries = self._append(uow, "transfer_resources", [
                        LedgerEntryDraft(
                            resource_id=resource_id,
                            dome_id=from_dome_id,
                            movement_kind=MovementKind.TRANSFER_OUT,
                            amount=-amount,
                            transfer_correlation_id=transfer_id,
                            operator_id=operator_id,
                            notes=notes or TRANSFER_NOTE,
                            metadata=metadata,
                        ),
                        LedgerEntryDraft(
                            resource_id=resource_id,
                            dome_id=to_dome_id,
                            movement_kind=MovementKind.TRANSFER_IN,
                            amount=amount,
                            transfer_correlation_id=transfer_id,
                            operator_id=operator_id,
                            notes=notes or TRANSFER_NOTE,
                            metadata=metadata,
                        ),
                    ])

                    result = TransferResult(
                        transfer_correlation_id=transfer_id,
                        from_dome_id=from_dome_id,
                        to_dome_id=to_dome_id,
                        resource_id=resource_id,
                        amount=amount,
                        source_stock=tuple(uow.stock.list_by_dome(from_dome_id)),
                        target_stock=tuple(uow.stock.list_by_dome(to_dome_id)),
                        entries=tuple(entries),
                    )
            except InsufficientStockError as exc:
                logger.info(
                    "transfer_rejected",
                    extra={
                        "from_dome_id": str(from_dome_id),
                        "to_dome_id": str(to_dome_id),
                        "resource_id": str(resource_id),
                        "requested": exc.requested,
                        "available": exc.available,
                    },
                )
                raise

            logger.info(
                "transfer_completed",
                extra={
                    "from_dome_id": str(from_dome_id),
                    "to_dome_id": str(to_dome_id),
                    "resource_id": str(resource_id),
                    "amount": str(amount),
                },
            )
            self._notify([source, target])
        return result

    # ------------------------------------------------------------------
    # RecordMovement
    # ------------------------------------------------------------------

    def record_movement(
        self,
        dome_id: UUID,
        resource_id: UUID,
        kind: MovementKind | str,
        amount: Decimal,
        operator_id: str | None = None,
        mission_name: str | None = None,
        notes: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> MovementResult:
        """
        Record a single-dome movement: extraction, production, consumption,
        loss, or a signed adjustment.

        amount is positive for every kind except ADJUSTMENT, whose amount is
        the signed, non-zero delta.

        Raises:
            InvalidMovementError: Unsupported kind or bad amount.
            UnknownDomeOrResourceError: Unknown dome or resource.
            InsufficientStockError: An outbound movement exceeds the stock.
            StoreUnavailableError / LedgerWriteFailedError: Rolled back.
        """
        try:
            kind = MovementKind(kind)
        except ValueError as exc:
            raise InvalidMovementError(f"unknown movement kind {kind!r}") from exc
        if kind not in GENERIC_MOVEMENT_KINDS:
            raise InvalidMovementError(
                f"{kind.value} movements have a dedicated operation", kind.value
            )

        if kind is MovementKind.ADJUSTMENT:
            delta = _to_decimal(amount, "amount")
            if delta == 0:
                raise InvalidMovementError("adjustment must be non-zero", kind.value, str(delta))
        else:
            delta = signed_amount(kind, _positive(amount))

        with LogContext.bind(operator_id=operator_id, dome_id=dome_id):
            with self._unit_of_work("record_movement", [(dome_id, resource_id)]) as uow:
                uow.require_known([dome_id], [resource_id])
                stock = uow.stock.apply_delta(dome_id, resource_id, delta)
                [entry] = self._append(uow, "record_movement", [
                    LedgerEntryDraft(
                        resource_id=resource_id,
                        dome_id=dome_id,
                        movement_kind=kind,
                        amount=delta,
                        mission_name=mission_name,
                        operator_id=operator_id,
                        notes=notes,
                        metadata=metadata,
                    ),
                ])

            logger.info(
                "movement_recorded",
                extra={
                    "resource_id": str(resource_id),
                    "movement_kind": kind.value,
                    "amount": str(delta),
                },
            )
            self._notify([stock])
        return MovementResult(stock=stock, entry=entry)

    # ------------------------------------------------------------------
    # DirectSet
    # ------------------------------------------------------------------

    def direct_set(
        self,
        dome_id: UUID,
        resource_id: UUID,
        quantity: Decimal,
        reserved: Decimal = Decimal("0"),
        min_threshold: Decimal | None = None,
        max_threshold: Decimal | None = None,
        operator_id: str | None = None,
    ) -> StockRowRecord:
        """
        Administrative override: set a stock row to exact values.

        NOT AUDITABLE.  No ledger entry is written, so the row stops
        reconciling with the ledger by the difference.  Intended for initial
        seeding and corrections only; use an ADJUSTMENT movement when the
        change must be traceable.

        Raises:
            InvalidMovementError: Negative quantity or reserved.
            UnknownDomeOrResourceError: Unknown dome or resource.
            StoreUnavailableError: Rolled back.
        """
        quantity = _to_decimal(quantity, "quantity")
        reserved = _to_decimal(reserved, "reserved")
        min_threshold = _to_decimal(min_threshold, "min_threshold") if min_threshold is not None else None
        max_threshold = _to_decimal(max_threshold, "max_threshold") if max_threshold is not None else None

        with LogContext.bind(operator_id=operator_id, dome_id=dome_id):
            with self._unit_of_work("direct_set", [(dome_id, resource_id)]) as uow:
                uow.require_known([dome_id], [resource_id])
                stock = uow.stock.upsert_absolute(
                    dome_id,
                    resource_id,
                    quantity,
                    reserved,
                    min_threshold=min_threshold,
                    max_threshold=max_threshold,
                )

            logger.warning(
                "stock_direct_set",
                extra={
                    "resource_id": str(resource_id),
                    "quantity": str(quantity),
                    "reserved": str(reserved),
                    "auditable": False,
                },
            )
            self._notify([stock])
        return stock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_ledger(self, ledger_filter: LedgerFilter | None = None) -> list[LedgerEntryRecord]:
        """Filtered ledger snapshot, newest first.  No side effects."""
        with self._unit_of_work("query_ledger") as uow:
            return uow.ledger.query(ledger_filter or LedgerFilter())

    def get_stock(self, dome_id: UUID, resource_id: UUID) -> StockRowRecord | None:
        with self._unit_of_work("get_stock") as uow:
            return uow.stock.get(dome_id, resource_id)

    def list_stock(self, dome_id: UUID) -> list[StockRowRecord]:
        with self._unit_of_work("list_stock") as uow:
            return uow.stock.list_by_dome(dome_id)

    def transfer_entries(self, transfer_correlation_id: UUID) -> list[LedgerEntryRecord]:
        """Both entries of one transfer, TRANSFER_OUT first."""
        with self._unit_of_work("transfer_entries") as uow:
            return LedgerSelector(uow.session).entries_for_transfer(transfer_correlation_id)

    def reconcile(self, dome_id: UUID | None = None) -> list[StockDiscrepancy]:
        """Stock rows that do not equal the running sum of their ledger entries."""
        with self._unit_of_work("reconcile") as uow:
            return LedgerSelector(uow.session).reconcile(dome_id)

    def unpaired_transfers(self) -> list[UUID]:
        """Correlation ids that are not a well-formed transfer pair."""
        with self._unit_of_work("unpaired_transfers") as uow:
            return LedgerSelector(uow.session).unpaired_transfers()

    def colony_totals(self) -> dict[str, Decimal]:
        """Total on-hand quantity per resource code across all domes."""
        with self._unit_of_work("colony_totals") as uow:
            return StockSelector(uow.session).colony_totals()
