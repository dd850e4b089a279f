"""
Tests for StockStore and LedgerStore.

Covers:
- Stock row creation, deltas, absolute overrides, ordering
- Ledger append validation: signs, pairing, batch atomicity
- Inbound receipts
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from colony_ledger.domain.dtos import LedgerEntryDraft
from colony_ledger.exceptions import InsufficientStockError, InvalidMovementError
from colony_ledger.models.ledger import LedgerEntry, MovementKind
from colony_ledger.services.ledger_store import DuplicateReceipt, LedgerStore, signed_amount
from colony_ledger.services.stock_store import StockStore


@pytest.fixture
def stock_store(session, deterministic_clock):
    return StockStore(session, deterministic_clock)


@pytest.fixture
def ledger_store(session, deterministic_clock):
    return LedgerStore(session, deterministic_clock)


class TestStockStore:

    def test_get_missing_row_is_none(self, stock_store, colony):
        assert stock_store.get(colony.dome_a, colony.water) is None

    def test_positive_delta_creates_row(self, stock_store, colony, deterministic_clock):
        row = stock_store.apply_delta(colony.dome_a, colony.water, Decimal("25"))

        assert row.quantity == Decimal("25")
        assert row.reserved == Decimal("0")
        assert row.last_updated == deterministic_clock.now()
        assert stock_store.get(colony.dome_a, colony.water).quantity == Decimal("25")

    def test_deltas_accumulate(self, stock_store, colony):
        stock_store.apply_delta(colony.dome_a, colony.water, Decimal("25"))
        row = stock_store.apply_delta(colony.dome_a, colony.water, Decimal("-10"))

        assert row.quantity == Decimal("15")

    def test_overdraw_rejected_and_row_untouched(self, stock_store, colony):
        stock_store.apply_delta(colony.dome_a, colony.water, Decimal("5"))

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_store.apply_delta(colony.dome_a, colony.water, Decimal("-6"))

        assert exc_info.value.requested == "6"
        assert stock_store.get(colony.dome_a, colony.water).quantity == Decimal("5")

    def test_negative_delta_on_missing_row_rejected(self, stock_store, colony):
        with pytest.raises(InsufficientStockError) as exc_info:
            stock_store.apply_delta(colony.dome_a, colony.water, Decimal("-1"))

        assert exc_info.value.available == "0"
        assert stock_store.get(colony.dome_a, colony.water) is None

    def test_upsert_absolute_sets_every_field(self, stock_store, colony):
        stock_store.apply_delta(colony.dome_a, colony.water, Decimal("5"))

        row = stock_store.upsert_absolute(
            colony.dome_a,
            colony.water,
            Decimal("300"),
            Decimal("20"),
            min_threshold=Decimal("50"),
        )

        assert row.quantity == Decimal("300")
        assert row.reserved == Decimal("20")
        assert row.min_threshold == Decimal("50")
        assert row.max_threshold is None

    def test_upsert_absolute_rejects_negative_quantity(self, stock_store, colony):
        with pytest.raises(InvalidMovementError):
            stock_store.upsert_absolute(colony.dome_a, colony.water, Decimal("-1"), Decimal("0"))

    def test_list_by_dome_ordered_by_resource_code(self, stock_store, colony):
        stock_store.apply_delta(colony.dome_a, colony.water, Decimal("1"))
        stock_store.apply_delta(colony.dome_a, colony.food, Decimal("1"))
        stock_store.apply_delta(colony.dome_a, colony.oxygen, Decimal("1"))
        stock_store.apply_delta(colony.dome_b, colony.water, Decimal("1"))

        rows = stock_store.list_by_dome(colony.dome_a)

        # FOOD < OXYGEN < WATER
        assert [r.resource_id for r in rows] == [colony.food, colony.oxygen, colony.water]

    def test_list_by_dome_empty(self, stock_store, colony):
        assert stock_store.list_by_dome(colony.dome_c) == []


class TestLedgerStoreAppend:

    def _draft(self, colony, kind, amount, **kwargs):
        return LedgerEntryDraft(
            resource_id=kwargs.pop("resource_id", colony.water),
            dome_id=kwargs.pop("dome_id", colony.dome_a),
            movement_kind=kind,
            amount=Decimal(amount),
            **kwargs,
        )

    def test_append_assigns_id_and_timestamp(self, ledger_store, colony, deterministic_clock):
        entry = ledger_store.append(self._draft(colony, MovementKind.EXTRACTION, "5"))

        assert entry.id is not None
        assert entry.created_at == deterministic_clock.now()
        assert entry.movement_kind == MovementKind.EXTRACTION

    @pytest.mark.parametrize(
        "kind, amount",
        [
            (MovementKind.EARTH_IMPORT, "-1"),
            (MovementKind.PRODUCTION, "-1"),
            (MovementKind.CONSUMPTION, "1"),
            (MovementKind.LOSS, "1"),
            (MovementKind.ADJUSTMENT, "0"),
        ],
    )
    def test_sign_convention_enforced(self, ledger_store, colony, kind, amount):
        with pytest.raises(InvalidMovementError):
            ledger_store.append(self._draft(colony, kind, amount))

    def test_adjustment_accepts_either_sign(self, ledger_store, colony):
        up = ledger_store.append(self._draft(colony, MovementKind.ADJUSTMENT, "3"))
        down = ledger_store.append(self._draft(colony, MovementKind.ADJUSTMENT, "-3"))

        assert (up.amount, down.amount) == (Decimal("3"), Decimal("-3"))

    def test_lone_transfer_entry_rejected(self, ledger_store, colony):
        with pytest.raises(InvalidMovementError):
            ledger_store.append(self._draft(
                colony, MovementKind.TRANSFER_OUT, "-5", transfer_correlation_id=uuid4()
            ))

    def test_transfer_kind_requires_correlation_id(self, ledger_store, colony):
        with pytest.raises(InvalidMovementError):
            ledger_store.append_many([
                self._draft(colony, MovementKind.TRANSFER_OUT, "-5"),
                self._draft(colony, MovementKind.TRANSFER_IN, "5", dome_id=colony.dome_b),
            ])

    def test_non_transfer_kind_rejects_correlation_id(self, ledger_store, colony):
        with pytest.raises(InvalidMovementError):
            ledger_store.append(self._draft(
                colony, MovementKind.EXTRACTION, "5", transfer_correlation_id=uuid4()
            ))

    def test_transfer_pair_must_cancel(self, ledger_store, colony):
        correlation_id = uuid4()
        with pytest.raises(InvalidMovementError):
            ledger_store.append_many([
                self._draft(colony, MovementKind.TRANSFER_OUT, "-5",
                            transfer_correlation_id=correlation_id),
                self._draft(colony, MovementKind.TRANSFER_IN, "4", dome_id=colony.dome_b,
                            transfer_correlation_id=correlation_id),
            ])

    def test_transfer_pair_must_span_two_domes(self, ledger_store, colony):
        correlation_id = uuid4()
        with pytest.raises(InvalidMovementError):
            ledger_store.append_many([
                self._draft(colony, MovementKind.TRANSFER_OUT, "-5",
                            transfer_correlation_id=correlation_id),
                self._draft(colony, MovementKind.TRANSFER_IN, "5",
                            transfer_correlation_id=correlation_id),
            ])

    def test_valid_pair_shares_timestamp(self, ledger_store, colony):
        correlation_id = uuid4()
        out_entry, in_entry = ledger_store.append_many([
            self._draft(colony, MovementKind.TRANSFER_OUT, "-5",
                        transfer_correlation_id=correlation_id),
            self._draft(colony, MovementKind.TRANSFER_IN, "5", dome_id=colony.dome_b,
                        transfer_correlation_id=correlation_id),
        ])

        assert out_entry.created_at == in_entry.created_at
        assert out_entry.transfer_correlation_id == in_entry.transfer_correlation_id

    def test_invalid_batch_writes_nothing(self, ledger_store, session, colony):
        with pytest.raises(InvalidMovementError):
            ledger_store.append_many([
                self._draft(colony, MovementKind.EXTRACTION, "5"),
                self._draft(colony, MovementKind.LOSS, "5"),
            ])

        assert session.query(LedgerEntry).count() == 0

    def test_empty_batch_rejected(self, ledger_store):
        with pytest.raises(InvalidMovementError):
            ledger_store.append_many([])


class TestInboundReceipts:

    def test_record_and_find(self, ledger_store, colony):
        receipt_id = ledger_store.record_receipt("M-1", colony.dome_a, 2)

        receipt = ledger_store.find_receipt("M-1")
        assert receipt.id == receipt_id
        assert receipt.item_count == 2
        assert ledger_store.find_receipt("M-2") is None

    def test_duplicate_key_raises_and_keeps_transaction(self, ledger_store, colony):
        ledger_store.record_receipt("M-1", colony.dome_a, 2)

        with pytest.raises(DuplicateReceipt):
            ledger_store.record_receipt("M-1", colony.dome_a, 2)

        # The savepoint rollback leaves the first receipt in place
        assert ledger_store.find_receipt("M-1") is not None


class TestSignedAmount:

    @pytest.mark.parametrize(
        "kind, expected",
        [
            (MovementKind.EXTRACTION, Decimal("4")),
            (MovementKind.EARTH_IMPORT, Decimal("4")),
            (MovementKind.CONSUMPTION, Decimal("-4")),
            (MovementKind.TRANSFER_OUT, Decimal("-4")),
        ],
    )
    def test_sign_applied(self, kind, expected):
        assert signed_amount(kind, Decimal("4")) == expected
