"""
Tests for idempotent inbound shipments.

Covers:
- First call with a key applies the shipment and records a receipt
- Replays apply nothing and report replayed=True
- Keys are bound to the dome they were first used for
- Concurrent duplicates apply exactly once
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from colony_ledger.domain.dtos import InboundItem, LedgerFilter
from colony_ledger.exceptions import InvalidMovementError
from colony_ledger.models.ledger import MovementKind


def _shipment(colony):
    return [
        InboundItem(colony.water, Decimal("100")),
        InboundItem(colony.food, Decimal("40")),
    ]


class TestInboundIdempotency:

    def test_first_call_applies(self, ledger_engine, colony, quantity_of):
        result = ledger_engine.record_inbound(
            colony.dome_a, _shipment(colony), idempotency_key="ARES-7-MANIFEST-001"
        )

        assert result.replayed is False
        assert result.idempotency_key == "ARES-7-MANIFEST-001"
        assert quantity_of(colony.dome_a, colony.water) == Decimal("100")
        assert all(e.inbound_receipt_id is not None for e in result.entries)
        assert len({e.inbound_receipt_id for e in result.entries}) == 1

    def test_replay_applies_nothing(self, ledger_engine, colony, quantity_of, captured_logs):
        first = ledger_engine.record_inbound(
            colony.dome_a, _shipment(colony), idempotency_key="ARES-7-MANIFEST-001"
        )

        replay = ledger_engine.record_inbound(
            colony.dome_a, _shipment(colony), idempotency_key="ARES-7-MANIFEST-001"
        )

        assert replay.replayed is True
        assert quantity_of(colony.dome_a, colony.water) == Decimal("100")
        assert quantity_of(colony.dome_a, colony.food) == Decimal("40")
        assert {e.id for e in replay.entries} == {e.id for e in first.entries}
        assert len(ledger_engine.query_ledger(LedgerFilter())) == 2
        assert any(r["message"] == "inbound_replayed" for r in captured_logs())

    def test_distinct_keys_apply_separately(self, ledger_engine, colony, quantity_of):
        ledger_engine.record_inbound(colony.dome_a, _shipment(colony), idempotency_key="M-1")
        ledger_engine.record_inbound(colony.dome_a, _shipment(colony), idempotency_key="M-2")

        assert quantity_of(colony.dome_a, colony.water) == Decimal("200")

    def test_key_reused_for_other_dome_rejected(self, ledger_engine, colony, quantity_of):
        ledger_engine.record_inbound(colony.dome_a, _shipment(colony), idempotency_key="M-1")

        with pytest.raises(InvalidMovementError):
            ledger_engine.record_inbound(colony.dome_b, _shipment(colony), idempotency_key="M-1")

        assert quantity_of(colony.dome_b, colony.water) == Decimal("0")

    def test_without_key_every_call_applies(self, ledger_engine, colony, quantity_of):
        ledger_engine.record_inbound(colony.dome_a, _shipment(colony))
        ledger_engine.record_inbound(colony.dome_a, _shipment(colony))

        assert quantity_of(colony.dome_a, colony.water) == Decimal("200")

    def test_concurrent_duplicates_apply_once(self, ledger_engine, colony, quantity_of):
        workers = 6
        barrier = Barrier(workers)

        def deliver():
            barrier.wait()
            return ledger_engine.record_inbound(
                colony.dome_a, _shipment(colony), idempotency_key="ARES-7-MANIFEST-001"
            )

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda _: deliver(), range(workers)))

        assert sum(not r.replayed for r in results) == 1
        assert quantity_of(colony.dome_a, colony.water) == Decimal("100")
        imports = ledger_engine.query_ledger(LedgerFilter(movement_kind=MovementKind.EARTH_IMPORT))
        assert len(imports) == 2
