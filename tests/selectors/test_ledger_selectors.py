"""
Tests for the read-side selectors.

Covers:
- Limit resolution (default, cap, rejection)
- Reconciliation of stock against ledger sums
- Detection of malformed transfer pairs
- Colony-wide totals
- Registry existence checks
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from colony_ledger.domain.dtos import InboundItem, LedgerFilter
from colony_ledger.exceptions import InvalidLedgerFilterError
from colony_ledger.models.ledger import LedgerEntry, MovementKind
from colony_ledger.selectors.ledger_selector import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    LedgerSelector,
)
from colony_ledger.selectors.stock_selector import RegistrySelector, StockSelector
from colony_ledger.services.ledger_engine import EngineSettings, LedgerEngine


class TestLimitResolution:

    def test_default_limit(self, session):
        assert LedgerSelector(session).resolve_limit(None) == DEFAULT_QUERY_LIMIT

    def test_large_limit_capped(self, session):
        assert LedgerSelector(session).resolve_limit(10_000) == MAX_QUERY_LIMIT

    def test_configured_bounds(self, session):
        selector = LedgerSelector(session, default_limit=5, max_limit=8)

        assert selector.resolve_limit(None) == 5
        assert selector.resolve_limit(20) == 8
        assert selector.resolve_limit(3) == 3

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_rejected(self, session, limit):
        with pytest.raises(InvalidLedgerFilterError) as exc_info:
            LedgerSelector(session).resolve_limit(limit)

        assert exc_info.value.field == "limit"

    def test_naive_datetime_rejected(self, session):
        with pytest.raises(InvalidLedgerFilterError):
            LedgerSelector(session).query(LedgerFilter(from_time=datetime(2024, 1, 1)))

    def test_engine_applies_configured_default(
        self, session_factory, colony, deterministic_clock
    ):
        engine = LedgerEngine(
            session_factory,
            clock=deterministic_clock,
            settings=EngineSettings(default_query_limit=3, max_query_limit=4),
        )
        for _ in range(6):
            engine.record_inbound(colony.dome_a, [InboundItem(colony.water, Decimal("1"))])

        assert len(engine.query_ledger()) == 3
        assert len(engine.query_ledger(LedgerFilter(limit=100))) == 4


class TestReconcile:

    def test_clean_history_reconciles(self, ledger_engine, colony):
        ledger_engine.record_inbound(colony.dome_a, [InboundItem(colony.water, Decimal("100"))])
        ledger_engine.transfer_resources(colony.dome_a, colony.dome_b, colony.water, Decimal("40"))
        ledger_engine.record_movement(
            colony.dome_b, colony.water, MovementKind.CONSUMPTION, Decimal("15")
        )

        assert ledger_engine.reconcile() == []

    def test_direct_set_is_reported_for_its_dome_only(self, ledger_engine, colony):
        ledger_engine.record_inbound(colony.dome_a, [InboundItem(colony.water, Decimal("100"))])
        ledger_engine.record_inbound(colony.dome_b, [InboundItem(colony.water, Decimal("10"))])
        ledger_engine.direct_set(colony.dome_b, colony.water, Decimal("12"))

        assert ledger_engine.reconcile(colony.dome_a) == []
        [discrepancy] = ledger_engine.reconcile(colony.dome_b)
        assert discrepancy.difference == Decimal("2")

    def test_seeded_row_without_ledger_is_reported(self, ledger_engine, colony):
        ledger_engine.direct_set(colony.dome_c, colony.food, Decimal("7"))

        [discrepancy] = ledger_engine.reconcile()
        assert discrepancy.ledger_sum == Decimal("0")
        assert discrepancy.stock_quantity == Decimal("7")


class TestUnpairedTransfers:

    def test_lone_transfer_entry_detected(self, session, colony, deterministic_clock):
        correlation_id = uuid4()
        session.add(LedgerEntry(
            resource_id=colony.water,
            dome_id=colony.dome_a,
            movement_kind=MovementKind.TRANSFER_OUT.value,
            amount=Decimal("-5"),
            transfer_correlation_id=correlation_id,
            created_at=deterministic_clock.now(),
        ))
        session.flush()

        assert LedgerSelector(session).unpaired_transfers() == [correlation_id]

    def test_engine_transfers_are_paired(self, ledger_engine, colony):
        ledger_engine.record_inbound(colony.dome_a, [InboundItem(colony.water, Decimal("10"))])
        ledger_engine.transfer_resources(colony.dome_a, colony.dome_b, colony.water, Decimal("4"))

        assert ledger_engine.unpaired_transfers() == []


class TestStockSelectors:

    def test_colony_totals_sum_positive_rows(self, ledger_engine, colony):
        ledger_engine.record_inbound(colony.dome_a, [InboundItem(colony.water, Decimal("100"))])
        ledger_engine.record_inbound(colony.dome_b, [InboundItem(colony.water, Decimal("25"))])
        ledger_engine.record_inbound(colony.dome_b, [InboundItem(colony.oxygen, Decimal("8"))])
        ledger_engine.direct_set(colony.dome_c, colony.food, Decimal("0"))

        totals = ledger_engine.colony_totals()

        assert totals == {"OXYGEN": Decimal("8"), "WATER": Decimal("125")}

    def test_colony_totals_empty(self, session, colony):
        assert StockSelector(session).colony_totals() == {}

    def test_registry_reports_missing_ids(self, session, colony):
        registry = RegistrySelector(session)
        stranger = uuid4()

        assert registry.missing_domes({colony.dome_a, stranger}) == {stranger}
        assert registry.missing_resources({colony.water}) == set()
        assert registry.missing_domes(set()) == set()
