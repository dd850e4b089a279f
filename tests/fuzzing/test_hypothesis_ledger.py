"""
Hypothesis-based property tests.

Properties checked over random operation sequences:
- Non-negativity: no committed stock row is ever negative
- Model agreement: every accepted operation moves stock exactly as a simple
  in-memory model predicts; every rejected one moves nothing
- Reconciliation: engine-only histories always reconcile with the ledger
- Conservation: transfers never change the colony total of a resource

Each example seeds its own domes and resources, so examples sharing the
function-scoped database never observe each other's rows.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from colony_ledger.db.engine import session_scope
from colony_ledger.domain.dtos import InboundItem
from colony_ledger.domain.metadata import normalise_metadata
from colony_ledger.exceptions import InsufficientStockError, InvalidMetadataError
from colony_ledger.models.ledger import MovementKind
from colony_ledger.models.registry import Dome, Resource

DOMES = 3
RESOURCES = 2

amounts = st.integers(min_value=1, max_value=60).map(Decimal)

operation = st.one_of(
    st.tuples(st.just("inbound"), st.integers(0, DOMES - 1), st.integers(0, RESOURCES - 1), amounts),
    st.tuples(
        st.just("transfer"),
        st.integers(0, DOMES - 1),
        st.integers(0, DOMES - 1),
        st.integers(0, RESOURCES - 1),
        amounts,
    ),
    st.tuples(st.just("consume"), st.integers(0, DOMES - 1), st.integers(0, RESOURCES - 1), amounts),
)


def _seed():
    domes = [uuid4() for _ in range(DOMES)]
    resources = [uuid4() for _ in range(RESOURCES)]
    with session_scope() as sess:
        for dome_id in domes:
            sess.add(Dome(id=dome_id, code=f"D-{dome_id.hex[:12]}", name="Fuzz dome"))
        for resource_id in resources:
            sess.add(Resource(id=resource_id, code=f"R-{resource_id.hex[:12]}", name="Fuzz", unit="kg"))
    return domes, resources


def _quantity(engine, dome_id, resource_id) -> Decimal:
    row = engine.get_stock(dome_id, resource_id)
    return row.quantity if row is not None else Decimal("0")


class TestLedgerProperties:

    @given(ops=st.lists(operation, min_size=1, max_size=12))
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_random_histories_match_model(self, ledger_engine, ops):
        domes, resources = _seed()
        model = {(d, r): Decimal("0") for d in domes for r in resources}

        for op in ops:
            if op[0] == "inbound":
                _, d, r, amount = op
                ledger_engine.record_inbound(domes[d], [InboundItem(resources[r], amount)])
                model[(domes[d], resources[r])] += amount

            elif op[0] == "transfer":
                _, src, dst, r, amount = op
                if src == dst:
                    continue
                source_key = (domes[src], resources[r])
                try:
                    ledger_engine.transfer_resources(domes[src], domes[dst], resources[r], amount)
                except InsufficientStockError:
                    assert model[source_key] < amount
                else:
                    assert model[source_key] >= amount
                    model[source_key] -= amount
                    model[(domes[dst], resources[r])] += amount

            else:
                _, d, r, amount = op
                key = (domes[d], resources[r])
                try:
                    ledger_engine.record_movement(
                        domes[d], resources[r], MovementKind.CONSUMPTION, amount
                    )
                except InsufficientStockError:
                    assert model[key] < amount
                else:
                    model[key] -= amount

        for (dome_id, resource_id), expected in model.items():
            actual = _quantity(ledger_engine, dome_id, resource_id)
            assert actual == expected
            assert actual >= 0

        for dome_id in domes:
            assert ledger_engine.reconcile(dome_id) == []

    @given(
        amounts_out=st.lists(amounts, min_size=1, max_size=8),
        start=st.integers(min_value=1, max_value=200).map(Decimal),
    )
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_transfers_conserve_totals(self, ledger_engine, amounts_out, start):
        domes, resources = _seed()
        resource_id = resources[0]
        ledger_engine.record_inbound(domes[0], [InboundItem(resource_id, start)])

        for i, amount in enumerate(amounts_out):
            source, target = domes[i % DOMES], domes[(i + 1) % DOMES]
            try:
                ledger_engine.transfer_resources(source, target, resource_id, amount)
            except InsufficientStockError:
                pass

        total = sum(_quantity(ledger_engine, d, resource_id) for d in domes)
        assert total == start


scalar = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(),
    st.text(max_size=20),
    st.floats(allow_nan=False, allow_infinity=False),
)


class TestMetadataProperties:

    @given(raw=st.dictionaries(st.text(min_size=1, max_size=10), scalar, max_size=10))
    def test_valid_maps_keep_every_key(self, raw):
        result = normalise_metadata(raw)

        if raw:
            assert set(result) == set(raw)
        else:
            assert result is None

    @given(raw=st.dictionaries(
        st.text(min_size=1, max_size=10),
        st.one_of(st.lists(st.integers(), max_size=2), st.dictionaries(st.text(), st.integers(), max_size=2)),
        min_size=1,
        max_size=5,
    ))
    def test_container_values_rejected(self, raw):
        with pytest.raises(InvalidMetadataError):
            normalise_metadata(raw)
