"""
Module: colony_ledger.selectors.stock_selector
Responsibility: Read-only aggregates over stock levels and the dome/resource
    registry lookups the engine uses before mutating.
Architecture position: Kernel > Selectors.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from colony_ledger.models.registry import Dome, Resource
from colony_ledger.models.stock import StockRow
from colony_ledger.selectors.base import BaseSelector


class StockSelector(BaseSelector):
    """Colony-wide stock aggregates."""

    def colony_totals(self) -> dict[str, Decimal]:
        """Total on-hand quantity per resource code, over rows with quantity > 0."""
        rows = self.session.execute(
            select(Resource.code, func.sum(StockRow.quantity))
            .join(Resource, Resource.id == StockRow.resource_id)
            .where(StockRow.quantity > 0)
            .group_by(Resource.code)
            .order_by(Resource.code)
        ).all()
        return {code: Decimal(total) for code, total in rows}


class RegistrySelector(BaseSelector):
    """Existence checks for domes and resources."""

    def missing_domes(self, dome_ids: set[UUID]) -> set[UUID]:
        """The subset of dome_ids that has no Dome row."""
        if not dome_ids:
            return set()
        found = self.session.execute(
            select(Dome.id).where(Dome.id.in_(dome_ids))
        ).scalars().all()
        return set(dome_ids) - set(found)

    def missing_resources(self, resource_ids: set[UUID]) -> set[UUID]:
        """The subset of resource_ids that has no Resource row."""
        if not resource_ids:
            return set()
        found = self.session.execute(
            select(Resource.id).where(Resource.id.in_(resource_ids))
        ).scalars().all()
        return set(resource_ids) - set(found)
