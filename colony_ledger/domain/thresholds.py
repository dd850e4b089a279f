"""Threshold evaluation for committed stock levels."""

from colony_ledger.domain.dtos import BreachKind, StockRowRecord, ThresholdBreach


def evaluate_thresholds(stock: StockRowRecord) -> list[ThresholdBreach]:
    """
    Return the breaches a stock level is in.

    quantity <= min_threshold is a MIN breach; quantity >= max_threshold is a
    MAX breach.  Unset thresholds never breach.
    """
    breaches: list[ThresholdBreach] = []
    if stock.min_threshold is not None and stock.quantity <= stock.min_threshold:
        breaches.append(ThresholdBreach(
            dome_id=stock.dome_id,
            resource_id=stock.resource_id,
            quantity=stock.quantity,
            threshold=stock.min_threshold,
            kind=BreachKind.MIN,
        ))
    if stock.max_threshold is not None and stock.quantity >= stock.max_threshold:
        breaches.append(ThresholdBreach(
            dome_id=stock.dome_id,
            resource_id=stock.resource_id,
            quantity=stock.quantity,
            threshold=stock.max_threshold,
            kind=BreachKind.MAX,
        ))
    return breaches
