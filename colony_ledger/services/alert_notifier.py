"""
Alert notifier -- outbound port for stock threshold breaches.

Responsibility:
    Defines the callback interface the ledger engine uses to signal that a
    committed stock level sits at or beyond one of its thresholds.  Alert
    rule evaluation and alert persistence live outside the ledger.

Architecture position:
    Kernel > Services -- port definitions plus two trivial adapters.

Failure modes:
    - Implementations may raise; LedgerEngine logs the failure and carries
      on, because notification happens after commit and must never undo a
      committed mutation.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from colony_ledger.domain.dtos import ThresholdBreach
from colony_ledger.logging_config import get_logger

logger = get_logger("services.alert_notifier")


class AlertNotifier(ABC):
    """Receives threshold breaches, fire-and-forget."""

    @abstractmethod
    def notify(self, breach: ThresholdBreach) -> None:
        ...


class CallbackAlertNotifier(AlertNotifier):
    """Adapts a plain callable to the AlertNotifier interface."""

    def __init__(self, callback: Callable[[ThresholdBreach], None]):
        self._callback = callback

    def notify(self, breach: ThresholdBreach) -> None:
        self._callback(breach)


class LoggingAlertNotifier(AlertNotifier):
    """Writes each breach to the structured log at WARNING."""

    def notify(self, breach: ThresholdBreach) -> None:
        logger.warning(
            "stock_threshold_breached",
            extra={
                "dome_id": str(breach.dome_id),
                "resource_id": str(breach.resource_id),
                "quantity": str(breach.quantity),
                "threshold": str(breach.threshold),
                "breach_kind": breach.kind.value,
            },
        )
