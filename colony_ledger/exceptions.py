"""
Typed Exception Hierarchy for the Colony Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger engine (the API layer, operator scripts) must decide
between "reject the request" and "try again later" without parsing message
strings. Every error therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. A RETRYABLE flag (transient store failure vs. caller error)
  4. Structured DATA attributes (not just a message string)

Example - RIGHT way to handle errors:
    try:
        engine.transfer_resources(from_dome, to_dome, water, Decimal("250"))
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available)
    except ColonyLedgerError as e:
        if e.retryable:
            schedule_retry()
        raise

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ColonyLedgerError (base)
    |
    +-- ValidationError
    |   +-- InvalidTransferError
    |   +-- InvalidMovementError
    |   +-- InvalidMetadataError
    |   +-- InvalidLedgerFilterError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- RegistryError
    |   +-- UnknownDomeOrResourceError
    |
    +-- StoreError
    |   +-- StoreUnavailableError
    |       +-- LedgerWriteFailedError
    |
    +-- ConcurrencyError
    |   +-- LockTimeoutError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                      | Retryable | When Raised
--------------|---------------------------|-----------|------------------------------
Validation    | INVALID_TRANSFER          | no        | Source dome == target dome
              | INVALID_MOVEMENT          | no        | Bad amount or movement kind
              | INVALID_METADATA          | no        | Non-scalar / oversize metadata
              | INVALID_LEDGER_FILTER     | no        | Bad limit or time range
--------------|---------------------------|-----------|------------------------------
Stock         | INSUFFICIENT_STOCK        | no        | Debit exceeds quantity
--------------|---------------------------|-----------|------------------------------
Registry      | UNKNOWN_DOME_OR_RESOURCE  | no        | Identity does not exist
--------------|---------------------------|-----------|------------------------------
Store         | STORE_UNAVAILABLE         | yes       | Persistence failed, rolled back
              | LEDGER_WRITE_FAILED       | yes       | Ledger append failed, rolled back
--------------|---------------------------|-----------|------------------------------
Concurrency   | LOCK_TIMEOUT              | yes       | Stock key lock not acquired
--------------|---------------------------|-----------|------------------------------
Immutability  | IMMUTABILITY_VIOLATION    | no        | Update/delete of ledger rows

===============================================================================
"""


class ColonyLedgerError(Exception):
    """
    Base exception for all colony ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification and a `retryable` flag.
    """

    code: str = "COLONY_LEDGER_ERROR"
    retryable: bool = False


# Validation exceptions


class ValidationError(ColonyLedgerError):
    """Base exception for caller input the engine refuses before mutating."""

    code: str = "VALIDATION_ERROR"


class InvalidTransferError(ValidationError):
    """Source and destination dome of a transfer are identical."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, from_dome_id: str, to_dome_id: str, reason: str | None = None):
        self.from_dome_id = from_dome_id
        self.to_dome_id = to_dome_id
        self.reason = reason or "Source and target dome must be different"
        super().__init__(
            f"Invalid transfer {from_dome_id} -> {to_dome_id}: {self.reason}"
        )


class InvalidMovementError(ValidationError):
    """Movement amount or kind is not acceptable for the requested operation."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, reason: str, movement_kind: str | None = None, amount: str | None = None):
        self.reason = reason
        self.movement_kind = movement_kind
        self.amount = amount
        super().__init__(f"Invalid movement: {reason}")


class InvalidMetadataError(ValidationError):
    """Ledger metadata is not a bounded string-keyed map of scalars."""

    code: str = "INVALID_METADATA"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid metadata key {key!r}: {reason}")


class InvalidLedgerFilterError(ValidationError):
    """Ledger query filter is out of bounds."""

    code: str = "INVALID_LEDGER_FILTER"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid ledger filter on {field}: {reason}")


# Stock exceptions


class StockError(ColonyLedgerError):
    """Base exception for stock level errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested debit exceeds the quantity on hand."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, dome_id: str, resource_id: str, requested: str, available: str):
        self.dome_id = dome_id
        self.resource_id = resource_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock of {resource_id} in dome {dome_id}: "
            f"requested {requested}, available {available}"
        )


# Registry exceptions


class RegistryError(ColonyLedgerError):
    """Base exception for dome/resource identity errors."""

    code: str = "REGISTRY_ERROR"


class UnknownDomeOrResourceError(RegistryError):
    """Referenced dome or resource does not exist."""

    code: str = "UNKNOWN_DOME_OR_RESOURCE"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Unknown {entity_type}: {entity_id}")


# Store exceptions


class StoreError(ColonyLedgerError):
    """Base exception for persistence failures."""

    code: str = "STORE_ERROR"


class StoreUnavailableError(StoreError):
    """
    Underlying persistence failed mid-operation.

    Raised only after the unit of work has been rolled back, so no partial
    effect is observable. Safe to retry.
    """

    code: str = "STORE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store unavailable during {operation}: {reason}")


class LedgerWriteFailedError(StoreUnavailableError):
    """
    Ledger append failed after stock deltas were staged.

    The stock deltas are rolled back with the rest of the unit of work.
    """

    code: str = "LEDGER_WRITE_FAILED"


# Concurrency exceptions


class ConcurrencyError(ColonyLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class LockTimeoutError(ConcurrencyError):
    """A stock key lock could not be acquired within the configured timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, lock_key: str, timeout_seconds: float):
        self.lock_key = lock_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for stock lock {lock_key}"
        )


# Immutability exceptions


class ImmutabilityError(ColonyLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries and inbound receipts are immutable from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
