"""
Ledger metadata -- bounded, schemaless key/value maps.

Responsibility:
    Validates and normalises the free-form metadata attached to ledger
    entries so that the serialized form of the audit trail stays stable:
    a string-keyed map of scalar values, bounded in size.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Failure modes:
    - InvalidMetadataError for non-string keys, non-scalar values,
      non-finite floats, or maps exceeding the size bounds.
"""

import math
from collections.abc import Mapping
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from colony_ledger.exceptions import InvalidMetadataError

MAX_METADATA_KEYS = 32
MAX_KEY_LENGTH = 64
MAX_STRING_VALUE_LENGTH = 1000

Scalar = str | int | float | bool | None


def _normalise_value(key: str, value: Any) -> Scalar:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidMetadataError(key, "decimal value must be finite")
        return str(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidMetadataError(key, "float value must be finite")
        return value
    if isinstance(value, str):
        if len(value) > MAX_STRING_VALUE_LENGTH:
            raise InvalidMetadataError(
                key, f"string value longer than {MAX_STRING_VALUE_LENGTH} characters"
            )
        return value
    raise InvalidMetadataError(key, f"value of type {type(value).__name__} is not a scalar")


def normalise_metadata(raw: Mapping[str, Any] | None) -> MappingProxyType | None:
    """
    Validate a metadata map and return a read-only, JSON-safe copy.

    Decimals are stored as strings; every other accepted value is stored as is.
    An empty or missing map normalises to None.
    """
    if not raw:
        return None
    if len(raw) > MAX_METADATA_KEYS:
        raise InvalidMetadataError("*", f"more than {MAX_METADATA_KEYS} keys")

    normalised: dict[str, Scalar] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not key:
            raise InvalidMetadataError(str(key), "keys must be non-empty strings")
        if len(key) > MAX_KEY_LENGTH:
            raise InvalidMetadataError(key, f"key longer than {MAX_KEY_LENGTH} characters")
        normalised[key] = _normalise_value(key, value)
    return MappingProxyType(normalised)
