"""
Tests for ledger metadata normalisation.
"""

from decimal import Decimal

import pytest

from colony_ledger.domain.metadata import (
    MAX_KEY_LENGTH,
    MAX_METADATA_KEYS,
    MAX_STRING_VALUE_LENGTH,
    normalise_metadata,
)
from colony_ledger.exceptions import InvalidMetadataError


class TestNormaliseMetadata:

    @pytest.mark.parametrize("raw", [None, {}])
    def test_empty_normalises_to_none(self, raw):
        assert normalise_metadata(raw) is None

    def test_scalars_pass_through(self):
        result = normalise_metadata({"crew": 4, "sealed": True, "ratio": 0.5, "note": None})

        assert dict(result) == {"crew": 4, "sealed": True, "ratio": 0.5, "note": None}

    def test_decimal_stored_as_string(self):
        assert normalise_metadata({"purity": Decimal("0.995")})["purity"] == "0.995"

    def test_result_is_read_only(self):
        result = normalise_metadata({"a": 1})

        with pytest.raises(TypeError):
            result["a"] = 2

    @pytest.mark.parametrize(
        "raw",
        [
            {"nested": {"a": 1}},
            {"items": [1, 2]},
            {"nan": float("nan")},
            {"inf": Decimal("Infinity")},
            {"": 1},
            {1: "x"},
            {"k" * (MAX_KEY_LENGTH + 1): 1},
            {"long": "x" * (MAX_STRING_VALUE_LENGTH + 1)},
            {f"k{i}": i for i in range(MAX_METADATA_KEYS + 1)},
        ],
    )
    def test_rejected(self, raw):
        with pytest.raises(InvalidMetadataError):
            normalise_metadata(raw)

    def test_bounds_are_inclusive(self):
        raw = {f"k{i}": "x" * MAX_STRING_VALUE_LENGTH for i in range(MAX_METADATA_KEYS)}

        assert len(normalise_metadata(raw)) == MAX_METADATA_KEYS
