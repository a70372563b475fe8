# backend/tests/test_order_numbers.py
"""
Tests for human-readable order number sequencing.
"""

import pytest

from storefront.services.order_numbers import (
    OrderNumberExhaustedError,
    next_order_number,
)


@pytest.mark.parametrize("last, expected", [
    (None, "SSA0001"),
    ("SSA0001", "SSA0002"),
    ("SSA9999", "SSB0001"),
    ("SSZ9999", "SSAA0001"),
    ("SSAA9999", "SSAB0001"),
    ("SSAZ9999", "SSBA0001"),
    ("SS0042", "SS0043"),
    ("SS9999", "SSA0001"),
])
def test_next_order_number(last, expected):
    assert next_order_number(last) == expected


def test_sequence_exhaustion_raises():
    with pytest.raises(OrderNumberExhaustedError):
        next_order_number("SSZZ9999")


@pytest.mark.parametrize("bad", ["ORD-1", "SSA12", "XYA0001"])
def test_invalid_format_is_rejected(bad):
    with pytest.raises(ValueError):
        next_order_number(bad)
