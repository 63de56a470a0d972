"""
Tests for Decimal coercion, proportion normalization and display rounding.
"""

import pytest
from decimal import Decimal

from billing_kernel.domain.values import (
    ZERO,
    normalize_proportion,
    normalize_status_key,
    quantize_display,
    to_decimal,
    to_optional_decimal,
)


class TestToDecimal:
    """Tests for loose numeric coercion."""

    def test_decimal_passthrough(self):
        assert to_decimal(Decimal("1.25")) == Decimal("1.25")

    def test_int(self):
        assert to_decimal(7) == Decimal("7")

    def test_float_uses_repr_not_binary(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_comma_decimal_separator(self):
        assert to_decimal("10,5") == Decimal("10.5")

    def test_whitespace_trimmed(self):
        assert to_decimal("  3.5 ") == Decimal("3.5")

    @pytest.mark.parametrize("value", [None, True, False, "", "abc", "NaN", "Infinity", [], {}])
    def test_unusable_returns_fallback(self, value):
        assert to_decimal(value) == ZERO
        assert to_decimal(value, Decimal("-1")) == Decimal("-1")

    def test_non_finite_decimal_returns_fallback(self):
        assert to_decimal(Decimal("NaN")) == ZERO

    def test_optional_returns_none(self):
        assert to_optional_decimal("x") is None
        assert to_optional_decimal(None) is None
        assert to_optional_decimal("0") == ZERO


class TestNormalizeProportion:
    """Tests for percent-or-proportion reading."""

    def test_proportion_kept(self):
        assert normalize_proportion("0.024") == Decimal("0.024")

    def test_points_divided(self):
        assert normalize_proportion("2.4") == Decimal("0.024")

    def test_one_is_a_proportion(self):
        assert normalize_proportion(1) == Decimal("1")

    def test_negative_rejected(self):
        assert normalize_proportion("-0.1") is None

    def test_garbage_rejected(self):
        assert normalize_proportion("ten") is None


class TestQuantizeDisplay:
    """Tests for presentation rounding."""

    def test_half_up(self):
        assert quantize_display(Decimal("2.345")) == Decimal("2.35")

    def test_currency_precision(self):
        assert quantize_display(Decimal("1234.5"), "CLP") == Decimal("1235")

    def test_default_two_places(self):
        assert quantize_display(Decimal("1")) == Decimal("1.00")


class TestNormalizeStatusKey:
    """Tests for accent-insensitive status keys."""

    def test_accents_stripped_and_uppercased(self):
        assert normalize_status_key("pendiénte") == "PENDIENTE"

    def test_none(self):
        assert normalize_status_key(None) == ""

    def test_whitespace(self):
        assert normalize_status_key("  pago ") == "PAGO"
