"""
Pure domain layer.

Currency normalization and Decimal helpers with NO dependencies on
I/O, time, or configuration sources.
"""

from billing_kernel.domain.currency import (
    CurrencyInfo,
    CurrencyRegistry,
    normalize_currency_code,
)
from billing_kernel.domain.values import (
    HUNDRED,
    ONE,
    PAYMENT_TOLERANCE,
    ZERO,
    normalize_proportion,
    normalize_status_key,
    quantize_display,
    to_decimal,
    to_optional_decimal,
)

__all__ = [
    "CurrencyInfo",
    "CurrencyRegistry",
    "normalize_currency_code",
    "HUNDRED",
    "ONE",
    "PAYMENT_TOLERANCE",
    "ZERO",
    "normalize_proportion",
    "normalize_status_key",
    "quantize_display",
    "to_decimal",
    "to_optional_decimal",
]
