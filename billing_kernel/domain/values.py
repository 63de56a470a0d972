"""
Values -- Decimal coercion and presentation rounding.

Responsibility:
    Converts loosely-typed numeric input (feed payloads, legacy rows, form
    drafts) into ``Decimal`` at the boundary, and rounds only at the
    presentation boundary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine and by the config parsers.

Invariants enforced:
    - Money is always ``Decimal`` inside the engine, never ``float``.
    - Percentages are carried as proportions (0-1) internally; only the
      commission split is expressed in whole percentage points (0-100).
    - Rounding happens in ``quantize_display`` only; engines never round
      mid-calculation.

Failure modes:
    - ``to_decimal`` never raises; unparseable or non-finite input returns
      the fallback.
"""

from __future__ import annotations

import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from billing_kernel.domain.currency import CurrencyRegistry

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

# Amounts at or below this magnitude are treated as noise on receipts.
PAYMENT_TOLERANCE = Decimal("0.01")


def to_decimal(value: object, fallback: Decimal = ZERO) -> Decimal:
    """
    Coerce a loosely-typed value to a finite ``Decimal``.

    Accepts ``Decimal``, ``int``, ``float`` (via ``str`` to avoid binary
    artifacts) and numeric strings, including a comma decimal separator
    (``"10,5"``). Booleans, ``None``, NaN, infinities and garbage return
    ``fallback``.
    """
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, Decimal):
        return value if value.is_finite() else fallback
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            return fallback
    else:
        return fallback
    try:
        result = Decimal(text)
    except (InvalidOperation, ValueError):
        return fallback
    return result if result.is_finite() else fallback


def to_optional_decimal(value: object) -> Decimal | None:
    """Like ``to_decimal`` but returns ``None`` for unusable input."""
    sentinel = Decimal("NaN")
    result = to_decimal(value, sentinel)
    return None if result.is_nan() else result


def normalize_proportion(value: object) -> Decimal | None:
    """
    Read a percentage that may arrive as a proportion or as points.

    ``0.024`` stays ``0.024``; ``2.4`` becomes ``0.024``. Negative or
    unparseable input returns ``None``.
    """
    number = to_optional_decimal(value)
    if number is None or number < ZERO:
        return None
    if number > ONE:
        return number / HUNDRED
    return number


def quantize_display(value: Decimal, currency: str | None = None) -> Decimal:
    """Round to the currency's display precision (2 places by default)."""
    places = (
        CurrencyRegistry.get_decimal_places(currency)
        if currency
        else CurrencyRegistry.DEFAULT_DECIMAL_PLACES
    )
    return value.quantize(Decimal(10) ** -places, rounding=ROUND_HALF_UP)


def normalize_status_key(value: object) -> str:
    """Upper-case a status string with diacritics stripped (``pendiente`` -> ``PENDIENTE``)."""
    decomposed = unicodedata.normalize("NFD", str(value or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip().upper()
