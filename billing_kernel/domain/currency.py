"""Currency -- ISO 4217 registry, alias normalization and display precision."""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantize_exponent(self) -> Decimal:
        """Exponent for Decimal.quantize() at this currency's precision."""
        return Decimal(10) ** -self.decimal_places


class CurrencyRegistry:
    """Registry of the currencies the agency operates with."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        # Regional
        "ARS": CurrencyInfo("ARS", 2, "Argentine Peso"),
        "UYU": CurrencyInfo("UYU", 2, "Uruguayan Peso"),
        "BRL": CurrencyInfo("BRL", 2, "Brazilian Real"),
        "CLP": CurrencyInfo("CLP", 0, "Chilean Peso"),
        "PYG": CurrencyInfo("PYG", 0, "Paraguayan Guarani"),
        "BOB": CurrencyInfo("BOB", 2, "Bolivian Boliviano"),
        "PEN": CurrencyInfo("PEN", 2, "Peruvian Sol"),
        "COP": CurrencyInfo("COP", 2, "Colombian Peso"),
        "MXN": CurrencyInfo("MXN", 2, "Mexican Peso"),
        # Major
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "CNY": CurrencyInfo("CNY", 2, "Chinese Yuan"),
    }

    # Informal symbols seen in legacy receipts and service rows
    _ALIASES: ClassVar[dict[str, str]] = {
        "U$D": "USD",
        "U$S": "USD",
        "US$": "USD",
        "USD$": "USD",
        "AR$": "ARS",
        "$": "ARS",
    }

    DEFAULT_CODE: ClassVar[str] = "ARS"
    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    _CODE_PATTERN: ClassVar[re.Pattern[str]] = re.compile(r"[A-Z]{3}")

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is registered."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        """Get currency information by code."""
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Get decimal places for a currency; unknown codes use the default."""
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def normalize(cls, raw: object, default: str | None = None) -> str:
        """
        Normalize free-form currency text to a registered code.

        Handles aliases such as ``U$D`` or ``AR$`` and strings that embed a
        three-letter code (``"USD (billete)"``). Anything unrecognizable
        collapses to ``default`` (the registry default when omitted).
        """
        fallback = default or cls.DEFAULT_CODE
        text = str(raw or "").strip().upper()
        if not text:
            return fallback
        if text in cls._ALIASES:
            return cls._ALIASES[text]
        match = cls._CODE_PATTERN.search(text)
        code = match.group(0) if match else text
        return code if code in cls._CURRENCIES else fallback

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        """Get all registered currency codes."""
        return frozenset(cls._CURRENCIES.keys())


def normalize_currency_code(raw: object, default: str | None = None) -> str:
    """Module-level shortcut for ``CurrencyRegistry.normalize``."""
    return CurrencyRegistry.normalize(raw, default)
