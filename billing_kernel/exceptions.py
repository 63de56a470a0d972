"""
Typed Exception Hierarchy for the Billing Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the billing engine (the booking back-office, the commission
editor, the retrieval pipeline) need to react to failures by category, not
by parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        editor.save(scope=CommissionScope.CURRENCY, key="USD", payload=draft)
    except CommissionTotalExceededError as e:
        api_response(code=e.code, total=e.total_pct)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingEngineError (base)
    |
    +-- ConfigurationError
    |   +-- ConfigurationUnavailableError
    |   +-- MalformedConfigurationError
    |
    +-- CommissionError
    |   +-- InvalidCommissionPercentageError
    |   +-- CommissionTotalExceededError
    |   +-- UnknownCommissionScopeError
    |   +-- CommissionWriteBackError
    |
    +-- RetrievalError
        +-- RetrievalCancelledError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-----------------------------------------
Configuration   | CONFIG_UNAVAILABLE            | Calc config / commission feed fetch failed
                | MALFORMED_CONFIG              | Feed payload has an unexpected shape
----------------|-------------------------------|-----------------------------------------
Commission      | INVALID_COMMISSION_PCT        | Non-numeric or outside [0, 100]
                | COMMISSION_TOTAL_EXCEEDED     | seller + leaders > 100 for one scope
                | UNKNOWN_COMMISSION_SCOPE      | Scope missing, unknown, or not allowed
                | COMMISSION_WRITE_BACK_FAILED  | Host refused to persist the overrides
----------------|-------------------------------|-----------------------------------------
Retrieval       | RETRIEVAL_CANCELLED           | A newer retrieval superseded this one

===============================================================================
HANDLING PATTERNS
===============================================================================

Configuration and retrieval errors are recovered at the boundary (the
retrieval pipeline substitutes documented defaults). Commission errors are
raised at the edit boundary BEFORE any write reaches the host; the resolver
itself never raises on persisted data.
"""


class BillingEngineError(Exception):
    """
    Base exception for all billing engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_ENGINE_ERROR"


# Configuration-related exceptions


class ConfigurationError(BillingEngineError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class ConfigurationUnavailableError(ConfigurationError):
    """A configuration source could not be reached or refused the request."""

    code: str = "CONFIG_UNAVAILABLE"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Configuration source {source} unavailable: {reason}")


class MalformedConfigurationError(ConfigurationError):
    """A configuration payload does not have the expected shape."""

    code: str = "MALFORMED_CONFIG"

    def __init__(self, section: str, reason: str):
        self.section = section
        self.reason = reason
        super().__init__(f"Malformed configuration in {section}: {reason}")


# Commission-related exceptions


class CommissionError(BillingEngineError):
    """Base exception for commission editing errors."""

    code: str = "COMMISSION_ERROR"


class InvalidCommissionPercentageError(CommissionError):
    """A commission percentage is non-numeric or outside [0, 100]."""

    code: str = "INVALID_COMMISSION_PCT"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(
            f"Invalid commission percentage for {field}: {value!r} "
            f"(expected a number between 0 and 100)"
        )


class CommissionTotalExceededError(CommissionError):
    """Seller plus leader percentages exceed 100 for one scope."""

    code: str = "COMMISSION_TOTAL_EXCEEDED"

    def __init__(self, total_pct: str, scope: str):
        self.total_pct = total_pct
        self.scope = scope
        super().__init__(
            f"Commission total {total_pct}% exceeds 100% for scope {scope}"
        )


class UnknownCommissionScopeError(CommissionError):
    """Scope is not booking/currency/service, lacks its key, or is disallowed."""

    code: str = "UNKNOWN_COMMISSION_SCOPE"

    def __init__(self, scope: str, reason: str):
        self.scope = scope
        self.reason = reason
        super().__init__(f"Commission scope {scope!r} rejected: {reason}")


class CommissionWriteBackError(CommissionError):
    """The host did not confirm persistence of the commission overrides."""

    code: str = "COMMISSION_WRITE_BACK_FAILED"

    def __init__(self, booking_id: str, reason: str):
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(
            f"Commission overrides for booking {booking_id} not saved: {reason}"
        )


# Retrieval-related exceptions


class RetrievalError(BillingEngineError):
    """Base exception for staged retrieval errors."""

    code: str = "RETRIEVAL_ERROR"


class RetrievalCancelledError(RetrievalError):
    """A retrieval sequence was cancelled by a newer one."""

    code: str = "RETRIEVAL_CANCELLED"

    def __init__(self, sequence_id: int):
        self.sequence_id = sequence_id
        super().__init__(f"Retrieval sequence {sequence_id} was cancelled")
