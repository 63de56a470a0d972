"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines. This is the canonical import surface for
    ``billing_services`` and host applications.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import ``billing_kernel`` and the frozen types of
    ``billing_config.schema``. MUST NOT import ``billing_services``.

Invariants enforced:
    - Purity: engines never read the clock, the network or the disk.
    - Decimal-only arithmetic; rounding happens at presentation time.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine entry point is traced via ``@traced_engine`` (see
    ``billing_engines.tracer``), emitting BILLING_ENGINE_TRACE records.

Usage:
    from billing_engines import summarize, allocate, compute_breakdown
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("engines")

from billing_engines.adjustments import (
    AdjustmentItem,
    AdjustmentResult,
    adjustment_amount,
    compute_adjustments,
    totals_by_label,
)
from billing_engines.breakdown import (
    BillingBreakdown,
    BreakdownInput,
    BreakdownWarning,
    apply_breakdown_override,
    card_interest_split,
    compute_breakdown,
    resolve_transfer_fee_pct,
)
from billing_engines.commission import (
    CUSTOM_PCT_LABEL,
    CommissionContext,
    ResolvedCommission,
    clamp_pct,
    earnings,
    leader_earnings,
    resolve_commission,
    seller_pct_label,
)
from billing_engines.debt import (
    DebtAllocationResult,
    DebtRow,
    DebtSummary,
    OperatorDebtRow,
    allocate,
    credited_by_currency,
    split_by_weight,
)
from billing_engines.records import (
    OperatorDue,
    PaymentLine,
    Receipt,
    Service,
    ServiceAllocation,
)
from billing_engines.summary import (
    CurrencySummary,
    CurrencyTotals,
    summarize,
)
from billing_engines.tracer import traced_engine

logger.debug("billing_engines_loaded")

__all__ = [
    # Adjustments
    "AdjustmentItem",
    "AdjustmentResult",
    "adjustment_amount",
    "compute_adjustments",
    "totals_by_label",
    # Breakdown
    "BillingBreakdown",
    "BreakdownInput",
    "BreakdownWarning",
    "apply_breakdown_override",
    "card_interest_split",
    "compute_breakdown",
    "resolve_transfer_fee_pct",
    # Commission
    "CUSTOM_PCT_LABEL",
    "CommissionContext",
    "ResolvedCommission",
    "clamp_pct",
    "earnings",
    "leader_earnings",
    "resolve_commission",
    "seller_pct_label",
    # Debt
    "DebtAllocationResult",
    "DebtRow",
    "DebtSummary",
    "OperatorDebtRow",
    "allocate",
    "credited_by_currency",
    "split_by_weight",
    # Records
    "OperatorDue",
    "PaymentLine",
    "Receipt",
    "Service",
    "ServiceAllocation",
    # Summary
    "CurrencySummary",
    "CurrencyTotals",
    "summarize",
    # Tracing
    "traced_engine",
]
