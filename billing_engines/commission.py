"""
Module: billing_engines.commission
Responsibility:
    Resolve the effective seller / leader commission split for a context
    (currency, optional service) from a base rule and scoped overrides, and
    turn a commission base into earnings.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Precedence: service (when allowed) > currency > booking > base rule.
    - An override replaces the seller percentage; leaders it omits keep
      the base rule's percentage.
    - Resolved percentages are within [0, 100] and sum to at most 100.
      Persisted data is not re-validated as an error: out-of-range values
      are clamped and an over-100 scope falls back to the base rule.

Failure modes:
    - None. Invalid persisted data is logged and recovered.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from billing_config.schema import (
    CommissionOverrides,
    CommissionRule,
    CommissionScope,
    CommissionScopeOverride,
)
from billing_engines.tracer import traced_engine
from billing_kernel.domain.values import HUNDRED, ZERO
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.commission")

CUSTOM_PCT_LABEL = "custom"
_PCT_EQUALITY_TOLERANCE = Decimal("0.0001")


@dataclass(frozen=True)
class CommissionContext:
    """Where a split is being resolved."""

    currency: str
    service_id: int | str | None = None
    # False while booking-sale-total mode is active.
    allow_service: bool = True


@dataclass(frozen=True)
class ResolvedCommission:
    """Effective split for one context."""

    seller_pct: Decimal
    leader_pcts: dict[str, Decimal]
    scope: CommissionScope | None  # None means the base rule

    @property
    def total_pct(self) -> Decimal:
        return self.seller_pct + sum(self.leader_pcts.values(), ZERO)


def clamp_pct(value: Decimal) -> Decimal:
    """Clamp a percentage to [0, 100]."""
    return min(max(value, ZERO), HUNDRED)


def _lookup(
    overrides: CommissionOverrides | None,
    context: CommissionContext,
) -> tuple[CommissionScope, CommissionScopeOverride] | None:
    if overrides is None:
        return None
    chain: list[tuple[CommissionScope, CommissionScopeOverride | None]] = []
    if context.service_id is not None and context.allow_service:
        chain.append(
            (CommissionScope.SERVICE, overrides.service.get(str(context.service_id)))
        )
    chain.append((CommissionScope.CURRENCY, overrides.currency.get(context.currency)))
    chain.append((CommissionScope.BOOKING, overrides.booking))
    for scope, override in chain:
        if override is not None:
            return scope, override
    return None


def _from_base(rule: CommissionRule) -> ResolvedCommission:
    leaders = {user_id: clamp_pct(pct) for user_id, pct in rule.leader_pcts.items()}
    leaders_total = sum(leaders.values(), ZERO)
    seller = clamp_pct(rule.seller_pct)
    if seller + leaders_total > HUNDRED:
        logger.warning("commission_base_rule_exceeds_total", extra={
            "seller_pct": str(rule.seller_pct),
            "leaders_total": str(leaders_total),
        })
        seller = max(ZERO, HUNDRED - leaders_total)
    return ResolvedCommission(seller_pct=seller, leader_pcts=leaders, scope=None)


@traced_engine("commission_resolver", "1.0", fingerprint_fields=("context",))
def resolve_commission(
    rule: CommissionRule,
    overrides: CommissionOverrides | None,
    context: CommissionContext,
) -> ResolvedCommission:
    """
    Resolve the split for ``context``.

    Leader keys in the result are exactly the base rule's leaders; an
    override's entries for other user ids are ignored.
    """
    found = _lookup(overrides, context)
    if found is None:
        return _from_base(rule)

    scope, override = found
    leaders = {
        user_id: clamp_pct(override.leaders.get(user_id, base_pct))
        for user_id, base_pct in rule.leader_pcts.items()
    }
    resolved = ResolvedCommission(
        seller_pct=clamp_pct(override.seller_pct),
        leader_pcts=leaders,
        scope=scope,
    )
    if resolved.total_pct > HUNDRED:
        logger.warning("commission_override_exceeds_total", extra={
            "scope": scope.value,
            "currency": context.currency,
            "total_pct": str(resolved.total_pct),
        })
        return _from_base(rule)
    return resolved


def seller_pct_label(pcts: list[Decimal]) -> Decimal | str:
    """The common percentage of ``pcts``, or ``"custom"`` when they differ."""
    if not pcts:
        raise ValueError("seller_pct_label needs at least one percentage")
    first = pcts[0]
    if all(abs(p - first) < _PCT_EQUALITY_TOLERANCE for p in pcts):
        return first
    return CUSTOM_PCT_LABEL


def earnings(base: Decimal, pct: Decimal) -> Decimal:
    """Share of ``base`` for a percentage expressed in points."""
    return base * pct / HUNDRED


def leader_earnings(base: Decimal, resolved: ResolvedCommission) -> dict[str, Decimal]:
    return {
        user_id: earnings(base, pct)
        for user_id, pct in sorted(resolved.leader_pcts.items())
    }
