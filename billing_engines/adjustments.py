"""
Module: billing_engines.adjustments
Responsibility:
    Apply an ordered list of configurable adjustment rules to a
    (sale, cost) pair and return per-rule amounts plus cost/tax subtotals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Only active rules contribute.
    - Every rule is computed against the same inputs; rules never chain,
      so reordering changes the item order but never the totals.
    - ``total == total_costs + total_taxes``.

Failure modes:
    - ValueError for an enum member the engine does not know (programming
      error; the config parser never produces one).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from billing_config.schema import (
    AdjustmentBasis,
    AdjustmentKind,
    AdjustmentRule,
    AdjustmentSource,
    AdjustmentValueType,
)
from billing_engines.tracer import traced_engine
from billing_kernel.domain.values import ZERO
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.adjustments")


@dataclass(frozen=True)
class AdjustmentItem:
    """A rule together with the amount it produced."""

    id: str
    label: str
    kind: AdjustmentKind
    basis: AdjustmentBasis
    value_type: AdjustmentValueType
    value: Decimal
    source: AdjustmentSource
    amount: Decimal


@dataclass(frozen=True)
class AdjustmentResult:
    """Computed adjustments, in rule order."""

    items: tuple[AdjustmentItem, ...]
    total_costs: Decimal
    total_taxes: Decimal

    @property
    def total(self) -> Decimal:
        """Net deduction from commission."""
        return self.total_costs + self.total_taxes

    @classmethod
    def empty(cls) -> AdjustmentResult:
        return cls(items=(), total_costs=ZERO, total_taxes=ZERO)


def _basis_amount(basis: AdjustmentBasis, sale: Decimal, cost: Decimal) -> Decimal:
    if basis == AdjustmentBasis.SALE:
        return sale
    if basis == AdjustmentBasis.COST:
        return cost
    if basis == AdjustmentBasis.MARGIN:
        return sale - cost
    raise ValueError(f"Unknown adjustment basis: {basis}")


def adjustment_amount(rule: AdjustmentRule, sale: Decimal, cost: Decimal) -> Decimal:
    """Amount a single rule produces for the given inputs."""
    if rule.value_type == AdjustmentValueType.FIXED:
        return rule.value
    if rule.value_type == AdjustmentValueType.PERCENT:
        return _basis_amount(rule.basis, sale, cost) * rule.value
    raise ValueError(f"Unknown adjustment value type: {rule.value_type}")


@traced_engine("adjustments", "1.0", fingerprint_fields=("rules", "sale", "cost"))
def compute_adjustments(
    rules: Sequence[AdjustmentRule],
    sale: Decimal,
    cost: Decimal,
) -> AdjustmentResult:
    """
    Compute every active rule against ``sale`` and ``cost``.

    Postconditions:
        - ``items`` preserves the input order of active rules.
        - ``total_costs`` sums COST-kind items; ``total_taxes`` TAX-kind.
    """
    items: list[AdjustmentItem] = []
    total_costs = ZERO
    total_taxes = ZERO

    for rule in rules:
        if not rule.active:
            continue
        amount = adjustment_amount(rule, sale, cost)
        items.append(
            AdjustmentItem(
                id=rule.id,
                label=rule.label,
                kind=rule.kind,
                basis=rule.basis,
                value_type=rule.value_type,
                value=rule.value,
                source=rule.source,
                amount=amount,
            )
        )
        if rule.kind == AdjustmentKind.COST:
            total_costs += amount
        elif rule.kind == AdjustmentKind.TAX:
            total_taxes += amount
        else:
            raise ValueError(f"Unknown adjustment kind: {rule.kind}")

    logger.debug("adjustments_computed", extra={
        "rule_count": len(rules),
        "applied_count": len(items),
        "total_costs": str(total_costs),
        "total_taxes": str(total_taxes),
    })

    return AdjustmentResult(
        items=tuple(items),
        total_costs=total_costs,
        total_taxes=total_taxes,
    )


def totals_by_label(results: Iterable[AdjustmentResult]) -> list[tuple[str, Decimal]]:
    """Merge items from several results by label, keeping first-seen order."""
    totals: dict[str, Decimal] = {}
    for result in results:
        for item in result.items:
            label = item.label or "Ajuste"
            totals[label] = totals.get(label, ZERO) + item.amount
    return list(totals.items())
