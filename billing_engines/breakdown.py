"""
Module: billing_engines.breakdown
Responsibility:
    Compute a service's billing breakdown: taxable bases, commission split
    by VAT bracket, VAT on commission, card interest split, transfer fee and
    net commission before adjustments. Two variants share one output shape:

    - itemized (``BillingMode.AUTO``): commission is grossed up / down
      through the exempt share and the weighted VAT brackets;
    - manual (``BillingMode.MANUAL``): sale, cost and a lump ``other_taxes``
      are authoritative and the whole commission is exempt.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Full Decimal precision throughout; rounding belongs to the display
      layer (``billing_kernel.domain.values.quantize_display``).
    - Divisions by a zero factor or zero weight total leave the affected
      figures at zero instead of raising.
    - ``net_commission == total_commission_without_vat - transfer_fee_amount``.

Failure modes:
    - None raised for data problems; suspicious inputs are reported as
      ``BreakdownWarning`` values on the result.

Usage:
    from billing_engines.breakdown import BreakdownInput, compute_breakdown

    result = compute_breakdown(
        BreakdownInput(sale=Decimal("1000"), cost=Decimal("600"),
                       other_taxes=Decimal("50")),
        transfer_fee_pct=Decimal("0.02"),
        mode=BillingMode.MANUAL,
    )
    result.net_commission  # Decimal("330.00")
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from enum import Enum
from typing import Any

from billing_config.schema import DEFAULT_TRANSFER_FEE_PCT, BillingMode
from billing_engines.tracer import traced_engine
from billing_kernel.domain.values import ONE, ZERO, to_optional_decimal
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.breakdown")

VAT_21 = Decimal("0.21")
VAT_10_5 = Decimal("0.105")


class BreakdownWarning(str, Enum):
    """Diagnostics attached to a breakdown; never errors."""

    SALE_NOT_ABOVE_COST = "sale_not_above_cost"
    BASES_EXCEED_NET_COST = "bases_exceed_net_cost"
    NEGATIVE_COMMISSION = "negative_commission"
    NEGATIVE_NON_COMPUTABLE = "negative_non_computable"
    ZERO_NET_COST = "zero_net_cost"


@dataclass(frozen=True)
class BreakdownInput:
    """Raw per-service amounts feeding the breakdown."""

    sale: Decimal
    cost: Decimal
    tax_21: Decimal = ZERO
    tax_105: Decimal = ZERO
    exempt: Decimal = ZERO
    other_taxes: Decimal = ZERO
    card_interest_vat: Decimal = ZERO


@dataclass(frozen=True)
class BillingBreakdown:
    """Breakdown output shared by the itemized and manual variants."""

    non_computable: Decimal
    taxable_base_21: Decimal
    taxable_base_10_5: Decimal
    commission_exempt: Decimal
    commission_21: Decimal
    commission_10_5: Decimal
    vat_on_commission_21: Decimal
    vat_on_commission_10_5: Decimal
    total_commission_without_vat: Decimal
    imp_iva: Decimal
    taxable_card_interest: Decimal
    vat_on_card_interest: Decimal
    transfer_fee_amount: Decimal
    transfer_fee_pct: Decimal
    warnings: tuple[BreakdownWarning, ...] = ()

    @property
    def net_commission(self) -> Decimal:
        """Commission after transfer fee, before adjustments."""
        return self.total_commission_without_vat - self.transfer_fee_amount


# Fields a manual override may replace.
OVERRIDABLE_FIELDS: tuple[str, ...] = tuple(
    f.name for f in fields(BillingBreakdown) if f.name != "warnings"
)


def resolve_transfer_fee_pct(
    type_pct: Decimal | None = None,
    agency_pct: Decimal | None = None,
    stored_pct: Decimal | None = None,
    fallback: Decimal = DEFAULT_TRANSFER_FEE_PCT,
) -> Decimal:
    """First non-None of: per-type config, agency config, stored value, fallback."""
    for candidate in (type_pct, agency_pct, stored_pct):
        if candidate is not None:
            return candidate
    return fallback


def card_interest_split(
    taxable: Decimal,
    vat: Decimal,
    raw_total: Decimal,
) -> Decimal:
    """
    Card interest to add to the sale.

    A pre-split (taxable, VAT) pair is trusted over the raw total when it
    sums to something positive.
    """
    split = taxable + vat
    return split if split > ZERO else raw_total


def _itemized(data: BreakdownInput, transfer_fee_pct: Decimal) -> BillingBreakdown:
    net_cost = data.cost - (data.tax_21 + data.tax_105) - data.other_taxes
    transfer_fee_amount = data.sale * transfer_fee_pct
    taxable_base_21 = data.tax_21 / VAT_21 if data.tax_21 != ZERO else ZERO
    taxable_base_10_5 = data.tax_105 / VAT_10_5 if data.tax_105 != ZERO else ZERO
    margin = data.sale - data.cost
    non_computable = net_cost - (data.exempt + taxable_base_21 + taxable_base_10_5)
    exempt_share = data.exempt / net_cost if net_cost != ZERO else ZERO

    commission_exempt = ZERO
    commission_21 = ZERO
    commission_10_5 = ZERO
    vat_21 = ZERO
    vat_10_5 = ZERO

    if data.tax_21 == ZERO and data.tax_105 == ZERO:
        # Nothing itemized: the taxable part goes to the default 21% bracket.
        factor = exempt_share + (ONE - exempt_share) * (ONE + VAT_21)
        if factor != ZERO:
            net = margin / factor
            commission_exempt = net * exempt_share
            commission_21 = net - commission_exempt
            vat_21 = commission_21 * VAT_21
    else:
        taxable_cost = net_cost - data.exempt
        # Taxable cost not explained by the bases is attributed to 21%.
        remainder = taxable_cost - (taxable_base_21 + taxable_base_10_5)
        eff_21 = taxable_base_21 + remainder
        eff_10_5 = taxable_base_10_5
        total_eff = eff_21 + eff_10_5
        w_21 = eff_21 / total_eff if total_eff != ZERO else ZERO
        w_10_5 = eff_10_5 / total_eff if total_eff != ZERO else ZERO
        factor = exempt_share + (ONE - exempt_share) * (
            w_21 * (ONE + VAT_21) + w_10_5 * (ONE + VAT_10_5)
        )
        if factor != ZERO:
            net = margin / factor
            commission_exempt = net * exempt_share
            taxed = net - commission_exempt
            if total_eff != ZERO:
                commission_21 = taxed * eff_21 / total_eff
                commission_10_5 = taxed * eff_10_5 / total_eff
            vat_21 = commission_21 * VAT_21
            vat_10_5 = commission_10_5 * VAT_10_5

    taxable_card_interest = (
        data.card_interest_vat / VAT_21 if data.card_interest_vat != ZERO else ZERO
    )
    total_commission = commission_exempt + commission_21 + commission_10_5
    imp_iva = data.tax_21 + data.tax_105 + vat_21 + vat_10_5 + data.card_interest_vat

    warnings: list[BreakdownWarning] = []
    if data.sale <= data.cost:
        warnings.append(BreakdownWarning.SALE_NOT_ABOVE_COST)
    if net_cost < data.exempt + taxable_base_21 + taxable_base_10_5:
        warnings.append(BreakdownWarning.BASES_EXCEED_NET_COST)
    if total_commission < ZERO:
        warnings.append(BreakdownWarning.NEGATIVE_COMMISSION)
    if non_computable < ZERO:
        warnings.append(BreakdownWarning.NEGATIVE_NON_COMPUTABLE)
    if net_cost == ZERO:
        warnings.append(BreakdownWarning.ZERO_NET_COST)

    return BillingBreakdown(
        non_computable=non_computable,
        taxable_base_21=taxable_base_21,
        taxable_base_10_5=taxable_base_10_5,
        commission_exempt=commission_exempt,
        commission_21=commission_21,
        commission_10_5=commission_10_5,
        vat_on_commission_21=vat_21,
        vat_on_commission_10_5=vat_10_5,
        total_commission_without_vat=total_commission,
        imp_iva=imp_iva,
        taxable_card_interest=taxable_card_interest,
        vat_on_card_interest=data.card_interest_vat,
        transfer_fee_amount=transfer_fee_amount,
        transfer_fee_pct=transfer_fee_pct,
        warnings=tuple(warnings),
    )


def _manual(data: BreakdownInput, transfer_fee_pct: Decimal) -> BillingBreakdown:
    before_fee = data.sale - data.cost - data.other_taxes
    warnings: tuple[BreakdownWarning, ...] = ()
    if data.sale <= data.cost:
        warnings = (BreakdownWarning.SALE_NOT_ABOVE_COST,)
    return BillingBreakdown(
        non_computable=ZERO,
        taxable_base_21=ZERO,
        taxable_base_10_5=ZERO,
        commission_exempt=before_fee,
        commission_21=ZERO,
        commission_10_5=ZERO,
        vat_on_commission_21=ZERO,
        vat_on_commission_10_5=ZERO,
        total_commission_without_vat=before_fee,
        imp_iva=ZERO,
        taxable_card_interest=ZERO,
        vat_on_card_interest=ZERO,
        transfer_fee_amount=data.sale * transfer_fee_pct,
        transfer_fee_pct=transfer_fee_pct,
        warnings=warnings,
    )


@traced_engine(
    "billing_breakdown", "1.0",
    fingerprint_fields=("data", "transfer_fee_pct", "mode"),
)
def compute_breakdown(
    data: BreakdownInput,
    transfer_fee_pct: Decimal,
    mode: BillingMode = BillingMode.AUTO,
) -> BillingBreakdown:
    """
    Compute the breakdown for one service.

    Args:
        data: Raw amounts.
        transfer_fee_pct: Already-resolved proportion (see
            ``resolve_transfer_fee_pct``).
        mode: Itemized or manual variant.
    """
    if mode == BillingMode.MANUAL:
        result = _manual(data, transfer_fee_pct)
    elif mode == BillingMode.AUTO:
        result = _itemized(data, transfer_fee_pct)
    else:
        raise ValueError(f"Unknown billing mode: {mode}")

    if result.warnings:
        logger.info("breakdown_warnings", extra={
            "mode": mode.value,
            "warnings": [w.value for w in result.warnings],
        })
    return result


def apply_breakdown_override(
    computed: BillingBreakdown,
    override: Mapping[str, Any] | None,
) -> BillingBreakdown:
    """
    Replace selected computed fields with manually entered values.

    Unknown keys are ignored; values that are not numeric keep the computed
    figure. Warnings stay those of the computed breakdown.
    """
    if not override:
        return computed
    changes: dict[str, Decimal] = {}
    for name in OVERRIDABLE_FIELDS:
        if name not in override:
            continue
        value = to_optional_decimal(override[name])
        if value is not None:
            changes[name] = value
    return replace(computed, **changes) if changes else computed
