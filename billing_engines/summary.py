"""
Module: billing_engines.summary
Responsibility:
    Compose the per-currency financial summary of a booking: breakdown
    totals, adjustments, commission base and earnings, client debt and
    operator debt.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Orchestrates the other
    engines; owns no formulas of its own beyond the commission base.

Invariants enforced:
    - Pure recomputation: identical inputs give identical summaries.
    - In booking-sale-total (aggregate) mode breakdown and adjustments run
      once per currency on aggregate figures, never per service, so
      global rules are not counted once per service.
    - Server-side commission figures win over local ones when present.
    - Locally computed per-service bases earn at each service's own
      resolved split; a feed base or an aggregate base earns at the
      currency-scope split.
    - A currency with no sale, no payment and no pending operator debt is
      omitted.

Usage:
    from billing_engines.summary import summarize

    for summary in summarize(services, receipts, dues, config, feed):
        print(summary.currency, summary.commission_base, summary.debt.debt)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from decimal import Decimal

from billing_config.schema import (
    DEFAULT_TRANSFER_FEE_PCT,
    AdjustmentRule,
    CalcConfig,
    CommissionFeed,
    CommissionOverrides,
    CommissionRule,
)
from billing_engines.adjustments import (
    AdjustmentResult,
    compute_adjustments,
    totals_by_label,
)
from billing_engines.breakdown import (
    BillingBreakdown,
    BreakdownInput,
    BreakdownWarning,
    compute_breakdown,
    resolve_transfer_fee_pct,
)
from billing_engines.commission import (
    CommissionContext,
    clamp_pct,
    earnings,
    leader_earnings,
    resolve_commission,
    seller_pct_label,
)
from billing_engines.debt import (
    PENDING_STATUS_PREFIX,
    DebtRow,
    DebtSummary,
    OperatorDebtRow,
    allocate,
    sale_totals_by_currency,
    service_interest,
    unique_services,
)
from billing_engines.records import OperatorDue, Receipt, Service
from billing_engines.tracer import traced_engine
from billing_kernel.domain.values import (
    ZERO,
    normalize_status_key,
)
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.summary")

COMMISSION_SOURCE_FEED = "feed"
COMMISSION_SOURCE_LOCAL = "local"


@dataclass(frozen=True)
class CurrencyTotals:
    """Sums of raw inputs and breakdown figures for one currency."""

    sale: Decimal = ZERO
    cost: Decimal = ZERO
    tax_21: Decimal = ZERO
    tax_105: Decimal = ZERO
    exempt: Decimal = ZERO
    other_taxes: Decimal = ZERO
    card_interest: Decimal = ZERO
    non_computable: Decimal = ZERO
    taxable_base_21: Decimal = ZERO
    taxable_base_10_5: Decimal = ZERO
    commission_exempt: Decimal = ZERO
    commission_21: Decimal = ZERO
    commission_10_5: Decimal = ZERO
    vat_on_commission_21: Decimal = ZERO
    vat_on_commission_10_5: Decimal = ZERO
    total_commission_without_vat: Decimal = ZERO
    imp_iva: Decimal = ZERO
    transfer_fee_amount: Decimal = ZERO

    @property
    def net_commission(self) -> Decimal:
        """Commission after transfer fee, before adjustments."""
        return self.total_commission_without_vat - self.transfer_fee_amount

    def plus(self, data: BreakdownInput, interest: Decimal, result: BillingBreakdown) -> CurrencyTotals:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["sale"] += data.sale
        values["cost"] += data.cost
        values["tax_21"] += data.tax_21
        values["tax_105"] += data.tax_105
        values["exempt"] += data.exempt
        values["other_taxes"] += data.other_taxes
        values["card_interest"] += interest
        for name in (
            "non_computable", "taxable_base_21", "taxable_base_10_5",
            "commission_exempt", "commission_21", "commission_10_5",
            "vat_on_commission_21", "vat_on_commission_10_5",
            "total_commission_without_vat", "imp_iva", "transfer_fee_amount",
        ):
            values[name] += getattr(result, name)
        return CurrencyTotals(**values)


@dataclass(frozen=True)
class CurrencySummary:
    """Everything displayed for one currency of a booking."""

    currency: str
    totals: CurrencyTotals
    adjustments: tuple[tuple[str, Decimal], ...]
    adjustment_costs: Decimal
    adjustment_taxes: Decimal
    commission_base: Decimal
    commission_base_source: str
    seller_pct: Decimal | str
    seller_earnings: Decimal
    leader_earnings: dict[str, Decimal]
    debt: DebtSummary
    service_rows: tuple[DebtRow, ...]
    unallocated: Decimal
    orphaned: Decimal
    operator_rows: tuple[OperatorDebtRow, ...]
    operator_debt: Decimal
    warnings: tuple[BreakdownWarning, ...] = ()

    @property
    def adjustments_total(self) -> Decimal:
        return self.adjustment_costs + self.adjustment_taxes


def _breakdown_input(svc: Service) -> BreakdownInput:
    return BreakdownInput(
        sale=svc.sale_price,
        cost=svc.cost_price,
        tax_21=svc.tax_21,
        tax_105=svc.tax_105,
        exempt=svc.exempt,
        other_taxes=svc.other_taxes,
        card_interest_vat=svc.vat_on_card_interest,
    )


def _global_rules(config: CalcConfig) -> list[AdjustmentRule]:
    return [rule for rule in config.billing_adjustments if rule.active]


def _pending_currencies(operator_dues: Sequence[OperatorDue]) -> set[str]:
    return {
        due.currency
        for due in operator_dues
        if normalize_status_key(due.status).startswith(PENDING_STATUS_PREFIX)
    }


@dataclass
class _CurrencyWork:
    totals: CurrencyTotals
    adjustments: list[AdjustmentResult]
    local_base: Decimal
    warnings: list[BreakdownWarning]
    # (service_id, local base) per service; empty in aggregate mode.
    service_bases: list[tuple[int, Decimal]] = field(default_factory=list)


def _per_service_work(
    services: Sequence[Service],
    config: CalcConfig,
) -> dict[str, _CurrencyWork]:
    work: dict[str, _CurrencyWork] = {}
    global_rules = _global_rules(config)
    for svc in services:
        entry = work.setdefault(
            svc.currency, _CurrencyWork(CurrencyTotals(), [], ZERO, [])
        )
        data = _breakdown_input(svc)
        pct = resolve_transfer_fee_pct(
            config.transfer_fee_pct_for_type(svc.type),
            config.transfer_fee_pct,
            svc.transfer_fee_pct,
            DEFAULT_TRANSFER_FEE_PCT,
        )
        result = compute_breakdown(data, pct, config.billing_breakdown_mode)
        adjustments = compute_adjustments(
            [*global_rules, *svc.extra_adjustments], svc.sale_price, svc.cost_price
        )
        entry.totals = entry.totals.plus(data, service_interest(svc), result)
        entry.adjustments.append(adjustments)
        service_base = max(
            result.total_commission_without_vat
            - result.transfer_fee_amount
            - adjustments.total,
            ZERO,
        )
        entry.local_base += service_base
        entry.service_bases.append((svc.id_service, service_base))
        entry.warnings.extend(w for w in result.warnings if w not in entry.warnings)
    return work


def _aggregate_work(
    services: Sequence[Service],
    config: CalcConfig,
    sale_totals: Mapping[str, Decimal],
) -> dict[str, _CurrencyWork]:
    work: dict[str, _CurrencyWork] = {}
    global_rules = _global_rules(config)
    pct = resolve_transfer_fee_pct(
        agency_pct=config.transfer_fee_pct, fallback=DEFAULT_TRANSFER_FEE_PCT
    )
    for currency, sale in sale_totals.items():
        group = [svc for svc in services if svc.currency == currency]
        data = BreakdownInput(
            sale=sale,
            cost=sum((s.cost_price for s in group), ZERO),
            tax_21=sum((s.tax_21 for s in group), ZERO),
            tax_105=sum((s.tax_105 for s in group), ZERO),
            exempt=sum((s.exempt for s in group), ZERO),
            other_taxes=sum((s.other_taxes for s in group), ZERO),
            card_interest_vat=sum((s.vat_on_card_interest for s in group), ZERO),
        )
        service_rules = [rule for s in group for rule in s.extra_adjustments]
        result = compute_breakdown(data, pct, config.billing_breakdown_mode)
        adjustments = compute_adjustments(
            [*global_rules, *service_rules], data.sale, data.cost
        )
        interest = sum((service_interest(s) for s in group), ZERO)
        before_fee = data.sale - data.cost - data.other_taxes
        work[currency] = _CurrencyWork(
            totals=CurrencyTotals().plus(data, interest, result),
            adjustments=[adjustments],
            local_base=max(before_fee - data.sale * pct - adjustments.total, ZERO),
            warnings=list(result.warnings),
        )
    return work


def _seller_pct_for_currency(
    currency: str,
    services: Sequence[Service],
    rule: CommissionRule,
    overrides: CommissionOverrides | None,
    aggregate: bool,
) -> Decimal | str:
    if aggregate:
        context = CommissionContext(currency=currency, allow_service=False)
        return resolve_commission(rule, overrides, context).seller_pct
    relevant = [svc for svc in services if svc.currency == currency]
    if not relevant:
        return resolve_commission(rule, None, CommissionContext(currency)).seller_pct
    pcts = [
        resolve_commission(
            rule, overrides, CommissionContext(currency, service_id=svc.id_service)
        ).seller_pct
        for svc in relevant
    ]
    return seller_pct_label(pcts)


def _per_service_earnings(
    currency: str,
    service_bases: Sequence[tuple[int, Decimal]],
    rule: CommissionRule,
    overrides: CommissionOverrides | None,
) -> tuple[Decimal, dict[str, Decimal]]:
    """Earnings from each service's base at that service's resolved split."""
    seller = ZERO
    leaders: dict[str, Decimal] = {}
    for service_id, service_base in service_bases:
        resolved = resolve_commission(
            rule, overrides, CommissionContext(currency, service_id=service_id)
        )
        seller += earnings(service_base, resolved.seller_pct)
        for user_id, amount in leader_earnings(service_base, resolved).items():
            leaders[user_id] = leaders.get(user_id, ZERO) + amount
    return seller, dict(sorted(leaders.items()))


@traced_engine(
    "summary", "1.0",
    fingerprint_fields=(
        "services", "receipts", "operator_dues", "config",
        "commission_feed", "booking_sale_totals", "owner_pct_override",
    ),
)
def summarize(
    services: Sequence[Service],
    receipts: Sequence[Receipt],
    operator_dues: Sequence[OperatorDue],
    config: CalcConfig,
    commission_feed: CommissionFeed | None = None,
    booking_sale_totals: Mapping[str, object] | None = None,
    owner_pct_override: Decimal | None = None,
) -> list[CurrencySummary]:
    """
    Build one summary per active currency, ordered by currency code.

    Args:
        services: Services of the booking.
        receipts: Receipts collected for the booking.
        operator_dues: Supplier obligations of the booking.
        config: Agency calculation settings.
        commission_feed: Server commission data; ``None`` when unavailable
            (base rule becomes seller 100%, no leaders).
        booking_sale_totals: Per-currency booking sale totals used in
            aggregate mode.
        owner_pct_override: Forced seller percentage; bypasses resolution.
    """
    services = unique_services(services)
    aggregate = config.use_booking_sale_total
    manual_mode = config.manual_mode or aggregate
    feed = commission_feed or CommissionFeed()
    rule = feed.base_rule
    overrides = feed.custom
    forced_pct = clamp_pct(owner_pct_override) if owner_pct_override is not None else None

    sale_totals = sale_totals_by_currency(services, aggregate, booking_sale_totals)
    if aggregate:
        work = _aggregate_work(services, config, sale_totals)
    else:
        work = _per_service_work(services, config)

    debt = allocate(
        services,
        receipts,
        operator_dues,
        manual_mode=manual_mode,
        use_booking_sale_total=aggregate,
        booking_sale_totals=booking_sale_totals,
    )

    currencies = set(sale_totals) | set(debt.paid_by_currency) | _pending_currencies(
        operator_dues
    )

    summaries: list[CurrencySummary] = []
    for currency in sorted(currencies):
        sale = sale_totals.get(currency, ZERO)
        paid = debt.paid_by_currency.get(currency, ZERO)
        operator_debt = debt.operator_debt_by_currency.get(currency, ZERO)
        if sale == ZERO and paid == ZERO and operator_debt == ZERO:
            continue

        with LogContext.bind(currency=currency):
            entry = work.get(currency) or _CurrencyWork(CurrencyTotals(), [], ZERO, [])
            adjustment_costs = sum((a.total_costs for a in entry.adjustments), ZERO)
            adjustment_taxes = sum((a.total_taxes for a in entry.adjustments), ZERO)

            if currency in feed.commission_base_by_currency:
                base = feed.commission_base_by_currency[currency]
                source = COMMISSION_SOURCE_FEED
            else:
                base = entry.local_base
                source = COMMISSION_SOURCE_LOCAL

            if forced_pct is not None:
                seller_label: Decimal | str = forced_pct
                local_earnings = earnings(base, forced_pct)
                leaders: dict[str, Decimal] = {}
            elif source == COMMISSION_SOURCE_LOCAL and entry.service_bases:
                seller_label = _seller_pct_for_currency(
                    currency, services, rule, overrides, aggregate
                )
                local_earnings, leaders = _per_service_earnings(
                    currency, entry.service_bases, rule, overrides
                )
            else:
                resolved = resolve_commission(
                    rule,
                    overrides,
                    CommissionContext(currency=currency, allow_service=False),
                )
                seller_label = _seller_pct_for_currency(
                    currency, services, rule, overrides, aggregate
                )
                local_earnings = earnings(base, resolved.seller_pct)
                leaders = leader_earnings(base, resolved)

            seller_earnings = feed.seller_earnings_by_currency.get(
                currency, local_earnings
            )

            summaries.append(
                CurrencySummary(
                    currency=currency,
                    totals=entry.totals,
                    adjustments=tuple(totals_by_label(entry.adjustments)),
                    adjustment_costs=adjustment_costs,
                    adjustment_taxes=adjustment_taxes,
                    commission_base=base,
                    commission_base_source=source,
                    seller_pct=seller_label,
                    seller_earnings=seller_earnings,
                    leader_earnings=leaders,
                    debt=debt.debt_summary(currency),
                    service_rows=debt.rows_by_currency.get(currency, ()),
                    unallocated=debt.unallocated_by_currency.get(currency, ZERO),
                    orphaned=debt.orphaned_by_currency.get(currency, ZERO),
                    operator_rows=debt.operator_rows_by_currency.get(currency, ()),
                    operator_debt=operator_debt,
                    warnings=tuple(entry.warnings),
                )
            )
            logger.debug("currency_summary_built", extra={
                "commission_base": str(base),
                "commission_base_source": source,
                "service_count": len(debt.rows_by_currency.get(currency, ())),
            })

    logger.info("summary_completed", extra={
        "currencies": [s.currency for s in summaries],
        "aggregate_mode": aggregate,
        "manual_mode": config.manual_mode,
    })
    return summaries
