"""
Module: billing_engines.debt
Responsibility:
    Attribute collected money to services per currency and derive the
    client's debt per service, plus the agency's pending debt with
    operators.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation per receipt and currency: credited value ==
      allocated to services + orphaned + unallocated.
    - Ratio splits give the last eligible service the remainder, so the
      parts always add back to the receipt amount exactly.
    - Every row's debt is ``sale - paid``; overpayment (negative debt) is a
      valid state.
    - Operator debt only counts dues whose status starts with "PEND"
      (accent and case insensitive) and is never netted against receipts.

Failure modes:
    - No raises for data problems. Zero eligible services send the amount
      to the unallocated bucket; zero total weight falls back to an equal
      split.

Audit relevance:
    Orphaned allocations (naming a service that is no longer part of the
    booking) are reported separately instead of vanishing.

Usage:
    from billing_engines.debt import allocate

    result = allocate(services, receipts, operator_dues)
    for row in result.rows_by_currency["ARS"]:
        print(row.service_id, row.sale, row.paid, row.debt)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from billing_engines.breakdown import card_interest_split
from billing_engines.records import OperatorDue, Receipt, Service
from billing_engines.tracer import traced_engine
from billing_kernel.domain.currency import normalize_currency_code
from billing_kernel.domain.values import (
    ONE,
    PAYMENT_TOLERANCE,
    ZERO,
    normalize_status_key,
    to_decimal,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.debt")

PENDING_STATUS_PREFIX = "PEND"
NO_SERVICE_LABEL = "No linked service"


@dataclass(frozen=True)
class DebtRow:
    """Client debt for one service."""

    service_id: int
    currency: str
    label: str
    sale: Decimal
    paid: Decimal

    @property
    def debt(self) -> Decimal:
        return self.sale - self.paid


@dataclass(frozen=True)
class OperatorDebtRow:
    """Pending operator debt for one (currency, service) group."""

    service_id: int | None
    currency: str
    label: str
    amount: Decimal


@dataclass(frozen=True)
class DebtSummary:
    """Per-currency client debt."""

    sale_for_debt: Decimal
    paid: Decimal

    @property
    def debt(self) -> Decimal:
        return self.sale_for_debt - self.paid


@dataclass(frozen=True)
class DebtAllocationResult:
    """Everything the debt allocator derives for one booking."""

    rows_by_currency: dict[str, tuple[DebtRow, ...]]
    paid_by_currency: dict[str, Decimal]
    sale_for_debt_by_currency: dict[str, Decimal]
    unallocated_by_currency: dict[str, Decimal] = field(default_factory=dict)
    orphaned_by_currency: dict[str, Decimal] = field(default_factory=dict)
    operator_rows_by_currency: dict[str, tuple[OperatorDebtRow, ...]] = field(
        default_factory=dict
    )
    operator_debt_by_currency: dict[str, Decimal] = field(default_factory=dict)

    def debt_summary(self, currency: str) -> DebtSummary:
        return DebtSummary(
            sale_for_debt=self.sale_for_debt_by_currency.get(currency, ZERO),
            paid=self.paid_by_currency.get(currency, ZERO),
        )


def _add(bucket: dict[str, Decimal], key: str, amount: Decimal) -> None:
    bucket[key] = bucket.get(key, ZERO) + amount


def _significant(amount: Decimal) -> bool:
    return abs(amount) > PAYMENT_TOLERANCE


def credited_by_currency(receipt: Receipt) -> dict[str, Decimal]:
    """
    Value a receipt credits, per currency, fees included.

    1. A converted receipt (base currency with a non-trivial base amount)
       credits the base amount plus the fees expressed in that currency.
    2. Otherwise each payment line credits its amount and line fee in its
       own currency, and a receipt-level fee not covered by the lines is
       credited in the amount currency.
    3. Otherwise amount plus fee in the amount currency.

    Values within ``PAYMENT_TOLERANCE`` are dropped.
    """
    out: dict[str, Decimal] = {}
    amount_currency = receipt.amount_currency
    fee = receipt.payment_fee_amount
    line_fee_total = sum((line.fee_amount for line in receipt.payments), ZERO)
    fee_remainder = fee - line_fee_total

    if (
        receipt.base_currency
        and receipt.base_amount is not None
        and _significant(receipt.base_amount)
    ):
        base_currency = receipt.base_currency
        if receipt.payments:
            fee_in_base = sum(
                (
                    line.fee_amount
                    for line in receipt.payments
                    if (line.payment_currency or amount_currency) == base_currency
                ),
                ZERO,
            )
            if amount_currency == base_currency:
                fee_in_base += fee_remainder
        else:
            fee_in_base = fee if amount_currency == base_currency else ZERO
        total = receipt.base_amount + fee_in_base
        if _significant(total):
            out[base_currency] = total
        return out

    if receipt.payments:
        for line in receipt.payments:
            value = line.amount + line.fee_amount
            if _significant(value):
                _add(out, line.payment_currency or amount_currency, value)
        if _significant(fee_remainder):
            _add(out, amount_currency, fee_remainder)
        return out

    total = receipt.amount + fee
    if _significant(total):
        out[amount_currency] = total
    return out


def split_by_weight(
    amount: Decimal,
    keys: Sequence[int],
    weight_of: Callable[[int], Decimal],
) -> dict[int, Decimal]:
    """
    Split ``amount`` across ``keys`` proportionally to non-negative weights.

    Equal split when every weight is zero. The last key absorbs the
    remainder so the parts sum to ``amount`` exactly. Repeated keys count
    once.
    """
    keys = list(dict.fromkeys(keys))
    if not keys:
        return {}
    weights = [max(ZERO, weight_of(k)) for k in keys]
    total_weight = sum(weights, ZERO)
    if total_weight > ZERO:
        ratios = [w / total_weight for w in weights]
    else:
        ratios = [ONE / Decimal(len(keys))] * len(keys)

    parts: dict[int, Decimal] = {}
    allocated_so_far = ZERO
    last = len(keys) - 1
    for i, key in enumerate(keys):
        if i == last:
            parts[key] = amount - allocated_so_far
        else:
            share = amount * ratios[i]
            parts[key] = share
            allocated_so_far += share
    return parts


def unique_services(services: Sequence[Service]) -> list[Service]:
    """One entry per service id, first-seen order, last entry wins."""
    by_id: dict[int, Service] = {}
    for svc in services:
        by_id[svc.id_service] = svc
    if len(by_id) != len(services):
        logger.warning("duplicate_service_ids", extra={
            "service_count": len(services),
            "unique_count": len(by_id),
        })
    return list(by_id.values())


def _normalize_sale_totals(raw: Mapping[str, object] | None) -> dict[str, Decimal]:
    out: dict[str, Decimal] = {}
    for code, value in (raw or {}).items():
        number = to_decimal(value, Decimal("-1"))
        if number >= ZERO:
            out[normalize_currency_code(code)] = number
    return out


def sale_totals_by_currency(
    services: Sequence[Service],
    use_booking_sale_total: bool = False,
    booking_sale_totals: Mapping[str, object] | None = None,
) -> dict[str, Decimal]:
    """Sale per currency: booking totals in aggregate mode, else the services' sum."""
    booking = _normalize_sale_totals(booking_sale_totals)
    if use_booking_sale_total and booking:
        return booking
    out: dict[str, Decimal] = {}
    for svc in services:
        _add(out, svc.currency, svc.sale_price)
    return out


def service_interest(svc: Service) -> Decimal:
    return card_interest_split(
        svc.taxable_card_interest, svc.vat_on_card_interest, svc.card_interest
    )


def _sale_basis(
    services: Sequence[Service],
    manual_mode: bool,
    use_booking_sale_total: bool,
    sale_totals: Mapping[str, Decimal],
) -> dict[int, Decimal]:
    basis: dict[int, Decimal] = {}
    if use_booking_sale_total:
        by_currency: dict[str, list[Service]] = {}
        for svc in services:
            by_currency.setdefault(svc.currency, []).append(svc)
        for currency, total_sale in sale_totals.items():
            group = by_currency.get(currency, [])
            sale_of = {svc.id_service: svc.sale_price for svc in group}
            basis.update(
                split_by_weight(
                    total_sale, [svc.id_service for svc in group], sale_of.__getitem__
                )
            )
        return basis
    for svc in services:
        basis[svc.id_service] = (
            svc.sale_price if manual_mode else svc.sale_price + service_interest(svc)
        )
    return basis


def _operator_debt(
    operator_dues: Sequence[OperatorDue],
    services_by_id: Mapping[int, Service],
) -> tuple[dict[str, tuple[OperatorDebtRow, ...]], dict[str, Decimal]]:
    grouped: dict[tuple[str, int | None], Decimal] = {}
    for due in operator_dues:
        if not normalize_status_key(due.status).startswith(PENDING_STATUS_PREFIX):
            continue
        if due.amount == ZERO:
            continue
        key = (due.currency, due.service_id)
        grouped[key] = grouped.get(key, ZERO) + due.amount

    rows: dict[str, list[OperatorDebtRow]] = {}
    totals: dict[str, Decimal] = {}
    for (currency, service_id), amount in grouped.items():
        if service_id is None:
            label = NO_SERVICE_LABEL
        elif service_id in services_by_id:
            label = services_by_id[service_id].label
        else:
            label = f"N° {service_id}"
        rows.setdefault(currency, []).append(
            OperatorDebtRow(
                service_id=service_id, currency=currency, label=label, amount=amount
            )
        )
        _add(totals, currency, amount)

    ordered = {
        currency: tuple(
            sorted(
                group,
                key=lambda r: (r.service_id is None, r.service_id or 0),
            )
        )
        for currency, group in rows.items()
    }
    return ordered, totals


@traced_engine(
    "debt_allocation", "1.0",
    fingerprint_fields=(
        "services", "receipts", "operator_dues",
        "manual_mode", "use_booking_sale_total", "booking_sale_totals",
    ),
)
def allocate(
    services: Sequence[Service],
    receipts: Sequence[Receipt],
    operator_dues: Sequence[OperatorDue] = (),
    *,
    manual_mode: bool = False,
    use_booking_sale_total: bool = False,
    booking_sale_totals: Mapping[str, object] | None = None,
) -> DebtAllocationResult:
    """
    Allocate receipts to services and derive debt rows.

    Args:
        services: Services of the booking. A repeated id keeps its last
            entry.
        receipts: Receipts of the booking.
        operator_dues: Supplier obligations; only pending ones count.
        manual_mode: Exclude card interest from the sale basis.
        use_booking_sale_total: Aggregate mode; the sale basis is the
            booking sale total per currency split by sale-price weights.
        booking_sale_totals: Per-currency booking sale totals for
            aggregate mode. When empty, the services' sale sum is used.
    """
    services = unique_services(services)
    services_by_id = {svc.id_service: svc for svc in services}
    sale_totals = sale_totals_by_currency(
        services, use_booking_sale_total, booking_sale_totals
    )
    sale_basis = _sale_basis(services, manual_mode, use_booking_sale_total, sale_totals)

    paid_by_service: dict[int, Decimal] = {sid: ZERO for sid in services_by_id}
    paid_by_currency: dict[str, Decimal] = {}
    unallocated: dict[str, Decimal] = {}
    orphaned: dict[str, Decimal] = {}
    all_ids = [svc.id_service for svc in services]

    for receipt in receipts:
        amounts = credited_by_currency(receipt)
        for currency, amount in amounts.items():
            _add(paid_by_currency, currency, amount)

        if receipt.service_allocations:
            allocated: dict[str, Decimal] = {}
            for alloc in receipt.service_allocations:
                if not _significant(alloc.amount_service):
                    continue
                svc = services_by_id.get(alloc.service_id)
                if svc is None:
                    currency = alloc.service_currency or receipt.amount_currency
                    _add(orphaned, currency, alloc.amount_service)
                    logger.warning("orphaned_service_allocation", extra={
                        "service_id": alloc.service_id,
                        "currency": currency,
                        "amount": str(alloc.amount_service),
                    })
                else:
                    currency = svc.currency
                    paid_by_service[svc.id_service] += alloc.amount_service
                _add(allocated, currency, alloc.amount_service)

            for currency, amount in amounts.items():
                remainder = amount - allocated.get(currency, ZERO)
                if _significant(remainder):
                    _add(unallocated, currency, remainder)
            continue

        eligible = (
            list(dict.fromkeys(receipt.service_ids)) if receipt.service_ids else all_ids
        )
        for currency, amount in amounts.items():
            if amount == ZERO:
                continue
            targets = [
                sid
                for sid in eligible
                if sid in services_by_id and services_by_id[sid].currency == currency
            ]
            if not targets:
                _add(unallocated, currency, amount)
                continue
            parts = split_by_weight(
                amount, targets, lambda sid: sale_basis.get(sid, ZERO)
            )
            for sid, part in parts.items():
                paid_by_service[sid] += part

    rows: dict[str, list[DebtRow]] = {}
    for svc in sorted(services, key=lambda s: s.id_service):
        rows.setdefault(svc.currency, []).append(
            DebtRow(
                service_id=svc.id_service,
                currency=svc.currency,
                label=svc.label,
                sale=sale_basis.get(svc.id_service, ZERO),
                paid=paid_by_service[svc.id_service],
            )
        )

    if use_booking_sale_total:
        sale_for_debt = dict(sale_totals)
    else:
        sale_for_debt = {}
        for svc in services:
            _add(sale_for_debt, svc.currency, sale_basis[svc.id_service])

    operator_rows, operator_totals = _operator_debt(operator_dues, services_by_id)

    logger.info("debt_allocation_completed", extra={
        "service_count": len(services),
        "receipt_count": len(receipts),
        "unallocated_currencies": sorted(unallocated),
        "orphaned_currencies": sorted(orphaned),
    })

    return DebtAllocationResult(
        rows_by_currency={cur: tuple(group) for cur, group in rows.items()},
        paid_by_currency=paid_by_currency,
        sale_for_debt_by_currency=sale_for_debt,
        unallocated_by_currency=unallocated,
        orphaned_by_currency=orphaned,
        operator_rows_by_currency=operator_rows,
        operator_debt_by_currency=operator_totals,
    )
