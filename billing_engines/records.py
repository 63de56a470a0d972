"""
Input records consumed by the billing engines.

Services, receipts and operator dues arrive from the host booking as loose
mappings. ``from_mapping`` constructors normalize them once (Decimal
amounts, ISO currency codes, integer service ids) so the engines only ever
see these frozen records.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from billing_config.loader import parse_adjustment_rules
from billing_config.schema import AdjustmentRule, AdjustmentSource
from billing_kernel.domain.currency import CurrencyRegistry, normalize_currency_code
from billing_kernel.domain.values import (
    ZERO,
    normalize_proportion,
    to_decimal,
)


def _service_id(value: Any) -> int | None:
    """Positive integer id, or None."""
    if isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _currency(value: Any) -> str:
    return normalize_currency_code(value, default=CurrencyRegistry.DEFAULT_CODE)


@dataclass(frozen=True)
class Service:
    """One purchased item of a booking."""

    id_service: int
    currency: str
    sale_price: Decimal = ZERO
    cost_price: Decimal = ZERO
    tax_21: Decimal = ZERO
    tax_105: Decimal = ZERO
    exempt: Decimal = ZERO
    other_taxes: Decimal = ZERO
    card_interest: Decimal = ZERO
    taxable_card_interest: Decimal = ZERO
    vat_on_card_interest: Decimal = ZERO
    transfer_fee_pct: Decimal | None = None
    type: str = ""
    description: str = ""
    agency_service_id: int | None = None
    extra_adjustments: tuple[AdjustmentRule, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Service:
        service_id = _service_id(data.get("id_service", data.get("id")))
        if service_id is None:
            raise ValueError(f"Service has no usable id: {data!r}")
        raw_adjustments = data.get("extra_adjustments")
        service_rules: list[Any] = []
        if isinstance(raw_adjustments, list):
            for idx, item in enumerate(raw_adjustments):
                if not isinstance(item, Mapping):
                    continue
                if str(item.get("source", "service")) != AdjustmentSource.SERVICE.value:
                    continue
                service_rules.append(
                    {"id": f"service-{service_id}-{idx}", **item}
                    if not item.get("id")
                    else item
                )
        return cls(
            id_service=service_id,
            currency=_currency(data.get("currency")),
            sale_price=to_decimal(data.get("sale_price")),
            cost_price=to_decimal(data.get("cost_price")),
            tax_21=to_decimal(data.get("tax_21")),
            tax_105=to_decimal(data.get("tax_105")),
            exempt=to_decimal(data.get("exempt")),
            other_taxes=to_decimal(data.get("other_taxes")),
            card_interest=to_decimal(data.get("card_interest")),
            taxable_card_interest=to_decimal(
                data.get("taxable_card_interest", data.get("taxableCardInterest"))
            ),
            vat_on_card_interest=to_decimal(
                data.get("vat_on_card_interest", data.get("vatOnCardInterest"))
            ),
            transfer_fee_pct=normalize_proportion(data.get("transfer_fee_pct")),
            type=str(data.get("type") or ""),
            description=str(data.get("description") or ""),
            agency_service_id=_service_id(data.get("agency_service_id")),
            extra_adjustments=parse_adjustment_rules(
                service_rules, source=AdjustmentSource.SERVICE
            ),
        )

    @property
    def label(self) -> str:
        number = self.agency_service_id or self.id_service
        desc = (self.description or self.type).strip()
        return f"N° {number} · {desc}" if desc else f"N° {number}"


@dataclass(frozen=True)
class PaymentLine:
    """One tender line of a receipt, possibly in another currency."""

    amount: Decimal
    payment_currency: str | None = None
    fee_amount: Decimal = ZERO


@dataclass(frozen=True)
class ServiceAllocation:
    """An explicit assignment of part of a receipt to one service."""

    service_id: int
    amount_service: Decimal
    service_currency: str | None = None


@dataclass(frozen=True)
class Receipt:
    """
    A collected amount.

    ``service_allocations`` wins over ``service_ids``: when allocations are
    present they are honored exactly and ``service_ids`` is ignored.
    """

    amount: Decimal
    amount_currency: str
    payment_fee_amount: Decimal = ZERO
    base_amount: Decimal | None = None
    base_currency: str | None = None
    counter_amount: Decimal | None = None
    counter_currency: str | None = None
    payments: tuple[PaymentLine, ...] = ()
    service_ids: tuple[int, ...] = ()
    service_allocations: tuple[ServiceAllocation, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Receipt:
        amount_currency = _currency(data.get("amount_currency", data.get("currency")))

        payments: list[PaymentLine] = []
        for raw in data.get("payments") or ():
            if not isinstance(raw, Mapping):
                continue
            line_currency = raw.get("payment_currency")
            payments.append(
                PaymentLine(
                    amount=to_decimal(raw.get("amount")),
                    payment_currency=_currency(line_currency) if line_currency else None,
                    fee_amount=to_decimal(raw.get("fee_amount")),
                )
            )

        allocations: list[ServiceAllocation] = []
        for raw in data.get("service_allocations") or ():
            if not isinstance(raw, Mapping):
                continue
            service_id = _service_id(raw.get("service_id"))
            if service_id is None:
                continue
            service_currency = raw.get("service_currency")
            allocations.append(
                ServiceAllocation(
                    service_id=service_id,
                    amount_service=to_decimal(raw.get("amount_service")),
                    service_currency=(
                        _currency(service_currency) if service_currency else None
                    ),
                )
            )

        raw_ids = data.get("service_ids", data.get("serviceIds")) or ()
        # first occurrence wins; repeats would double a service's weight
        service_ids = tuple(dict.fromkeys(
            sid for sid in (_service_id(v) for v in raw_ids) if sid is not None
        ))

        base_currency = data.get("base_currency")
        counter_currency = data.get("counter_currency")
        base_amount = data.get("base_amount")
        counter_amount = data.get("counter_amount")
        return cls(
            amount=to_decimal(data.get("amount")),
            amount_currency=amount_currency,
            payment_fee_amount=to_decimal(data.get("payment_fee_amount")),
            base_amount=to_decimal(base_amount) if base_amount is not None else None,
            base_currency=_currency(base_currency) if base_currency else None,
            counter_amount=(
                to_decimal(counter_amount) if counter_amount is not None else None
            ),
            counter_currency=_currency(counter_currency) if counter_currency else None,
            payments=tuple(payments),
            service_ids=service_ids,
            service_allocations=tuple(allocations),
        )


@dataclass(frozen=True)
class OperatorDue:
    """A pending obligation to a supplier."""

    amount: Decimal
    currency: str
    status: str
    service_id: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> OperatorDue:
        return cls(
            amount=to_decimal(data.get("amount")),
            currency=_currency(data.get("currency")),
            status=str(data.get("status") or ""),
            service_id=_service_id(data.get("service_id")),
        )
