"""
Billing configuration schema.

Typed, frozen structures for everything the engine receives from the
agency's configuration and commission feeds. Raw payloads are parsed into
these types by ``billing_config.loader`` with defaulting at the boundary;
nothing deeper in the engine handles untyped dictionaries.

Key distinction:
  CalcConfig     = agency calculation settings (mode, fee, adjustments)
  CommissionFeed = per-booking commission rule, overrides and the
                   server-side precomputed figures
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from billing_kernel.domain.values import HUNDRED, ZERO

DEFAULT_TRANSFER_FEE_PCT = Decimal("0.024")
DEFAULT_OWNER_PCT = HUNDRED


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class BillingMode(str, Enum):
    """Which billing breakdown variant is authoritative."""

    AUTO = "auto"  # Itemized VAT breakdown
    MANUAL = "manual"  # Lump-sum sale / other_taxes


class AdjustmentKind(str, Enum):
    """Whether an adjustment is booked as an extra cost or an extra tax."""

    COST = "cost"
    TAX = "tax"


class AdjustmentBasis(str, Enum):
    """The amount a percent adjustment is applied to."""

    SALE = "sale"
    COST = "cost"
    MARGIN = "margin"  # sale - cost


class AdjustmentValueType(str, Enum):
    """How the adjustment value is interpreted."""

    PERCENT = "percent"  # Proportion of the basis (0.10 = 10%)
    FIXED = "fixed"  # Absolute amount


class AdjustmentSource(str, Enum):
    """Where an adjustment rule is defined."""

    GLOBAL = "global"  # Agency-wide, applies to every service in a currency
    SERVICE = "service"  # Applies to its owning service only


class CommissionScope(str, Enum):
    """Granularity at which a commission override applies."""

    BOOKING = "booking"
    CURRENCY = "currency"
    SERVICE = "service"


# ---------------------------------------------------------------------------
# Adjustments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AdjustmentRule:
    """A named, configurable deduction from commission."""

    id: str
    label: str
    kind: AdjustmentKind
    basis: AdjustmentBasis
    value_type: AdjustmentValueType
    value: Decimal
    active: bool = True
    source: AdjustmentSource = AdjustmentSource.GLOBAL


# ---------------------------------------------------------------------------
# Calculation configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalcConfig:
    """
    Agency calculation settings.

    ``transfer_fee_pct`` is ``None`` when the agency has no explicit value;
    transfer fee resolution then falls through to the service's stored
    value and finally to ``DEFAULT_TRANSFER_FEE_PCT``.
    """

    billing_breakdown_mode: BillingMode = BillingMode.AUTO
    transfer_fee_pct: Decimal | None = None
    billing_adjustments: tuple[AdjustmentRule, ...] = ()
    use_booking_sale_total: bool = False
    # (service_type, proportion) pairs, first level of fee resolution
    transfer_fee_pct_by_type: tuple[tuple[str, Decimal], ...] = ()

    @classmethod
    def defaults(cls) -> CalcConfig:
        """Conservative settings used when the config source is unavailable."""
        return cls()

    @property
    def manual_mode(self) -> bool:
        return self.billing_breakdown_mode == BillingMode.MANUAL

    def transfer_fee_pct_for_type(self, service_type: str | None) -> Decimal | None:
        """Per-type fee proportion, if one is configured."""
        if not service_type:
            return None
        wanted = service_type.strip().lower()
        for type_name, pct in self.transfer_fee_pct_by_type:
            if type_name.strip().lower() == wanted:
                return pct
        return None

    @property
    def effective_transfer_fee_pct(self) -> Decimal:
        """Agency-wide proportion with the documented default applied."""
        if self.transfer_fee_pct is None:
            return DEFAULT_TRANSFER_FEE_PCT
        return self.transfer_fee_pct


# ---------------------------------------------------------------------------
# Commission
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaderSplit:
    """A leader's share of the commission base, in percentage points."""

    user_id: str
    pct: Decimal


@dataclass(frozen=True)
class CommissionRule:
    """Base commission split: seller percentage plus leader percentages."""

    seller_pct: Decimal
    leaders: tuple[LeaderSplit, ...] = ()

    @classmethod
    def owner_only(cls, owner_pct: Decimal = DEFAULT_OWNER_PCT) -> CommissionRule:
        return cls(seller_pct=owner_pct)

    @property
    def leader_pcts(self) -> dict[str, Decimal]:
        return {leader.user_id: leader.pct for leader in self.leaders}

    @property
    def total_pct(self) -> Decimal:
        return self.seller_pct + sum((l.pct for l in self.leaders), ZERO)


@dataclass(frozen=True)
class CommissionScopeOverride:
    """
    A scope's replacement of the base split.

    ``leaders`` maps user id to percentage points. Leaders missing from the
    map fall back to the base rule's percentage at resolution time.
    """

    seller_pct: Decimal
    leaders: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_pct(self) -> Decimal:
        return self.seller_pct + sum(self.leaders.values(), ZERO)

    def to_payload(self) -> dict[str, object]:
        """Wire shape: ``{"sellerPct": n, "leaders": {userId: n}}``."""
        return {
            "sellerPct": self.seller_pct,
            "leaders": dict(sorted(self.leaders.items())),
        }


@dataclass(frozen=True)
class CommissionOverrides:
    """
    Scoped overrides for one booking.

    Currency keys are normalized ISO codes; service keys are stringified
    service ids. Instances are treated as immutable; the commission editor
    always builds a new one.
    """

    booking: CommissionScopeOverride | None = None
    currency: dict[str, CommissionScopeOverride] = field(default_factory=dict)
    service: dict[str, CommissionScopeOverride] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.booking is None and not self.currency and not self.service

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {}
        if self.booking is not None:
            payload["booking"] = self.booking.to_payload()
        if self.currency:
            payload["currency"] = {
                code: o.to_payload() for code, o in sorted(self.currency.items())
            }
        if self.service:
            payload["service"] = {
                key: o.to_payload() for key, o in sorted(self.service.items())
            }
        return payload


@dataclass(frozen=True)
class CommissionFeed:
    """
    Per-booking commission data produced by the server.

    When present, ``commission_base_by_currency`` and
    ``seller_earnings_by_currency`` are the source of truth; local
    computation is only a fallback.
    """

    owner_pct: Decimal = DEFAULT_OWNER_PCT
    rule: CommissionRule | None = None
    custom: CommissionOverrides | None = None
    commission_base_by_currency: dict[str, Decimal] = field(default_factory=dict)
    seller_earnings_by_currency: dict[str, Decimal] = field(default_factory=dict)

    @property
    def base_rule(self) -> CommissionRule:
        """The feed's rule, or an owner-only rule built from ``owner_pct``."""
        if self.rule is not None:
            return self.rule
        return CommissionRule.owner_only(self.owner_pct)
