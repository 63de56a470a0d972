"""
billing_services.commission_editor -- Validated edits of scoped commission overrides.

Responsibility:
    Turn an edit request (scope, key, draft percentages) into a new
    ``CommissionOverrides`` value and hand it to the host for persistence.
    This is the only place where commission percentages are validated;
    the resolver trusts what was persisted here.

Architecture position:
    Services -- imperative shell. Persists through the host's
    ``CommissionWriteBack`` protocol; never talks to storage directly.

Invariants enforced:
    - Every percentage is numeric and within [0, 100].
    - seller + leaders <= 100 (with a 0.0001 tolerance) for the scope
      being saved; a violating payload never reaches the host.
    - Service scope is rejected while booking-sale-total mode is active.
    - Currency keys are ISO codes, service keys are stringified ids; a
      result without any scope is ``None``.

Failure modes:
    - InvalidCommissionPercentageError, CommissionTotalExceededError and
      UnknownCommissionScopeError before any write.
    - CommissionWriteBackError when the host does not confirm the write.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Protocol

from billing_config.schema import (
    CommissionOverrides,
    CommissionRule,
    CommissionScope,
    CommissionScopeOverride,
)
from billing_engines.commission import clamp_pct
from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.domain.values import HUNDRED, ZERO, to_optional_decimal
from billing_kernel.exceptions import (
    CommissionTotalExceededError,
    CommissionWriteBackError,
    InvalidCommissionPercentageError,
    UnknownCommissionScopeError,
)
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.commission_editor")

PCT_SUM_TOLERANCE = Decimal("0.0001")


class CommissionWriteBack(Protocol):
    """
    Host collaborator persisting a booking's overrides; returns True once stored.

    ``payload`` is the wire shape of ``CommissionOverrides.to_payload()``,
    or ``None`` when no scope is overridden any more.
    """

    def save_overrides(
        self, booking_id: str, payload: dict[str, object] | None
    ) -> bool: ...


def parse_draft_pct(value: object, field: str = "sellerPct") -> Decimal:
    """Parse a typed percentage (``"12,5"`` accepted) in [0, 100]."""
    pct = to_optional_decimal(value)
    if pct is None or pct < ZERO or pct > HUNDRED:
        raise InvalidCommissionPercentageError(field, value)
    return pct


def build_scope_payload(
    seller_pct: object,
    leaders: Mapping[Any, object] | None = None,
    scope_label: str = "",
    base_rule: CommissionRule | None = None,
) -> CommissionScopeOverride:
    """
    Validate draft values into a scope override.

    Leaders of ``base_rule`` missing from ``leaders`` are stored with their
    base percentage, so the checked total is the one the resolver will use.

    Raises:
        InvalidCommissionPercentageError: for any bad percentage.
        CommissionTotalExceededError: when the total exceeds 100.
    """
    seller = parse_draft_pct(seller_pct, "sellerPct")
    parsed: dict[str, Decimal] = {}
    for user_id, raw in (leaders or {}).items():
        parsed[str(user_id)] = parse_draft_pct(raw, f"leaders.{user_id}")
    if base_rule is not None:
        for user_id, base_pct in base_rule.leader_pcts.items():
            parsed.setdefault(user_id, clamp_pct(base_pct))
    payload = CommissionScopeOverride(seller_pct=seller, leaders=parsed)
    if payload.total_pct > HUNDRED + PCT_SUM_TOLERANCE:
        raise CommissionTotalExceededError(str(payload.total_pct), scope_label)
    return payload


def _coerce_payload(
    payload: CommissionScopeOverride | Mapping[str, Any],
    scope_label: str,
    base_rule: CommissionRule | None = None,
) -> CommissionScopeOverride:
    if isinstance(payload, CommissionScopeOverride):
        return build_scope_payload(
            payload.seller_pct, payload.leaders, scope_label, base_rule
        )
    leaders = payload.get("leaders")
    if leaders is not None and not isinstance(leaders, Mapping):
        raise InvalidCommissionPercentageError("leaders", leaders)
    return build_scope_payload(
        payload.get("sellerPct", payload.get("seller_pct")), leaders, scope_label, base_rule
    )


def validate_scope(
    scope: CommissionScope | str,
    key: object = None,
    *,
    aggregate_mode: bool = False,
) -> tuple[CommissionScope, str | None]:
    """
    Normalize a scope and its key.

    Returns:
        ``(scope, key)`` where key is ``None`` for booking scope, an
        upper-case ISO code for currency scope and a stringified id for
        service scope.
    """
    try:
        scope = CommissionScope(str(getattr(scope, "value", scope)).strip().lower())
    except ValueError as exc:
        raise UnknownCommissionScopeError(str(scope), "unknown scope") from exc

    if scope == CommissionScope.BOOKING:
        return scope, None

    text = str(key).strip() if key is not None else ""
    if not text:
        raise UnknownCommissionScopeError(scope.value, "missing scope key")

    if scope == CommissionScope.CURRENCY:
        code = text.upper()
        if not CurrencyRegistry.is_valid(code):
            raise UnknownCommissionScopeError(scope.value, f"unknown currency {text!r}")
        return scope, code

    if aggregate_mode:
        raise UnknownCommissionScopeError(
            scope.value, "service scope is disabled in booking sale total mode"
        )
    return scope, text


def prune_overrides(overrides: CommissionOverrides | None) -> CommissionOverrides | None:
    """Collapse an overrides value with no scopes to ``None``."""
    if overrides is None or overrides.is_empty:
        return None
    return overrides


def apply_scope_override(
    overrides: CommissionOverrides | None,
    scope: CommissionScope,
    key: str | None,
    payload: CommissionScopeOverride,
) -> CommissionOverrides:
    """New overrides with ``payload`` stored at (scope, key)."""
    current = overrides or CommissionOverrides()
    if scope == CommissionScope.BOOKING:
        return CommissionOverrides(
            booking=payload, currency=dict(current.currency), service=dict(current.service)
        )
    if scope == CommissionScope.CURRENCY:
        return CommissionOverrides(
            booking=current.booking,
            currency={**current.currency, key: payload},
            service=dict(current.service),
        )
    return CommissionOverrides(
        booking=current.booking,
        currency=dict(current.currency),
        service={**current.service, key: payload},
    )


def remove_scope_override(
    overrides: CommissionOverrides | None,
    scope: CommissionScope,
    key: str | None,
) -> CommissionOverrides | None:
    """New overrides without (scope, key); ``None`` when nothing is left."""
    if overrides is None:
        return None
    if scope == CommissionScope.BOOKING:
        result = CommissionOverrides(
            booking=None, currency=dict(overrides.currency), service=dict(overrides.service)
        )
    elif scope == CommissionScope.CURRENCY:
        result = CommissionOverrides(
            booking=overrides.booking,
            currency={k: v for k, v in overrides.currency.items() if k != key},
            service=dict(overrides.service),
        )
    else:
        result = CommissionOverrides(
            booking=overrides.booking,
            currency=dict(overrides.currency),
            service={k: v for k, v in overrides.service.items() if k != key},
        )
    return prune_overrides(result)


class CommissionEditor:
    """
    Edits one booking's commission overrides.

    Contract:
        ``save_commission_override`` validates, builds the next overrides
        value, and only adopts it once the host confirms the write.
        With a ``base_rule``, leaders omitted from a payload are saved at
        their base percentage and count towards the 100 cap.
    """

    def __init__(
        self,
        booking_id: str,
        write_back: CommissionWriteBack,
        overrides: CommissionOverrides | None = None,
        aggregate_mode: bool = False,
        base_rule: CommissionRule | None = None,
    ):
        self.booking_id = booking_id
        self._write_back = write_back
        self._overrides = prune_overrides(overrides)
        self.aggregate_mode = aggregate_mode
        self.base_rule = base_rule

    @property
    def overrides(self) -> CommissionOverrides | None:
        return self._overrides

    def scope_override(
        self, scope: CommissionScope | str, key: object = None
    ) -> CommissionScopeOverride | None:
        """Override currently stored at (scope, key), if any."""
        scope, norm_key = validate_scope(scope, key, aggregate_mode=False)
        if self._overrides is None:
            return None
        if scope == CommissionScope.BOOKING:
            return self._overrides.booking
        if scope == CommissionScope.CURRENCY:
            return self._overrides.currency.get(norm_key)
        return self._overrides.service.get(norm_key)

    def save_commission_override(
        self,
        scope: CommissionScope | str,
        payload: CommissionScopeOverride | Mapping[str, Any] | None,
        key: object = None,
    ) -> CommissionOverrides | None:
        """
        Store (or, with ``payload=None``, delete) the override for a scope.

        Returns:
            The overrides now in effect.

        Raises:
            UnknownCommissionScopeError, InvalidCommissionPercentageError,
            CommissionTotalExceededError: before anything is written.
            CommissionWriteBackError: when the host refuses the write.
        """
        scope, norm_key = validate_scope(scope, key, aggregate_mode=self.aggregate_mode)
        scope_label = scope.value if norm_key is None else f"{scope.value}:{norm_key}"

        with LogContext.bind(booking_id=self.booking_id):
            if payload is None:
                next_overrides = remove_scope_override(self._overrides, scope, norm_key)
            else:
                validated = _coerce_payload(payload, scope_label, self.base_rule)
                next_overrides = prune_overrides(
                    apply_scope_override(self._overrides, scope, norm_key, validated)
                )

            wire = next_overrides.to_payload() if next_overrides is not None else None
            if not self._write_back.save_overrides(self.booking_id, wire):
                logger.warning("commission_override_not_saved", extra={
                    "scope": scope_label,
                })
                raise CommissionWriteBackError(self.booking_id, "host did not confirm the write")

            self._overrides = next_overrides
            logger.info("commission_override_saved", extra={
                "scope": scope_label,
                "removed": payload is None,
            })
            return next_overrides
