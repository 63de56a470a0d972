"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Parses raw configuration payloads (feed JSON already decoded into Python
objects, or YAML files) into the frozen ``billing_config.schema`` types.
This is the ONLY place where untyped dictionaries are inspected.

Architecture position
---------------------
**Config layer** -- boundary tooling. Consumed by the retrieval pipeline in
``billing_services`` and by tests. Depends on ``billing_kernel`` only.

Invariants enforced
-------------------
* Strict parsers (``parse_adjustment_rule``, ``parse_scope_override``)
  raise ``MalformedConfigurationError`` with a descriptive reason.
* Tolerant parsers (``parse_calc_config``, ``parse_adjustment_rules``,
  ``parse_commission_overrides``) never raise on shape problems: malformed
  sections are treated as absent and logged.
* Percent values are normalized to proportions (``2.4`` -> ``0.024``).
* ``compute_config_fingerprint`` produces a deterministic SHA-256 hash.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Non-mapping commission feed  -> ``MalformedConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    DEFAULT_OWNER_PCT,
    AdjustmentBasis,
    AdjustmentKind,
    AdjustmentRule,
    AdjustmentSource,
    AdjustmentValueType,
    BillingMode,
    CalcConfig,
    CommissionFeed,
    CommissionOverrides,
    CommissionRule,
    CommissionScopeOverride,
    LeaderSplit,
)
from billing_kernel.domain.currency import normalize_currency_code
from billing_kernel.domain.values import (
    ZERO,
    normalize_proportion,
    to_optional_decimal,
)
from billing_kernel.exceptions import MalformedConfigurationError
from billing_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    """First present key among camelCase / snake_case spellings."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def _parse_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("1", "true", "yes", "si", "on"):
            return True
        if normalized in ("0", "false", "no", "off"):
            return False
    return default


# ---------------------------------------------------------------------------
# Adjustments
# ---------------------------------------------------------------------------


def _derived_rule_id(index: int, *parts: Any) -> str:
    canonical = "|".join(
        [str(index), *(str(getattr(p, "value", p)) for p in parts)]
    )
    return f"adj_{hashlib.sha256(canonical.encode('utf-8')).hexdigest()[:12]}"


def parse_adjustment_rule(
    raw: Any,
    source: AdjustmentSource = AdjustmentSource.GLOBAL,
    index: int = 0,
) -> AdjustmentRule:
    """
    Parse a single adjustment rule.

    Preconditions:
        - ``raw`` is a mapping with ``label``, ``kind``, ``basis``,
          ``valueType`` (or ``value_type``) and ``value``.
    Postconditions:
        - Percent values are proportions; fixed values are non-negative.
        - ``active`` defaults to True. A missing ``id`` is derived from the
          rule fields and ``index``, so re-parsing yields the same id.
    Raises:
        MalformedConfigurationError: on any missing or invalid field.
    """
    if not isinstance(raw, Mapping):
        raise MalformedConfigurationError("billing_adjustments", "item is not an object")

    label = raw.get("label")
    label = label.strip() if isinstance(label, str) else ""
    if not label:
        raise MalformedConfigurationError("billing_adjustments", "missing label")

    try:
        kind = AdjustmentKind(str(raw.get("kind") or "").strip().lower())
        basis = AdjustmentBasis(str(raw.get("basis") or "").strip().lower())
        value_type = AdjustmentValueType(
            str(_pick(raw, "valueType", "value_type") or "").strip().lower()
        )
    except ValueError as exc:
        raise MalformedConfigurationError(
            "billing_adjustments", f"{label}: {exc}"
        ) from exc

    if value_type == AdjustmentValueType.PERCENT:
        value = normalize_proportion(raw.get("value"))
    else:
        value = to_optional_decimal(raw.get("value"))
        if value is not None and value < ZERO:
            value = None
    if value is None:
        raise MalformedConfigurationError(
            "billing_adjustments", f"{label}: invalid value {raw.get('value')!r}"
        )

    raw_source = raw.get("source")
    if isinstance(raw_source, str) and raw_source.strip().lower() in ("global", "service"):
        source = AdjustmentSource(raw_source.strip().lower())

    rule_id = raw.get("id")
    rule_id = rule_id.strip() if isinstance(rule_id, str) else ""

    return AdjustmentRule(
        id=rule_id or _derived_rule_id(
            index, label, kind, basis, value_type, value, source
        ),
        label=label,
        kind=kind,
        basis=basis,
        value_type=value_type,
        value=value,
        active=_parse_bool(raw.get("active"), True),
        source=source,
    )


def parse_adjustment_rules(
    raw: Any,
    source: AdjustmentSource = AdjustmentSource.GLOBAL,
) -> tuple[AdjustmentRule, ...]:
    """
    Parse an adjustment list, treating any malformed list as absent.

    ``None`` is an empty list. A non-list, or a list with any malformed
    item, yields ``()`` and a warning; partial lists are never applied.
    """
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        logger.warning("adjustments_not_a_list", extra={
            "type": type(raw).__name__,
        })
        return ()
    try:
        return tuple(
            parse_adjustment_rule(item, source, index)
            for index, item in enumerate(raw)
        )
    except MalformedConfigurationError as exc:
        logger.warning("adjustments_malformed_ignored", extra={
            "reason": exc.reason,
            "item_count": len(raw),
        })
        return ()


# ---------------------------------------------------------------------------
# Calculation configuration
# ---------------------------------------------------------------------------


def parse_calc_config(payload: Any) -> CalcConfig:
    """
    Parse the agency calculation config with defaulting at the boundary.

    Unknown modes fall back to ``auto``; an invalid transfer fee becomes
    ``None`` (resolution then falls through); malformed adjustments become
    an empty list.
    """
    if not isinstance(payload, Mapping):
        logger.warning("calc_config_not_a_mapping", extra={
            "type": type(payload).__name__,
        })
        return CalcConfig.defaults()

    raw_mode = str(payload.get("billing_breakdown_mode") or "").strip().lower()
    mode = BillingMode.MANUAL if raw_mode == BillingMode.MANUAL.value else BillingMode.AUTO

    by_type_raw = payload.get("transfer_fee_pct_by_type")
    by_type: list[tuple[str, Decimal]] = []
    if isinstance(by_type_raw, Mapping):
        for type_name, raw_pct in by_type_raw.items():
            pct = normalize_proportion(raw_pct)
            if pct is not None and str(type_name).strip():
                by_type.append((str(type_name).strip(), pct))

    return CalcConfig(
        billing_breakdown_mode=mode,
        transfer_fee_pct=normalize_proportion(payload.get("transfer_fee_pct")),
        billing_adjustments=parse_adjustment_rules(payload.get("billing_adjustments")),
        use_booking_sale_total=_parse_bool(payload.get("use_booking_sale_total"), False),
        transfer_fee_pct_by_type=tuple(sorted(by_type)),
    )


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_calc_config_file(path: Path | None = None) -> CalcConfig:
    """Load a calc config from YAML (the packaged defaults when no path is given)."""
    data = load_yaml_file(path or DEFAULTS_PATH)
    section = data.get("calc_config", data)
    return parse_calc_config(section)


def compute_config_fingerprint(config: CalcConfig) -> str:
    """Deterministic SHA-256 fingerprint of a calc config, for change detection."""
    canonical = {
        "mode": config.billing_breakdown_mode.value,
        "transfer_fee_pct": str(config.transfer_fee_pct),
        "use_booking_sale_total": config.use_booking_sale_total,
        "by_type": [[name, str(pct)] for name, pct in config.transfer_fee_pct_by_type],
        "adjustments": [
            [
                rule.id,
                rule.label,
                rule.kind.value,
                rule.basis.value,
                rule.value_type.value,
                str(rule.value),
                rule.active,
                rule.source.value,
            ]
            for rule in config.billing_adjustments
        ],
    }
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Commission
# ---------------------------------------------------------------------------


def parse_commission_rule(raw: Any) -> CommissionRule | None:
    """Parse ``{sellerPct, leaders: [{userId, pct}]}``; malformed -> ``None``."""
    if not isinstance(raw, Mapping):
        return None
    seller = to_optional_decimal(_pick(raw, "sellerPct", "seller_pct"))
    if seller is None:
        return None
    leaders: list[LeaderSplit] = []
    raw_leaders = raw.get("leaders") or []
    if not isinstance(raw_leaders, (list, tuple)):
        return None
    for item in raw_leaders:
        if not isinstance(item, Mapping):
            return None
        user_id = _pick(item, "userId", "user_id")
        pct = to_optional_decimal(item.get("pct"))
        if user_id is None or pct is None:
            return None
        leaders.append(LeaderSplit(user_id=str(user_id), pct=pct))
    return CommissionRule(seller_pct=seller, leaders=tuple(leaders))


def parse_scope_override(raw: Any) -> CommissionScopeOverride:
    """
    Parse one scope override.

    Raises:
        MalformedConfigurationError: when ``sellerPct`` is missing or not
        numeric, or ``leaders`` is not a mapping of numeric values.
    """
    if not isinstance(raw, Mapping):
        raise MalformedConfigurationError("commission_overrides", "scope is not an object")
    seller = to_optional_decimal(_pick(raw, "sellerPct", "seller_pct"))
    if seller is None:
        raise MalformedConfigurationError("commission_overrides", "missing sellerPct")
    raw_leaders = raw.get("leaders") or {}
    if not isinstance(raw_leaders, Mapping):
        raise MalformedConfigurationError("commission_overrides", "leaders is not a map")
    leaders: dict[str, Decimal] = {}
    for user_id, raw_pct in raw_leaders.items():
        pct = to_optional_decimal(raw_pct)
        if pct is None:
            raise MalformedConfigurationError(
                "commission_overrides", f"leader {user_id}: invalid pct {raw_pct!r}"
            )
        leaders[str(user_id)] = pct
    return CommissionScopeOverride(seller_pct=seller, leaders=leaders)


def _parse_scope_map(raw: Any, scope: str, key_fn) -> dict[str, CommissionScopeOverride]:
    if not isinstance(raw, Mapping):
        return {}
    out: dict[str, CommissionScopeOverride] = {}
    for key, value in raw.items():
        try:
            out[key_fn(key)] = parse_scope_override(value)
        except MalformedConfigurationError as exc:
            logger.warning("commission_override_ignored", extra={
                "scope": scope,
                "key": str(key),
                "reason": exc.reason,
            })
    return out


def parse_commission_overrides(raw: Any) -> CommissionOverrides | None:
    """
    Parse scoped overrides; malformed scopes are dropped individually.

    Returns ``None`` when nothing usable remains.
    """
    if not isinstance(raw, Mapping):
        return None

    booking = None
    if raw.get("booking") is not None:
        try:
            booking = parse_scope_override(raw["booking"])
        except MalformedConfigurationError as exc:
            logger.warning("commission_override_ignored", extra={
                "scope": "booking",
                "reason": exc.reason,
            })

    overrides = CommissionOverrides(
        booking=booking,
        currency=_parse_scope_map(
            raw.get("currency"), "currency", lambda k: normalize_currency_code(k)
        ),
        service=_parse_scope_map(raw.get("service"), "service", lambda k: str(k).strip()),
    )
    return None if overrides.is_empty else overrides


def _parse_currency_amounts(raw: Any) -> dict[str, Decimal]:
    if not isinstance(raw, Mapping):
        return {}
    out: dict[str, Decimal] = {}
    for code, value in raw.items():
        amount = to_optional_decimal(value)
        if amount is not None:
            out[normalize_currency_code(code)] = amount
    return out


def parse_commission_feed(raw: Any) -> CommissionFeed:
    """
    Parse the per-booking commission feed.

    Raises:
        MalformedConfigurationError: if ``raw`` is not a mapping.
    """
    if not isinstance(raw, Mapping):
        raise MalformedConfigurationError("commission_feed", "payload is not an object")

    owner_pct = to_optional_decimal(_pick(raw, "ownerPct", "owner_pct"))
    return CommissionFeed(
        owner_pct=owner_pct if owner_pct is not None else DEFAULT_OWNER_PCT,
        rule=parse_commission_rule(raw.get("rule")),
        custom=parse_commission_overrides(raw.get("custom")),
        commission_base_by_currency=_parse_currency_amounts(
            _pick(raw, "commissionBaseByCurrency", "commission_base_by_currency")
        ),
        seller_earnings_by_currency=_parse_currency_amounts(
            _pick(raw, "sellerEarningsByCurrency", "seller_earnings_by_currency")
        ),
    )
