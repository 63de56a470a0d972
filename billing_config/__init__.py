"""
billing_config -- typed configuration for the billing engine.

Responsibility:
    Owns the frozen configuration structures consumed by the engines and
    the boundary parsers that build them from feed payloads or YAML.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and below
    ``billing_engines`` / ``billing_services``. The kernel MUST NEVER
    import from ``billing_config``.

Invariants enforced:
    - Defaulting happens at the boundary: nothing past the loader sees a
      raw dictionary.
    - Absence of the config source yields ``CalcConfig.defaults()``
      (mode auto, fee 0.024 via fallback, no adjustments, aggregate off).

Audit relevance:
    ``get_default_calc_config()`` emits a ``BILLING_CONFIG_TRACE`` log
    entry with the config fingerprint so every summary can be tied back to
    the settings that produced it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import (
    compute_config_fingerprint,
    load_calc_config_file,
    parse_adjustment_rule,
    parse_adjustment_rules,
    parse_calc_config,
    parse_commission_feed,
    parse_commission_overrides,
    parse_commission_rule,
    parse_scope_override,
)
from billing_config.schema import (
    DEFAULT_OWNER_PCT,
    DEFAULT_TRANSFER_FEE_PCT,
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
    CommissionScope,
    CommissionScopeOverride,
    LeaderSplit,
)

_logger = logging.getLogger("billing_kernel.config")


def get_default_calc_config(path: Path | None = None) -> CalcConfig:
    """Load the packaged (or given) YAML defaults and trace the result."""
    config = load_calc_config_file(path)
    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "fingerprint": compute_config_fingerprint(config),
            "mode": config.billing_breakdown_mode.value,
            "adjustment_count": len(config.billing_adjustments),
            "use_booking_sale_total": config.use_booking_sale_total,
        },
    )
    return config


__all__ = [
    "get_default_calc_config",
    # Schema
    "DEFAULT_OWNER_PCT",
    "DEFAULT_TRANSFER_FEE_PCT",
    "AdjustmentBasis",
    "AdjustmentKind",
    "AdjustmentRule",
    "AdjustmentSource",
    "AdjustmentValueType",
    "BillingMode",
    "CalcConfig",
    "CommissionFeed",
    "CommissionOverrides",
    "CommissionRule",
    "CommissionScope",
    "CommissionScopeOverride",
    "LeaderSplit",
    # Loader
    "compute_config_fingerprint",
    "load_calc_config_file",
    "parse_adjustment_rule",
    "parse_adjustment_rules",
    "parse_calc_config",
    "parse_commission_feed",
    "parse_commission_overrides",
    "parse_commission_rule",
    "parse_scope_override",
]
