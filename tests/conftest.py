"""
Pytest fixtures for the billing engine test suite.

Provides:
- Structured logging configured once per session, context cleared per test
- A ``captured_logs`` fixture returning parsed JSON log records
- Factories for services, receipts and operator dues
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from billing_config.schema import (
    AdjustmentBasis,
    AdjustmentKind,
    AdjustmentRule,
    AdjustmentSource,
    AdjustmentValueType,
)
from billing_engines.records import OperatorDue, Receipt, Service, ServiceAllocation
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            allocate(services, receipts)
            logs = captured_logs()
            assert any(r["message"] == "debt_allocation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Record factories
# =============================================================================


def make_service(id_service: int, currency: str = "ARS", **amounts) -> Service:
    """Build a Service with Decimal amounts from str/int keyword values."""
    values = {}
    for key, value in amounts.items():
        if key in ("type", "description", "extra_adjustments", "agency_service_id"):
            values[key] = value
        elif value is None:
            values[key] = None
        else:
            values[key] = Decimal(str(value))
    return Service(id_service=id_service, currency=currency, **values)


def make_receipt(
    amount,
    currency: str = "ARS",
    fee="0",
    service_ids=(),
    allocations=(),
    **kwargs,
) -> Receipt:
    """Build a Receipt; ``allocations`` is a sequence of (service_id, amount[, currency])."""
    return Receipt(
        amount=Decimal(str(amount)),
        amount_currency=currency,
        payment_fee_amount=Decimal(str(fee)),
        service_ids=tuple(service_ids),
        service_allocations=tuple(
            ServiceAllocation(
                service_id=alloc[0],
                amount_service=Decimal(str(alloc[1])),
                service_currency=alloc[2] if len(alloc) > 2 else None,
            )
            for alloc in allocations
        ),
        **kwargs,
    )


def make_due(amount, currency: str = "ARS", status: str = "PENDIENTE", service_id=None) -> OperatorDue:
    return OperatorDue(
        amount=Decimal(str(amount)),
        currency=currency,
        status=status,
        service_id=service_id,
    )


def make_rule(
    label: str,
    kind: str = "cost",
    basis: str = "sale",
    value_type: str = "percent",
    value: str = "0.10",
    active: bool = True,
    source: str = "global",
    rule_id: str | None = None,
) -> AdjustmentRule:
    return AdjustmentRule(
        id=rule_id or f"rule-{label}",
        label=label,
        kind=AdjustmentKind(kind),
        basis=AdjustmentBasis(basis),
        value_type=AdjustmentValueType(value_type),
        value=Decimal(value),
        active=active,
        source=AdjustmentSource(source),
    )


@pytest.fixture
def service_factory():
    return make_service


@pytest.fixture
def receipt_factory():
    return make_receipt


@pytest.fixture
def due_factory():
    return make_due


@pytest.fixture
def rule_factory():
    return make_rule
