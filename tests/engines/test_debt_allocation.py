"""
Tests for the Debt Allocator.

Covers:
- Proportional split by sale weight with exact conservation
- Explicit per-service allocations, unallocated and orphaned buckets
- Receipt scoping by service ids and currency (repeated ids counted once)
- Credited value per currency (converted receipts, payment lines, fees)
- Card interest in the sale basis (auto vs manual)
- Booking-sale-total (aggregate) mode
- Operator debt from pending dues
"""

import pytest
from decimal import Decimal

from billing_engines.debt import (
    NO_SERVICE_LABEL,
    allocate,
    credited_by_currency,
    sale_totals_by_currency,
    split_by_weight,
)
from billing_engines.records import PaymentLine, Receipt


def _paid(result, currency="ARS"):
    return {row.service_id: row.paid for row in result.rows_by_currency[currency]}


class TestProportionalSplit:
    """Tests for receipts without explicit allocations."""

    def test_split_by_sale(self, service_factory, receipt_factory):
        """A 200 receipt over sales 300 / 100 pays 150 / 50."""
        services = [
            service_factory(1, sale_price="300"),
            service_factory(2, sale_price="100"),
        ]
        result = allocate(services, [receipt_factory("200")])

        assert _paid(result) == {1: Decimal("150"), 2: Decimal("50")}
        assert result.paid_by_currency == {"ARS": Decimal("200")}
        assert result.unallocated_by_currency == {}

    def test_debt_per_row(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="300"),
            service_factory(2, sale_price="100"),
        ]
        result = allocate(services, [receipt_factory("200")])
        debts = {row.service_id: row.debt for row in result.rows_by_currency["ARS"]}
        assert debts == {1: Decimal("150"), 2: Decimal("50")}
        summary = result.debt_summary("ARS")
        assert summary.sale_for_debt == Decimal("400")
        assert summary.debt == Decimal("200")

    def test_parts_sum_exactly(self, service_factory, receipt_factory):
        services = [service_factory(i, sale_price="1") for i in (1, 2, 3)]
        result = allocate(services, [receipt_factory("100")])
        assert sum(_paid(result).values()) == Decimal("100")

    def test_zero_sales_split_equally(self, service_factory, receipt_factory):
        services = [service_factory(1), service_factory(2)]
        result = allocate(services, [receipt_factory("100")])
        assert _paid(result) == {1: Decimal("50"), 2: Decimal("50")}

    def test_fee_counts_as_paid(self, service_factory, receipt_factory):
        services = [service_factory(1, sale_price="100")]
        result = allocate(services, [receipt_factory("95", fee="5")])
        assert _paid(result) == {1: Decimal("100")}

    def test_overpayment_gives_negative_debt(self, service_factory, receipt_factory):
        services = [service_factory(1, sale_price="100")]
        result = allocate(services, [receipt_factory("130")])
        assert result.rows_by_currency["ARS"][0].debt == Decimal("-30")

    def test_rows_sorted_by_id(self, service_factory):
        services = [service_factory(3), service_factory(1), service_factory(2)]
        result = allocate(services, [])
        assert [r.service_id for r in result.rows_by_currency["ARS"]] == [1, 2, 3]


class TestReceiptScoping:
    """Tests for which services a receipt may pay."""

    def test_service_ids_restrict_targets(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="300"),
            service_factory(2, sale_price="100"),
        ]
        result = allocate(services, [receipt_factory("80", service_ids=[2])])
        assert _paid(result) == {1: Decimal("0"), 2: Decimal("80")}

    def test_currency_filters_targets(self, service_factory, receipt_factory):
        services = [
            service_factory(1, "ARS", sale_price="300"),
            service_factory(2, "USD", sale_price="100"),
        ]
        result = allocate(services, [receipt_factory("40", "USD")])
        assert _paid(result, "USD") == {2: Decimal("40")}
        assert _paid(result, "ARS") == {1: Decimal("0")}

    def test_no_eligible_service_goes_unallocated(self, service_factory, receipt_factory):
        services = [service_factory(1, "ARS", sale_price="300")]
        result = allocate(services, [receipt_factory("40", "USD")])
        assert result.unallocated_by_currency == {"USD": Decimal("40")}
        assert result.paid_by_currency == {"USD": Decimal("40")}
        assert _paid(result) == {1: Decimal("0")}

    def test_unknown_service_ids_go_unallocated(self, service_factory, receipt_factory):
        services = [service_factory(1, sale_price="300")]
        result = allocate(services, [receipt_factory("40", service_ids=[9])])
        assert result.unallocated_by_currency == {"ARS": Decimal("40")}

    def test_repeated_service_id_counted_once(self, service_factory, receipt_factory):
        """A 200 receipt scoped to [1, 1] pays 200 to service 1, nothing unallocated."""
        services = [service_factory(1, sale_price="100")]
        result = allocate(services, [receipt_factory("200", service_ids=[1, 1])])

        assert _paid(result) == {1: Decimal("200")}
        assert result.paid_by_currency == {"ARS": Decimal("200")}
        assert result.unallocated_by_currency == {}

    def test_repeated_ids_with_other_service(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="100"),
            service_factory(2, sale_price="100"),
        ]
        result = allocate(services, [receipt_factory("100", service_ids=[1, 2, 1])])
        assert _paid(result) == {1: Decimal("50"), 2: Decimal("50")}

    def test_duplicate_service_rows_collapse(self, service_factory, receipt_factory, captured_logs):
        services = [
            service_factory(1, sale_price="100"),
            service_factory(1, sale_price="100"),
        ]
        result = allocate(services, [receipt_factory("200")])

        assert [row.service_id for row in result.rows_by_currency["ARS"]] == [1]
        assert _paid(result) == {1: Decimal("200")}
        assert result.unallocated_by_currency == {}
        assert any(r["message"] == "duplicate_service_ids" for r in captured_logs())

    def test_from_mapping_drops_repeated_ids(self):
        receipt = Receipt.from_mapping(
            {"amount": "200", "amount_currency": "ARS", "service_ids": [1, "1", 2, 1]}
        )
        assert receipt.service_ids == (1, 2)

class TestExplicitAllocations:
    """Tests for receipts carrying per-service allocations."""

    def test_allocations_used_verbatim(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="300"),
            service_factory(2, sale_price="100"),
        ]
        receipt = receipt_factory("200", allocations=[(2, "200")])
        result = allocate(services, [receipt])
        assert _paid(result) == {1: Decimal("0"), 2: Decimal("200")}

    def test_remainder_goes_unallocated(self, service_factory, receipt_factory):
        services = [service_factory(1, sale_price="300")]
        receipt = receipt_factory("200", allocations=[(1, "120")])
        result = allocate(services, [receipt])
        assert _paid(result) == {1: Decimal("120")}
        assert result.unallocated_by_currency == {"ARS": Decimal("80")}

    def test_remainder_within_tolerance_dropped(self, service_factory, receipt_factory):
        services = [service_factory(1, sale_price="300")]
        receipt = receipt_factory("100", allocations=[(1, "99.995")])
        result = allocate(services, [receipt])
        assert result.unallocated_by_currency == {}

    def test_orphaned_allocation_reported(self, service_factory, receipt_factory, captured_logs):
        services = [service_factory(1, sale_price="300")]
        receipt = receipt_factory("150", allocations=[(1, "100"), (99, "50")])
        result = allocate(services, [receipt])

        assert _paid(result) == {1: Decimal("100")}
        assert result.orphaned_by_currency == {"ARS": Decimal("50")}
        assert result.unallocated_by_currency == {}
        assert any(
            r["message"] == "orphaned_service_allocation" and r["service_id"] == 99
            for r in captured_logs()
        )

    def test_orphaned_uses_allocation_currency(self, service_factory, receipt_factory):
        services = [service_factory(1, sale_price="300")]
        receipt = receipt_factory("150", allocations=[(1, "100"), (99, "50", "USD")])
        result = allocate(services, [receipt])
        assert result.orphaned_by_currency == {"USD": Decimal("50")}
        assert result.unallocated_by_currency == {"ARS": Decimal("50")}

    def test_conservation(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="300"),
            service_factory(2, sale_price="100"),
        ]
        receipt = receipt_factory("500", allocations=[(1, "100"), (2, "50"), (7, "25")])
        result = allocate(services, [receipt])
        total = (
            sum(_paid(result).values())
            + result.orphaned_by_currency.get("ARS", Decimal("0"))
            + result.unallocated_by_currency.get("ARS", Decimal("0"))
        )
        assert total == result.paid_by_currency["ARS"]


class TestCreditedByCurrency:
    """Tests for the value a receipt credits per currency."""

    def test_plain_amount_plus_fee(self, receipt_factory):
        assert credited_by_currency(receipt_factory("100", fee="5")) == {"ARS": Decimal("105")}

    def test_converted_receipt_uses_base_amount(self, receipt_factory):
        receipt = receipt_factory(
            "1000", "ARS", fee="5",
            base_amount=Decimal("10"), base_currency="USD",
        )
        assert credited_by_currency(receipt) == {"USD": Decimal("10")}

    def test_converted_receipt_fee_in_base_currency(self, receipt_factory):
        receipt = receipt_factory(
            "1000", "USD", fee="2",
            base_amount=Decimal("10"), base_currency="USD",
        )
        assert credited_by_currency(receipt) == {"USD": Decimal("12")}

    def test_trivial_base_amount_ignored(self, receipt_factory):
        receipt = receipt_factory(
            "100", "ARS", base_amount=Decimal("0.001"), base_currency="USD",
        )
        assert credited_by_currency(receipt) == {"ARS": Decimal("100")}

    def test_payment_lines(self, receipt_factory):
        receipt = receipt_factory(
            "150", "ARS", fee="5",
            payments=(
                PaymentLine(Decimal("100"), "ARS", Decimal("2")),
                PaymentLine(Decimal("50"), "USD"),
            ),
        )
        # Receipt-level fee not covered by line fees (5 - 2) stays in ARS.
        assert credited_by_currency(receipt) == {
            "ARS": Decimal("105"),
            "USD": Decimal("50"),
        }

    def test_values_within_tolerance_dropped(self, receipt_factory):
        assert credited_by_currency(receipt_factory("0.005")) == {}


class TestSaleBasis:
    """Tests for card interest and aggregate mode."""

    def test_auto_mode_includes_interest(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="300", card_interest="100"),
            service_factory(2, sale_price="400"),
        ]
        result = allocate(services, [receipt_factory("400")])
        assert _paid(result) == {1: Decimal("200"), 2: Decimal("200")}
        assert result.sale_for_debt_by_currency == {"ARS": Decimal("800")}

    def test_manual_mode_excludes_interest(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="300", card_interest="100"),
            service_factory(2, sale_price="100"),
        ]
        result = allocate(services, [receipt_factory("200")], manual_mode=True)
        assert _paid(result) == {1: Decimal("150"), 2: Decimal("50")}
        assert result.sale_for_debt_by_currency == {"ARS": Decimal("400")}

    def test_split_interest_preferred_over_raw(self, service_factory):
        services = [
            service_factory(
                1, sale_price="300", card_interest="999",
                taxable_card_interest="100", vat_on_card_interest="21",
            )
        ]
        result = allocate(services, [])
        assert result.rows_by_currency["ARS"][0].sale == Decimal("421")

    def test_aggregate_mode_splits_booking_total(self, service_factory, receipt_factory):
        services = [
            service_factory(1, sale_price="300"),
            service_factory(2, sale_price="100"),
        ]
        result = allocate(
            services,
            [receipt_factory("400")],
            use_booking_sale_total=True,
            booking_sale_totals={"ARS": "1000"},
        )
        sales = {row.service_id: row.sale for row in result.rows_by_currency["ARS"]}
        assert sales == {1: Decimal("750"), 2: Decimal("250")}
        assert result.sale_for_debt_by_currency == {"ARS": Decimal("1000")}
        assert result.debt_summary("ARS").debt == Decimal("600")

    def test_aggregate_without_totals_uses_service_sum(self, service_factory):
        services = [service_factory(1, sale_price="300", card_interest="50")]
        result = allocate(services, [], use_booking_sale_total=True)
        assert result.sale_for_debt_by_currency == {"ARS": Decimal("300")}

    def test_sale_totals_normalization(self, service_factory):
        services = [service_factory(1, sale_price="10")]
        totals = sale_totals_by_currency(
            services, True, {"usd": "5", "EUR": "-1", "ARS": "n/a"}
        )
        assert totals == {"USD": Decimal("5")}
        assert sale_totals_by_currency(services, False, {"USD": "5"}) == {"ARS": Decimal("10")}


class TestOperatorDebt:
    """Tests for pending operator dues."""

    def test_pending_statuses_counted(self, service_factory, due_factory):
        services = [service_factory(1, sale_price="100", description="Hotel")]
        dues = [
            due_factory("100", status="Pendiente", service_id=1),
            due_factory("50", status="pendiénte"),
            due_factory("500", status="PAGADO", service_id=1),
        ]
        result = allocate(services, [], dues)

        assert result.operator_debt_by_currency == {"ARS": Decimal("150")}
        rows = result.operator_rows_by_currency["ARS"]
        assert [r.service_id for r in rows] == [1, None]
        assert rows[0].label == "N° 1 · Hotel"
        assert rows[1].label == NO_SERVICE_LABEL

    def test_dues_grouped_per_service(self, due_factory):
        dues = [
            due_factory("10", service_id=5),
            due_factory("15", service_id=5),
            due_factory("7", "USD", service_id=5),
        ]
        result = allocate([], [], dues)
        assert result.operator_rows_by_currency["ARS"][0].amount == Decimal("25")
        assert result.operator_rows_by_currency["ARS"][0].label == "N° 5"
        assert result.operator_debt_by_currency["USD"] == Decimal("7")

    def test_not_netted_against_receipts(self, service_factory, receipt_factory, due_factory):
        services = [service_factory(1, sale_price="100")]
        result = allocate(services, [receipt_factory("100")], [due_factory("80")])
        assert result.operator_debt_by_currency == {"ARS": Decimal("80")}
        assert result.debt_summary("ARS").debt == Decimal("0")


class TestSplitByWeight:
    """Tests for the ratio splitter."""

    def test_empty_keys(self):
        assert split_by_weight(Decimal("10"), [], lambda k: Decimal("1")) == {}

    def test_negative_weights_treated_as_zero(self):
        weights = {1: Decimal("-5"), 2: Decimal("5")}
        parts = split_by_weight(Decimal("10"), [1, 2], weights.__getitem__)
        assert parts == {1: Decimal("0"), 2: Decimal("10")}

    @pytest.mark.parametrize("amount", ["100", "0.03", "-7"])
    def test_sums_exactly(self, amount):
        weights = {1: Decimal("1"), 2: Decimal("1"), 3: Decimal("1")}
        parts = split_by_weight(Decimal(amount), [1, 2, 3], weights.__getitem__)
        assert sum(parts.values()) == Decimal(amount)

    def test_repeated_keys_sum_exactly(self):
        weights = {1: Decimal("100"), 2: Decimal("100")}
        parts = split_by_weight(Decimal("200"), [1, 1, 2], weights.__getitem__)
        assert parts == {1: Decimal("100"), 2: Decimal("100")}
        assert sum(parts.values()) == Decimal("200")
