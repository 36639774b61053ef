"""
Unit tests for the commission calculator.

Amounts are whole GNF; rounding is banker's rounding (ROUND_HALF_EVEN).
"""

from datetime import date
from decimal import Decimal

import pytest

from core.errors import ValidationFailed
from models.enums import TransactionType
from services.commission_calculator import CommissionCalculator, round_amount


@pytest.fixture
def calculator():
    return CommissionCalculator()


class TestLeaseBreakdown:
    """Deposit, advance and commission for residential and commercial leases."""

    def test_reference_residential_breakdown(self, calculator):
        """Rent 1 000 000 with default terms gives the published invoice."""
        result = calculator.compute_breakdown(
            TransactionType.RESIDENTIAL_LEASE, Decimal("1000000")
        )

        assert result.deposit_amount == Decimal("2000000")
        assert result.advance_amount == Decimal("1000000")
        assert result.commission_amount == Decimal("500000")
        assert result.total_amount == Decimal("3500000")
        assert result.commission_rate == Decimal("0.50")
        assert result.rate_version == 1

    def test_line_items_sum_to_total(self, calculator):
        result = calculator.compute_breakdown(
            TransactionType.COMMERCIAL_LEASE, 2500000, deposit_months=3, advance_months=2
        )

        assert sum(item.amount for item in result.line_items) == result.total_amount
        assert result.deposit_amount == Decimal("7500000")
        assert result.advance_amount == Decimal("5000000")

    def test_landlord_share_excludes_commission(self, calculator):
        result = calculator.compute_breakdown(TransactionType.RESIDENTIAL_LEASE, 1000000)

        assert result.landlord_share == Decimal("3000000")
        assert result.rent_portion == Decimal("1000000")

    def test_minimum_commission_applies_to_small_rents(self, calculator):
        """Half of 150 000 is below the floor, so the floor is charged."""
        result = calculator.compute_breakdown(TransactionType.RESIDENTIAL_LEASE, 150000)

        assert result.commission_amount == Decimal("100000")
        assert result.total_amount == Decimal("300000") + Decimal("150000") + Decimal("100000")

    def test_zero_months_are_allowed(self, calculator):
        result = calculator.compute_breakdown(
            TransactionType.RESIDENTIAL_LEASE, 1000000, deposit_months=0, advance_months=0
        )

        assert result.deposit_amount == Decimal("0")
        assert result.advance_amount == Decimal("0")
        assert result.total_amount == result.commission_amount


class TestRounding:
    """Half-units round to the nearest even unit."""

    def test_half_rounds_down_to_even(self, calculator):
        result = calculator.compute_breakdown(TransactionType.RESIDENTIAL_LEASE, 1000001)
        assert result.commission_amount == Decimal("500000")

    def test_half_rounds_up_to_even(self, calculator):
        result = calculator.compute_breakdown(TransactionType.RESIDENTIAL_LEASE, 1000003)
        assert result.commission_amount == Decimal("500002")

    def test_round_amount_helper(self):
        assert round_amount(Decimal("2.5")) == Decimal("2")
        assert round_amount(Decimal("3.5")) == Decimal("4")
        assert round_amount(Decimal("10.49")) == Decimal("10")

    def test_fractional_base_is_quantized_first(self, calculator):
        result = calculator.compute_breakdown(TransactionType.RESIDENTIAL_LEASE, "999999.6")
        assert result.base_amount == Decimal("1000000")


class TestSaleBreakdown:
    """Sales carry no deposit or advance."""

    def test_land_sale(self, calculator):
        result = calculator.compute_breakdown(TransactionType.LAND_SALE, 50000000)

        assert result.deposit_amount == Decimal("0")
        assert result.advance_amount == Decimal("0")
        assert result.commission_amount == Decimal("500000")
        assert result.total_amount == Decimal("50500000")
        assert [item.label for item in result.line_items] == ["Sale price", "Platform commission"]

    def test_property_sale(self, calculator):
        result = calculator.compute_breakdown(TransactionType.PROPERTY_SALE, 300000000)

        assert result.commission_amount == Decimal("6000000")
        assert result.total_amount == Decimal("306000000")


class TestRejections:
    """Invalid inputs raise validation errors."""

    @pytest.mark.parametrize("amount", [0, -1, "-250000", "abc", None])
    def test_non_positive_or_garbage_base(self, calculator, amount):
        with pytest.raises(ValidationFailed) as exc:
            calculator.compute_breakdown(TransactionType.RESIDENTIAL_LEASE, amount)
        assert exc.value.code == "INVALID_AMOUNT"

    def test_negative_months(self, calculator):
        with pytest.raises(ValidationFailed) as exc:
            calculator.compute_breakdown(
                TransactionType.RESIDENTIAL_LEASE, 1000000, deposit_months=-1
            )
        assert exc.value.code == "INVALID_TERMS"

    def test_unknown_rate_version(self, calculator):
        with pytest.raises(ValidationFailed) as exc:
            calculator.rate_table_version(99)
        assert exc.value.code == "UNKNOWN_RATE_VERSION"


class TestRateTables:
    """Versioned tables and the public transparency listing."""

    def test_table_lookup_by_date(self, calculator):
        assert calculator.rate_table_for(date(2026, 6, 1)).version == 1
        assert calculator.rate_table_for(date(2020, 1, 1)).version == 1

    def test_rates_info_marks_commission_non_refundable(self, calculator):
        info = calculator.rates_info()

        assert info["version"] == 1
        assert info["commission_refundable"] is False
        assert info["rates"][TransactionType.LAND_SALE.value] == Decimal("0.01")
        assert info["minimum_commission"] == Decimal("100000")

    def test_rent_breakdown_has_no_commission(self, calculator):
        result = calculator.rent_breakdown(TransactionType.RESIDENTIAL_LEASE, 800000)

        assert result.commission_amount == Decimal("0")
        assert result.deposit_amount == Decimal("0")
        assert result.total_amount == Decimal("800000")
        assert result.rent_portion == Decimal("800000")
