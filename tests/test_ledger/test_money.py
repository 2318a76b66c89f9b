"""Tests for fixed-point money helpers."""

from decimal import Decimal

from stock_sim.ledger.money import (
    percentage_of,
    to_money,
    to_percentage,
    weighted_average_cost,
)


class TestToMoney:
    """Tests for rounding to money precision."""

    def test_rounds_half_up(self) -> None:
        """Test that a trailing 5 rounds away from zero."""
        assert to_money(Decimal("1.005")) == Decimal("1.01")
        assert to_money(Decimal("2.675")) == Decimal("2.68")

    def test_accepts_ints_and_strings(self) -> None:
        """Test conversion of non-Decimal inputs."""
        assert to_money(5000) == Decimal("5000.00")
        assert to_money("12.3") == Decimal("12.30")


class TestPercentageOf:
    """Tests for fee and interest computation."""

    def test_broker_fee(self) -> None:
        """Test a 0.5% fee on a 500,000 trade."""
        assert percentage_of(Decimal("500000"), Decimal("0.5")) == Decimal("2500.00")

    def test_fractional_result_is_rounded(self) -> None:
        """Test that sub-cent results are rounded half-up."""
        assert percentage_of(Decimal("333.33"), Decimal("0.65")) == Decimal("2.17")

    def test_zero_rate(self) -> None:
        """Test that a zero percentage yields zero."""
        assert percentage_of(Decimal("1000"), Decimal("0")) == Decimal("0.00")


class TestToPercentage:
    """Tests for return percentage rounding."""

    def test_rounds_half_up_to_four_places(self) -> None:
        assert to_percentage(Decimal("0.00197")) == Decimal("0.0020")
        assert to_percentage(Decimal("-1.23455")) == Decimal("-1.2346")

    def test_result_is_exact_decimal(self) -> None:
        """Test that no binary floating point leaks into the result."""
        result = to_percentage(Decimal("10"))
        assert isinstance(result, Decimal)
        assert str(result) == "10.0000"


class TestWeightedAverageCost:
    """Tests for cost basis after a purchase."""

    def test_first_purchase(self) -> None:
        """Test that the first buy sets the average to the price paid."""
        assert weighted_average_cost(Decimal("0"), 0, Decimal("500000"), 100) == Decimal(
            "5000.00"
        )

    def test_blends_existing_position(self) -> None:
        """Test the weighted blend of old and new lots."""
        # 100 @ 5,000 plus 50 @ 5,600 -> 780,000 / 150
        result = weighted_average_cost(Decimal("5000"), 100, Decimal("280000"), 50)
        assert result == Decimal("5200.00")

    def test_rounds_repeating_average(self) -> None:
        """Test that a repeating decimal is rounded to cents."""
        result = weighted_average_cost(Decimal("10"), 2, Decimal("11"), 1)
        assert result == Decimal("10.33")
