"""Tests for the error taxonomy."""

from decimal import Decimal

import pytest

from stock_sim.errors import (
    ConcurrentModificationError,
    DaySimulationError,
    ErrorCategory,
    ErrorCode,
    SimulationError,
    TradeRejectedError,
)


class TestSimulationError:
    """Tests for codes, messages and categories."""

    def test_str_includes_code(self) -> None:
        error = DaySimulationError(ErrorCode.LIMIT_REACHED, "Day 15 of 15")
        assert str(error) == "LIMIT_REACHED: Day 15 of 15"
        assert error.message == "Day 15 of 15"

    def test_message_defaults_to_code(self) -> None:
        assert DaySimulationError(ErrorCode.NOT_PAUSED).message == "NOT_PAUSED"

    @pytest.mark.parametrize(
        ("code", "category"),
        [
            (ErrorCode.NOT_CONFIGURED, ErrorCategory.CONFIGURATION),
            (ErrorCode.ALREADY_STARTED, ErrorCategory.STATE_CONFLICT),
            (ErrorCode.DAILY_LIMIT_REACHED, ErrorCategory.STATE_CONFLICT),
            (ErrorCode.BAD_CONFIRMATION, ErrorCategory.CONFIRMATION),
            (ErrorCode.INSUFFICIENT_SHARES, ErrorCategory.VALIDATION),
            (ErrorCode.NO_BROKER, ErrorCategory.VALIDATION),
        ],
    )
    def test_categories(self, code: ErrorCode, category: ErrorCategory) -> None:
        assert SimulationError(code).category == category

    def test_conflict_default(self) -> None:
        """Test that concurrency errors default to CONFLICT."""
        error = ConcurrentModificationError(message="version moved")
        assert error.code == ErrorCode.CONFLICT
        assert error.category == ErrorCategory.CONCURRENCY


class TestTradeRejectedError:
    """Tests for the balance shortfall."""

    def test_shortfall(self) -> None:
        error = TradeRejectedError(
            ErrorCode.INSUFFICIENT_BALANCE,
            required=Decimal("502500.00"),
            available=Decimal("100000.00"),
        )
        assert error.shortfall == Decimal("402500.00")

    def test_shortfall_absent_for_other_codes(self) -> None:
        assert TradeRejectedError(ErrorCode.INVALID_STOCK).shortfall is None
