"""Tests for the trade execution engine."""

from decimal import Decimal

import pytest

from stock_sim.app import Simulator
from stock_sim.errors import ErrorCategory, ErrorCode, TradeRejectedError
from stock_sim.ledger.models import Company, TradeOrder, TransactionType
from stock_sim.simulation.day_control import DayControlService
from stock_sim.trading.executor import OrderValidator, TradeExecutionEngine

from conftest import AKNA_PRICE, Market, add_participant


def order(code: str, side: str, quantity: int) -> dict[str, object]:
    return {"stock_code": code, "type": side, "quantity": quantity}


def snapshot(sim: Simulator, participant_id: str) -> tuple:
    participant = sim.storage.get_participant(participant_id)
    return (
        participant.current_balance,
        sim.storage.get_holdings(participant_id),
        sim.storage.count_transactions(participant_id=participant_id),
    )


class TestOrderValidator:
    """Tests for order shape validation."""

    def test_empty_batch(self) -> None:
        """Test that a batch needs at least one order."""
        with pytest.raises(TradeRejectedError) as exc_info:
            OrderValidator.parse_orders([])
        assert exc_info.value.code == ErrorCode.INVALID_ORDER

    def test_normalizes_stock_code(self) -> None:
        """Test upper-casing and trimming of codes."""
        [parsed] = OrderValidator.parse_orders([order(" akna ", "BUY", 5)])
        assert parsed == TradeOrder(stock_code="AKNA", type=TransactionType.BUY, quantity=5)

    @pytest.mark.parametrize(
        "bad",
        [
            order("AKNA", "BUY", 0),
            order("AKNA", "BUY", -3),
            order("AK", "BUY", 1),
            order("TOOLONG", "SELL", 1),
            order("AKNA", "HOLD", 1),
        ],
    )
    def test_rejects_malformed_orders(self, bad: dict[str, object]) -> None:
        """Test INVALID_ORDER for malformed input."""
        with pytest.raises(TradeRejectedError) as exc_info:
            OrderValidator.parse_orders([bad])
        assert exc_info.value.code == ErrorCode.INVALID_ORDER
        assert exc_info.value.category == ErrorCategory.VALIDATION


class TestSuccessfulBatches:
    """Tests for committed batches."""

    def test_single_buy_example(self, sim: Simulator, sim_market: Market) -> None:
        """Test 100 AKNA at 5,000 with a 0.5% fee from 10,000,000."""
        sim.day_control.start()

        summary = sim.trading.execute_trades(
            sim_market.participant.id, [order("AKNA", "BUY", 100)]
        )

        assert summary.day == 1
        assert summary.starting_balance == Decimal("10000000.00")
        assert summary.broker_fee == Decimal("2500.00")
        assert summary.ending_balance == Decimal("9497500.00")
        assert summary.total_buy == Decimal("500000.00")

        participant = sim.storage.get_participant(sim_market.participant.id)
        assert participant.current_balance == Decimal("9497500.00")

        holding = sim.storage.get_holdings(sim_market.participant.id)[sim_market.akna.id]
        assert holding.quantity == 100
        assert holding.average_buy_price == AKNA_PRICE

        [row] = sim.storage.list_transactions(participant_id=sim_market.participant.id)
        assert row.transaction_type == TransactionType.BUY
        assert row.quantity == 100
        assert row.total_amount == Decimal("500000.00")
        assert row.broker_fee == Decimal("2500.00")
        assert row.broker_id == sim_market.broker.id
        assert summary.transaction_ids == [row.id]

    def test_combined_fee_across_batch(self, sim: Simulator, sim_market: Market) -> None:
        """Test that one fee is charged on the whole batch."""
        sim.day_control.start()

        summary = sim.trading.execute_trades(
            sim_market.participant.id,
            [order("AKNA", "BUY", 100), order("KJNL", "BUY", 50)],
        )

        # 500,000 + 100,500 traded, 0.5% fee
        assert summary.broker_fee == Decimal("3002.50")
        assert summary.ending_balance == Decimal("9396497.50")

        rows = sim.storage.list_transactions(participant_id=sim_market.participant.id)
        assert len(rows) == 2
        assert {r.broker_fee for r in rows} == {Decimal("3002.50")}
        assert {r.balance_before for r in rows} == {Decimal("10000000.00")}
        assert {r.balance_after for r in rows} == {Decimal("9396497.50")}

    def test_buy_then_sell_round_trip_without_fee(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that a zero-fee round trip at the same price is neutral."""
        trader = add_participant(sim.storage, "zero", broker_id=sim_market.free_broker.id)
        sim.day_control.start()
        sim.trading.execute_trades(trader.id, [order("AKNA", "BUY", 10)])
        sim.day_control.advance()

        summary = sim.trading.execute_trades(trader.id, [order("AKNA", "SELL", 10)])

        assert summary.ending_balance == trader.starting_balance
        assert sim.storage.get_holdings(trader.id) == {}

    def test_average_cost_blends_purchases(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test the weighted average after buying on two days."""
        sim.day_control.start()
        sim.trading.execute_trades(sim_market.participant.id, [order("KJNL", "BUY", 100)])
        sim.day_control.advance()
        sim.day_control.advance()

        sim.trading.execute_trades(sim_market.participant.id, [order("KJNL", "BUY", 100)])

        holding = sim.storage.get_holdings(sim_market.participant.id)[sim_market.kjnl.id]
        assert holding.quantity == 200
        # (2,010 + 2,030) / 2
        assert holding.average_buy_price == Decimal("2020.00")

    def test_partial_sell_keeps_cost_basis(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that selling reduces quantity without touching the average."""
        sim.day_control.start()
        sim.trading.execute_trades(sim_market.participant.id, [order("KJNL", "BUY", 100)])
        sim.day_control.advance()

        sim.trading.execute_trades(sim_market.participant.id, [order("KJNL", "SELL", 40)])

        holding = sim.storage.get_holdings(sim_market.participant.id)[sim_market.kjnl.id]
        assert holding.quantity == 60
        assert holding.average_buy_price == Decimal("2010.00")

    def test_sale_proceeds_fund_purchases(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that sells and buys net out before the balance check."""
        poor = add_participant(
            sim.storage, "poor", Decimal("60000.00"), broker_id=sim_market.free_broker.id
        )
        sim.day_control.start()
        sim.trading.execute_trades(poor.id, [order("AKNA", "BUY", 10)])
        sim.day_control.advance()

        summary = sim.trading.execute_trades(
            poor.id, [order("AKNA", "SELL", 10), order("KJNL", "BUY", 25)]
        )

        # 10,000 cash + 50,000 sold - 25 x 2,020 bought
        assert summary.ending_balance == Decimal("9500.00")

    def test_cache_and_notification_after_commit(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test post-commit invalidation and notification."""
        sim.day_control.start()
        before = sim.portfolio.get_portfolio(sim_market.participant.id)
        events = []
        sim.events.subscribe(events.append)

        sim.trading.execute_trades(sim_market.participant.id, [order("AKNA", "BUY", 1)])

        after = sim.portfolio.get_portfolio(sim_market.participant.id)
        assert before.holdings == []
        assert [h.stock_code for h in after.holdings] == ["AKNA"]
        assert [e.kind.value for e in events] == ["transaction_completed"]


class TestRejections:
    """Tests for every precondition; nothing may be written on failure."""

    def _assert_rejected(
        self, sim: Simulator, participant_id: str, orders: list, code: ErrorCode
    ) -> TradeRejectedError:
        before = snapshot(sim, participant_id)
        with pytest.raises(TradeRejectedError) as exc_info:
            sim.trading.execute_trades(participant_id, orders)
        assert exc_info.value.code == code
        assert snapshot(sim, participant_id) == before
        return exc_info.value

    def test_unknown_participant(self, sim: Simulator, sim_market: Market) -> None:
        """Test PARTICIPANT_NOT_FOUND."""
        sim.day_control.start()
        with pytest.raises(TradeRejectedError) as exc_info:
            sim.trading.execute_trades("nobody", [order("AKNA", "BUY", 1)])
        assert exc_info.value.code == ErrorCode.PARTICIPANT_NOT_FOUND

    def test_no_broker(self, sim: Simulator, sim_market: Market) -> None:
        """Test NO_BROKER before any other check."""
        loner = add_participant(sim.storage, "loner")
        self._assert_rejected(sim, loner.id, [order("AKNA", "BUY", 1)], ErrorCode.NO_BROKER)

    def test_not_started(self, sim: Simulator, sim_market: Market) -> None:
        """Test NOT_ACTIVE before the simulation starts."""
        self._assert_rejected(
            sim, sim_market.participant.id, [order("AKNA", "BUY", 1)], ErrorCode.NOT_ACTIVE
        )

    def test_ended(self, sim: Simulator, sim_market: Market) -> None:
        """Test NOT_ACTIVE after the simulation ends."""
        sim.day_control.start()
        sim.day_control.end()
        self._assert_rejected(
            sim, sim_market.participant.id, [order("AKNA", "BUY", 1)], ErrorCode.NOT_ACTIVE
        )

    def test_final_day_closed(self, sim: Simulator, sim_market: Market) -> None:
        """Test TRADING_CLOSED on the last day."""
        short = DayControlService(sim.storage, total_days=2)
        short.start()
        short.advance()
        self._assert_rejected(
            sim,
            sim_market.participant.id,
            [order("AKNA", "BUY", 1)],
            ErrorCode.TRADING_CLOSED,
        )

    def test_one_batch_per_day(self, sim: Simulator, sim_market: Market) -> None:
        """Test DAILY_LIMIT_REACHED for a second batch on the same day."""
        sim.day_control.start()
        sim.trading.execute_trades(sim_market.participant.id, [order("AKNA", "BUY", 1)])

        error = self._assert_rejected(
            sim,
            sim_market.participant.id,
            [order("AKNA", "BUY", 1)],
            ErrorCode.DAILY_LIMIT_REACHED,
        )
        assert error.category == ErrorCategory.STATE_CONFLICT

    def test_next_day_allows_new_batch(self, sim: Simulator, sim_market: Market) -> None:
        """Test that the limit resets when the day advances."""
        sim.day_control.start()
        sim.trading.execute_trades(sim_market.participant.id, [order("AKNA", "BUY", 1)])
        sim.day_control.advance()

        summary = sim.trading.execute_trades(
            sim_market.participant.id, [order("AKNA", "BUY", 1)]
        )
        assert summary.day == 2

    def test_unknown_stock(self, sim: Simulator, sim_market: Market) -> None:
        """Test INVALID_STOCK for a code with no company."""
        sim.day_control.start()
        self._assert_rejected(
            sim,
            sim_market.participant.id,
            [order("AKNA", "BUY", 1), order("ZZZZ", "BUY", 1)],
            ErrorCode.INVALID_STOCK,
        )

    def test_price_unavailable(self, sim: Simulator, sim_market: Market) -> None:
        """Test PRICE_UNAVAILABLE for a company without a price today."""
        sim.storage.add_company(Company(stock_code="NOPX", name="No Price"))
        sim.day_control.start()
        self._assert_rejected(
            sim,
            sim_market.participant.id,
            [order("NOPX", "BUY", 1)],
            ErrorCode.PRICE_UNAVAILABLE,
        )

    def test_sell_without_shares(self, sim: Simulator, sim_market: Market) -> None:
        """Test INSUFFICIENT_SHARES when nothing is held."""
        sim.day_control.start()
        self._assert_rejected(
            sim,
            sim_market.participant.id,
            [order("AKNA", "SELL", 1)],
            ErrorCode.INSUFFICIENT_SHARES,
        )

    def test_sell_checks_holding_before_batch(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that shares bought in the same batch cannot be sold."""
        sim.day_control.start()
        self._assert_rejected(
            sim,
            sim_market.participant.id,
            [order("AKNA", "BUY", 10), order("AKNA", "SELL", 10)],
            ErrorCode.INSUFFICIENT_SHARES,
        )

    def test_repeated_sells_cannot_overdraw(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that sells within one batch are checked cumulatively."""
        sim.day_control.start()
        sim.trading.execute_trades(sim_market.participant.id, [order("AKNA", "BUY", 10)])
        sim.day_control.advance()

        self._assert_rejected(
            sim,
            sim_market.participant.id,
            [order("AKNA", "SELL", 6), order("AKNA", "SELL", 6)],
            ErrorCode.INSUFFICIENT_SHARES,
        )

    def test_insufficient_balance_reports_shortfall(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test INSUFFICIENT_BALANCE with required, available and shortfall."""
        poor = add_participant(
            sim.storage, "poor", Decimal("100000.00"), broker_id=sim_market.broker.id
        )
        sim.day_control.start()

        error = self._assert_rejected(
            sim, poor.id, [order("AKNA", "BUY", 100)], ErrorCode.INSUFFICIENT_BALANCE
        )

        assert error.required == Decimal("502500.00")
        assert error.available == Decimal("100000.00")
        assert error.shortfall == Decimal("402500.00")

    def test_fee_alone_can_exceed_balance(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that the fee counts towards the balance check."""
        exact = add_participant(
            sim.storage, "exact", Decimal("5000.00"), broker_id=sim_market.broker.id
        )
        sim.day_control.start()

        self._assert_rejected(
            sim, exact.id, [order("AKNA", "BUY", 1)], ErrorCode.INSUFFICIENT_BALANCE
        )


class TestEngineWithoutCollaborators:
    """Tests for an engine built without cache or notifier."""

    def test_executes_without_optional_ports(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that cache and notifier are optional."""
        sim.day_control.start()
        engine = TradeExecutionEngine(sim.storage)

        summary = engine.execute_trades(sim_market.participant.id, [order("AKNA", "BUY", 2)])

        assert summary.ending_balance == Decimal("9989950.00")
