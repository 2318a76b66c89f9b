"""Tests for portfolio valuation, leaderboard, history and broker assignment."""

from decimal import Decimal

import pytest

from stock_sim.app import Simulator
from stock_sim.errors import ErrorCode, ParticipantError, TradeRejectedError
from stock_sim.ledger.models import Broker, TransactionType
from stock_sim.trading.portfolio import MAX_HISTORY_LIMIT, return_percentage

from conftest import FakeClock, Market, add_participant


def trade(sim: Simulator, participant_id: str, *orders: tuple[str, str, int]) -> None:
    sim.trading.execute_trades(
        participant_id,
        [{"stock_code": c, "type": side, "quantity": q} for c, side, q in orders],
    )


class TestReturnPercentage:
    """Tests for the return helper."""

    def test_gain(self) -> None:
        assert return_percentage(Decimal("11000"), Decimal("10000")) == Decimal("10.0000")

    def test_zero_start(self) -> None:
        assert return_percentage(Decimal("5"), Decimal("0")) == Decimal("0")

    def test_returns_decimal(self) -> None:
        """Test that the percentage stays in exact decimal arithmetic."""
        result = return_percentage(Decimal("10000197.00"), Decimal("10000000.00"))
        assert isinstance(result, Decimal)
        assert result == Decimal("0.0020")


class TestPortfolio:
    """Tests for valuing a participant's holdings."""

    def test_cash_only_portfolio(self, sim: Simulator, sim_market: Market) -> None:
        """Test a fresh participant before the simulation starts."""
        view = sim.portfolio.get_portfolio(sim_market.participant.id)

        assert view.day == 0
        assert view.holdings == []
        assert view.cash_balance == Decimal("10000000.00")
        assert view.total_value == Decimal("10000000.00")
        assert view.total_return == Decimal("0")
        assert view.return_percentage == Decimal("0")

    def test_values_at_latest_price(self, sim: Simulator, sim_market: Market) -> None:
        """Test unrealized P&L after KJNL rises from 2,010 to 2,020."""
        sim.day_control.start()
        trade(sim, sim_market.participant.id, ("KJNL", "BUY", 100))
        sim.day_control.advance()

        view = sim.portfolio.get_portfolio(sim_market.participant.id)

        [holding] = view.holdings
        assert holding.stock_code == "KJNL"
        assert holding.company_name == "Kayjana Logistik"
        assert holding.average_buy_price == Decimal("2010.00")
        assert holding.current_price == Decimal("2020.00")
        assert holding.market_value == Decimal("202000.00")
        assert holding.unrealized_pnl == Decimal("1000.00")
        # 10,000,000 - 201,000 - 1,005 fee + 202 interest
        assert view.cash_balance == Decimal("9798197.00")
        assert view.investment_value == Decimal("202000.00")
        assert view.total_value == Decimal("10000197.00")
        assert view.total_return == Decimal("197.00")

    def test_future_prices_are_not_used(self, sim: Simulator, sim_market: Market) -> None:
        """Test that valuation never looks past the current day."""
        sim.day_control.start()
        trade(sim, sim_market.participant.id, ("KJNL", "BUY", 10))

        view = sim.portfolio.get_portfolio(sim_market.participant.id)

        assert view.holdings[0].current_price == Decimal("2010.00")

    def test_unknown_participant(self, sim: Simulator) -> None:
        """Test PARTICIPANT_NOT_FOUND for a missing id."""
        with pytest.raises(ParticipantError) as exc_info:
            sim.portfolio.get_portfolio("ghost")
        assert exc_info.value.code == ErrorCode.PARTICIPANT_NOT_FOUND

    def test_view_is_cached_until_invalidated(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that a direct ledger write is hidden until a trade invalidates."""
        first = sim.portfolio.get_portfolio(sim_market.participant.id)
        with sim.storage.transaction() as conn:
            sim.storage.update_balance(
                conn,
                sim_market.participant.id,
                Decimal("10000000.00"),
                Decimal("9000000.00"),
            )

        assert sim.portfolio.get_portfolio(sim_market.participant.id) is first

        sim.cache.clear()
        assert sim.portfolio.get_portfolio(sim_market.participant.id).cash_balance == Decimal(
            "9000000.00"
        )


class TestLeaderboard:
    """Tests for ranking participants."""

    def test_ranks_by_total_value(self, sim: Simulator, sim_market: Market) -> None:
        """Test that the ranking follows the price rise."""
        add_participant(sim.storage, "beta", broker_id=sim_market.free_broker.id)
        add_participant(sim.storage, "gamma", Decimal("5000000.00"))
        sim.day_control.start()
        trade(sim, sim_market.participant.id, ("KJNL", "BUY", 100))

        day_one = sim.portfolio.get_leaderboard()
        assert [e.team_name for e in day_one] == ["Team beta", "Team alpha", "Team gamma"]
        assert [e.rank for e in day_one] == [1, 2, 3]
        assert day_one[1].portfolio_value == Decimal("9998995.00")

        sim.day_control.advance()

        day_two = sim.portfolio.get_leaderboard()
        assert [e.team_name for e in day_two] == ["Team alpha", "Team beta", "Team gamma"]
        assert day_two[0].portfolio_value == Decimal("10000197.00")
        assert day_two[0].return_percentage == Decimal("0.0020")

    def test_ties_break_on_username(self, sim: Simulator, sim_market: Market) -> None:
        """Test a stable order for equal totals."""
        add_participant(sim.storage, "zulu")
        add_participant(sim.storage, "bravo")

        board = sim.portfolio.get_leaderboard()

        assert [e.team_name for e in board] == ["Team alpha", "Team bravo", "Team zulu"]

    def test_limit(self, sim: Simulator, sim_market: Market) -> None:
        """Test that only the top entries are returned."""
        for name in ("b", "c", "d"):
            add_participant(sim.storage, name)

        assert len(sim.portfolio.get_leaderboard(limit=2)) == 2
        assert len(sim.portfolio.get_leaderboard(limit=10)) == 4

    def test_inactive_participants_excluded(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that deactivated teams are not ranked."""
        retired = add_participant(sim.storage, "retired")
        sim.storage.add_participant(
            retired.model_copy(update={"id": "retired-2", "username": "gone", "is_active": False})
        )

        names = [e.team_name for e in sim.portfolio.get_leaderboard()]

        assert "Team gone" not in names
        assert "Team retired" in names


class TestHistory:
    """Tests for transaction history and the daily summary."""

    def test_newest_first_with_paging(
        self, sim: Simulator, sim_market: Market, clock: FakeClock
    ) -> None:
        """Test ordering, day filter and offset."""
        sim.day_control.start()
        trade(sim, sim_market.participant.id, ("AKNA", "BUY", 1))
        clock.advance(minutes=6)
        sim.day_control.advance()
        trade(sim, sim_market.participant.id, ("KJNL", "BUY", 2))

        history = sim.portfolio.get_transaction_history(sim_market.participant.id)
        assert [r.day_number for r in history] == [2, 1]

        [older] = sim.portfolio.get_transaction_history(
            sim_market.participant.id, limit=1, offset=1
        )
        assert older.day_number == 1

        [day_two] = sim.portfolio.get_transaction_history(sim_market.participant.id, day=2)
        assert day_two.quantity == 2

    @pytest.mark.parametrize(
        ("limit", "offset"), [(0, 0), (MAX_HISTORY_LIMIT + 1, 0), (10, -1)]
    )
    def test_paging_bounds(
        self, sim: Simulator, sim_market: Market, limit: int, offset: int
    ) -> None:
        """Test INVALID_ORDER for out-of-range paging."""
        with pytest.raises(TradeRejectedError) as exc_info:
            sim.portfolio.get_transaction_history(
                sim_market.participant.id, limit=limit, offset=offset
            )
        assert exc_info.value.code == ErrorCode.INVALID_ORDER

    def test_today_summary(self, sim: Simulator, sim_market: Market) -> None:
        """Test the summary of the batch completed today."""
        assert sim.portfolio.get_today_summary(sim_market.participant.id) is None

        sim.day_control.start()
        assert sim.portfolio.get_today_summary(sim_market.participant.id) is None

        trade(
            sim,
            sim_market.participant.id,
            ("AKNA", "BUY", 100),
            ("KJNL", "BUY", 50),
        )
        summary = sim.portfolio.get_today_summary(sim_market.participant.id)

        assert summary.day == 1
        assert summary.total_transactions == 2
        assert sorted(line.stock_code for line in summary.buys) == ["AKNA", "KJNL"]
        assert summary.sells == []
        assert summary.broker_fee == Decimal("3002.50")
        assert summary.balance_after == Decimal("9396497.50")

        sim.day_control.advance()
        assert sim.portfolio.get_today_summary(sim_market.participant.id) is None

    def test_interest_payments(self, sim: Simulator, sim_market: Market) -> None:
        """Test the participant's interest ledger."""
        sim.day_control.start()
        trade(sim, sim_market.participant.id, ("AKNA", "BUY", 100))
        sim.day_control.advance()

        [payment] = sim.portfolio.get_interest_payments(sim_market.participant.id)

        assert payment.interest_amount == Decimal("500.00")
        assert payment.broker_id == sim_market.broker.id


class TestAssignBroker:
    """Tests for choosing a broker."""

    def test_assigns_once(self, sim: Simulator, sim_market: Market) -> None:
        """Test a first assignment and rejection of a second."""
        loner = add_participant(sim.storage, "loner")

        updated = sim.portfolio.assign_broker(loner.id, sim_market.broker.id)

        assert updated.broker_id == sim_market.broker.id
        assert sim.storage.get_participant(loner.id).broker_id == sim_market.broker.id

        with pytest.raises(ParticipantError) as exc_info:
            sim.portfolio.assign_broker(loner.id, sim_market.free_broker.id)
        assert exc_info.value.code == ErrorCode.BROKER_ALREADY_ASSIGNED

    def test_assigned_participant_can_trade(
        self, sim: Simulator, sim_market: Market
    ) -> None:
        """Test that assignment unlocks trading."""
        loner = add_participant(sim.storage, "loner")
        sim.portfolio.assign_broker(loner.id, sim_market.free_broker.id)
        sim.day_control.start()

        trade(sim, loner.id, ("AKNA", "BUY", 1))

        [row] = sim.storage.list_transactions(participant_id=loner.id)
        assert row.transaction_type == TransactionType.BUY
        assert row.broker_id == sim_market.free_broker.id

    def test_unknown_participant(self, sim: Simulator, sim_market: Market) -> None:
        with pytest.raises(ParticipantError) as exc_info:
            sim.portfolio.assign_broker("ghost", sim_market.broker.id)
        assert exc_info.value.code == ErrorCode.PARTICIPANT_NOT_FOUND

    def test_unknown_or_inactive_broker(self, sim: Simulator, sim_market: Market) -> None:
        """Test BROKER_NOT_FOUND for missing and retired brokers."""
        loner = add_participant(sim.storage, "loner")
        retired = sim.storage.add_broker(
            Broker(code="RT", name="Retired", fee_percentage=Decimal("1"), is_active=False)
        )

        for broker_id in ("ghost", retired.id):
            with pytest.raises(ParticipantError) as exc_info:
                sim.portfolio.assign_broker(loner.id, broker_id)
            assert exc_info.value.code == ErrorCode.BROKER_NOT_FOUND
        assert sim.storage.get_participant(loner.id).broker_id is None
