"""Participant-facing read models and broker assignment.

Portfolios are valued at the latest price published up to the current day.
Views are cached in a :class:`SnapshotCache` and invalidated by trades and
day transitions.
"""

import logging
from decimal import Decimal

from stock_sim.cache import (
    LEADERBOARD_KEY,
    SnapshotCache,
    portfolio_key,
)
from stock_sim.errors import ErrorCode, ParticipantError, TradeRejectedError
from stock_sim.ledger.models import (
    DailyBatchView,
    HoldingView,
    InterestPayment,
    LeaderboardEntry,
    Participant,
    PortfolioHolding,
    PortfolioView,
    TradeLine,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)
from stock_sim.ledger.money import HUNDRED, ZERO, to_money, to_percentage
from stock_sim.ledger.storage import LedgerStorage

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 200


def return_percentage(total_value: Decimal, starting_balance: Decimal) -> Decimal:
    """Total return as a percentage of the starting balance, to 4 dp."""
    if starting_balance <= 0:
        return ZERO
    return to_percentage((total_value - starting_balance) / starting_balance * HUNDRED)


class PortfolioService:
    """Read-side queries over the ledger."""

    def __init__(
        self,
        storage: LedgerStorage,
        *,
        cache: SnapshotCache | None = None,
        cache_ttl_seconds: int = 60,
        leaderboard_ttl_seconds: int = 300,
    ):
        self.storage = storage
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.leaderboard_ttl_seconds = leaderboard_ttl_seconds

    def _current_day(self) -> int:
        control = self.storage.get_day_control()
        return control.current_day if control else 0

    def _require_participant(self, participant_id: str) -> Participant:
        participant = self.storage.get_participant(participant_id)
        if participant is None:
            raise ParticipantError(
                ErrorCode.PARTICIPANT_NOT_FOUND, f"Participant {participant_id} not found"
            )
        return participant

    # ------------------------------------------------------------------
    # Broker assignment
    # ------------------------------------------------------------------

    def assign_broker(self, participant_id: str, broker_id: str) -> Participant:
        """Give a participant their broker; the choice is final until reset.

        Raises:
            ParticipantError: PARTICIPANT_NOT_FOUND, BROKER_NOT_FOUND or
                BROKER_ALREADY_ASSIGNED.
        """
        with self.storage.transaction() as conn:
            participant = self.storage.get_participant(participant_id, conn)
            if participant is None:
                raise ParticipantError(
                    ErrorCode.PARTICIPANT_NOT_FOUND, f"Participant {participant_id} not found"
                )
            broker = self.storage.get_broker(broker_id, conn)
            if broker is None or not broker.is_active:
                raise ParticipantError(
                    ErrorCode.BROKER_NOT_FOUND, f"Broker {broker_id} not found or inactive"
                )
            if participant.broker_id is not None:
                raise ParticipantError(
                    ErrorCode.BROKER_ALREADY_ASSIGNED,
                    f"{participant.username} already uses a broker",
                )
            self.storage.set_participant_broker(conn, participant_id, broker_id)

        logger.info(f"Assigned broker {broker.code} to {participant.username}")
        if self.cache is not None:
            self.cache.delete(portfolio_key(participant_id))
        return participant.model_copy(update={"broker_id": broker_id})

    # ------------------------------------------------------------------
    # Portfolio and leaderboard
    # ------------------------------------------------------------------

    def get_portfolio(self, participant_id: str) -> PortfolioView:
        """Value a participant's holdings at the latest known prices."""
        key = portfolio_key(participant_id)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        participant = self._require_participant(participant_id)
        day = self._current_day()
        prices = self.storage.get_latest_prices_up_to(day)
        companies = {c.id: c for c in self.storage.list_companies()}

        views: list[HoldingView] = []
        for holding in self.storage.get_holdings(participant_id).values():
            company = companies.get(holding.company_id)
            price = prices.get(holding.company_id, ZERO)
            market_value = to_money(price * holding.quantity)
            cost = to_money(holding.average_buy_price * holding.quantity)
            views.append(
                HoldingView(
                    stock_code=company.stock_code if company else holding.company_id,
                    company_name=company.name if company else "",
                    quantity=holding.quantity,
                    average_buy_price=holding.average_buy_price,
                    current_price=price,
                    market_value=market_value,
                    unrealized_pnl=market_value - cost,
                )
            )
        views.sort(key=lambda v: v.stock_code)

        investment = sum((v.market_value for v in views), start=ZERO)
        total = participant.current_balance + investment
        view = PortfolioView(
            participant_id=participant_id,
            day=day,
            holdings=views,
            cash_balance=participant.current_balance,
            investment_value=investment,
            total_value=total,
            total_return=total - participant.starting_balance,
            return_percentage=return_percentage(total, participant.starting_balance),
        )
        if self.cache is not None:
            self.cache.set(key, view, self.cache_ttl_seconds)
        return view

    def get_leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        """Active participants ranked by total value.

        Args:
            limit: Number of entries to return.

        Returns:
            Entries ranked from 1, highest total value first.
        """
        if self.cache is not None:
            cached = self.cache.get(LEADERBOARD_KEY)
            if cached is not None:
                return cached[:limit]

        prices = self.storage.get_latest_prices_up_to(self._current_day())
        holdings_by_participant = self.storage.get_all_holdings()

        scored: list[tuple[Participant, Decimal]] = []
        for participant in self.storage.list_participants(active_only=True):
            holdings = holdings_by_participant.get(participant.id, [])
            total = participant.current_balance + self._value(holdings, prices)
            scored.append((participant, total))
        scored.sort(key=lambda item: (-item[1], item[0].username))

        board = [
            LeaderboardEntry(
                rank=rank,
                participant_id=participant.id,
                team_name=participant.display_name,
                portfolio_value=total,
                return_percentage=return_percentage(total, participant.starting_balance),
            )
            for rank, (participant, total) in enumerate(scored, start=1)
        ]
        if self.cache is not None:
            self.cache.set(LEADERBOARD_KEY, board, self.leaderboard_ttl_seconds)
        return board[:limit]

    @staticmethod
    def _value(holdings: list[PortfolioHolding], prices: dict[str, Decimal]) -> Decimal:
        return sum(
            (to_money(prices.get(h.company_id, ZERO) * h.quantity) for h in holdings),
            start=ZERO,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_transaction_history(
        self,
        participant_id: str,
        day: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TransactionRecord]:
        """Transactions of a participant, newest first.

        Raises:
            TradeRejectedError: INVALID_ORDER if paging is out of range.
        """
        if not 1 <= limit <= MAX_HISTORY_LIMIT or offset < 0:
            raise TradeRejectedError(
                ErrorCode.INVALID_ORDER,
                f"limit must be 1..{MAX_HISTORY_LIMIT} and offset >= 0",
            )
        return self.storage.list_transactions(
            participant_id=participant_id, day_number=day, limit=limit, offset=offset
        )

    def get_today_summary(self, participant_id: str) -> DailyBatchView | None:
        """The batch a participant completed on the current day, if any."""
        day = self._current_day()
        if day == 0:
            return None
        rows = [
            r
            for r in self.storage.list_transactions(participant_id=participant_id, day_number=day)
            if r.status == TransactionStatus.COMPLETED
        ]
        if not rows:
            return None

        codes = {c.id: c.stock_code for c in self.storage.list_companies()}
        rows.sort(key=lambda r: (r.timestamp, r.id))

        def line(record: TransactionRecord) -> TradeLine:
            return TradeLine(
                stock_code=codes.get(record.company_id, record.company_id),
                quantity=record.quantity,
                price=record.price_per_share,
                total=record.total_amount,
            )

        return DailyBatchView(
            day=day,
            total_transactions=len(rows),
            buys=[line(r) for r in rows if r.transaction_type == TransactionType.BUY],
            sells=[line(r) for r in rows if r.transaction_type == TransactionType.SELL],
            broker_fee=rows[0].broker_fee,
            balance_after=rows[0].balance_after,
        )

    def get_interest_payments(self, participant_id: str) -> list[InterestPayment]:
        return self.storage.list_interest_payments(participant_id=participant_id)
