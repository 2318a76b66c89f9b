"""Trade execution engine.

A participant submits one all-or-nothing batch of orders per day. Every
precondition is checked inside the same transaction that applies the batch,
so a concurrent day change or a second batch cannot slip between the check
and the write.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from stock_sim.cache import LEADERBOARD_KEY, SnapshotCache, portfolio_key
from stock_sim.errors import ErrorCode, TradeRejectedError
from stock_sim.ledger.models import (
    BatchSummary,
    Company,
    DayControl,
    Participant,
    PortfolioHolding,
    TradeLine,
    TradeOrder,
    TransactionRecord,
    TransactionType,
)
from stock_sim.ledger.money import ZERO, percentage_of, to_money, weighted_average_cost
from stock_sim.ledger.storage import Connection, LedgerStorage
from stock_sim.notifications import NotificationKind, Notifier, safe_notify

logger = logging.getLogger(__name__)

OrderInput = TradeOrder | Mapping[str, Any]


class OrderValidator:
    """Shape checks that need no ledger state."""

    @staticmethod
    def parse_orders(orders: Sequence[OrderInput]) -> list[TradeOrder]:
        """Coerce raw orders into :class:`TradeOrder` objects.

        Raises:
            TradeRejectedError: INVALID_ORDER for an empty batch or a
                malformed order.
        """
        if not orders:
            raise TradeRejectedError(ErrorCode.INVALID_ORDER, "At least one order is required")

        parsed: list[TradeOrder] = []
        for index, order in enumerate(orders, start=1):
            if isinstance(order, TradeOrder):
                parsed.append(order)
                continue
            try:
                parsed.append(TradeOrder.model_validate(order))
            except ValidationError as e:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                )
                raise TradeRejectedError(
                    ErrorCode.INVALID_ORDER, f"Order {index} is invalid: {problems}"
                ) from e
        return parsed


class TradeExecutionEngine:
    """Validates and applies trade batches against the current day's prices."""

    def __init__(
        self,
        storage: LedgerStorage,
        *,
        notifier: Notifier | None = None,
        cache: SnapshotCache | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.notifier = notifier
        self.cache = cache
        self.clock = clock

    def execute_trades(
        self, participant_id: str, orders: Sequence[OrderInput]
    ) -> BatchSummary:
        """Execute a participant's batch for the current day.

        Args:
            participant_id: Participant submitting the batch.
            orders: Orders with ``stock_code``, ``type`` and ``quantity``.

        Returns:
            Summary of the committed batch.

        Raises:
            TradeRejectedError: If any precondition fails; nothing is written.
            ConcurrentModificationError: If a concurrent writer changed the
                participant's balance first.
        """
        parsed = OrderValidator.parse_orders(orders)
        now = self.clock()

        with self.storage.transaction() as conn:
            participant = self._load_participant(conn, participant_id)
            broker = self.storage.get_broker(participant.broker_id, conn)
            if broker is None:
                raise TradeRejectedError(ErrorCode.NO_BROKER, "Participant has no broker")

            control = self.storage.get_day_control(conn)
            day = self._check_trading_day(control)

            if self.storage.count_completed_transactions(participant.id, day, conn) > 0:
                raise TradeRejectedError(
                    ErrorCode.DAILY_LIMIT_REACHED,
                    f"A batch was already completed on day {day}",
                )

            companies = self._resolve_companies(conn, parsed)
            prices = self._resolve_prices(conn, companies, day)
            holdings = self.storage.get_holdings(participant.id, conn)
            self._check_sells(parsed, companies, holdings)

            buys: list[TradeLine] = []
            sells: list[TradeLine] = []
            amounts: list[Decimal] = []
            for order in parsed:
                price = prices[order.stock_code]
                amount = to_money(price * order.quantity)
                amounts.append(amount)
                line = TradeLine(
                    stock_code=order.stock_code,
                    quantity=order.quantity,
                    price=price,
                    total=amount,
                )
                (buys if order.type == TransactionType.BUY else sells).append(line)

            total_buy = sum((line.total for line in buys), start=ZERO)
            total_sell = sum((line.total for line in sells), start=ZERO)
            fee = percentage_of(total_buy + total_sell, broker.fee_percentage)
            starting = participant.current_balance
            ending = to_money(starting - total_buy + total_sell - fee)
            if ending < 0:
                required = to_money(total_buy + fee - total_sell)
                raise TradeRejectedError(
                    ErrorCode.INSUFFICIENT_BALANCE,
                    f"Batch needs {required} but only {starting} is available "
                    f"(short by {required - starting})",
                    required=required,
                    available=starting,
                )

            new_holdings = self._plan_holdings(parsed, amounts, companies, holdings, participant.id, now)

            self.storage.update_balance(conn, participant.id, starting, ending)
            for holding in new_holdings.values():
                self.storage.save_holding(conn, holding)

            records = [
                TransactionRecord(
                    participant_id=participant.id,
                    company_id=companies[order.stock_code].id,
                    broker_id=broker.id,
                    day_number=day,
                    transaction_type=order.type,
                    quantity=order.quantity,
                    price_per_share=prices[order.stock_code],
                    total_amount=amount,
                    broker_fee=fee,
                    balance_before=starting,
                    balance_after=ending,
                    timestamp=now,
                )
                for order, amount in zip(parsed, amounts)
            ]
            self.storage.insert_transactions(conn, records)

        logger.info(
            f"Batch for {participant.username} on day {day}: "
            f"{len(buys)} buys, {len(sells)} sells, fee {fee}, balance {starting} -> {ending}",
            extra={
                "extra_fields": {
                    "participant_id": participant.id,
                    "day": day,
                    "orders": len(parsed),
                }
            },
        )

        if self.cache is not None:
            self.cache.delete(portfolio_key(participant.id), LEADERBOARD_KEY)
        safe_notify(
            self.notifier,
            NotificationKind.TRANSACTION_COMPLETED,
            "Transaction completed",
            f"{participant.display_name} completed {len(parsed)} orders on day {day}.",
        )

        return BatchSummary(
            participant_id=participant.id,
            day=day,
            starting_balance=starting,
            broker_fee=fee,
            ending_balance=ending,
            buys=buys,
            sells=sells,
            transaction_ids=[r.id for r in records],
        )

    def _load_participant(self, conn: Connection, participant_id: str) -> Participant:
        participant = self.storage.get_participant(participant_id, conn)
        if participant is None or not participant.is_active:
            raise TradeRejectedError(
                ErrorCode.PARTICIPANT_NOT_FOUND, f"Participant {participant_id} not found"
            )
        if participant.broker_id is None:
            raise TradeRejectedError(ErrorCode.NO_BROKER, "Choose a broker before trading")
        return participant

    @staticmethod
    def _check_trading_day(control: DayControl | None) -> int:
        if control is None or not control.is_active or control.current_day <= 0:
            raise TradeRejectedError(ErrorCode.NOT_ACTIVE, "Simulation is not active")
        if control.current_day >= control.total_days:
            raise TradeRejectedError(
                ErrorCode.TRADING_CLOSED,
                f"Trading is closed on the final day ({control.total_days})",
            )
        return control.current_day

    def _resolve_companies(
        self, conn: Connection, orders: list[TradeOrder]
    ) -> dict[str, Company]:
        companies = self.storage.get_companies_by_codes(
            (order.stock_code for order in orders), conn
        )
        for order in orders:
            if order.stock_code not in companies:
                raise TradeRejectedError(
                    ErrorCode.INVALID_STOCK, f"Unknown stock code {order.stock_code}"
                )
        return companies

    def _resolve_prices(
        self, conn: Connection, companies: dict[str, Company], day: int
    ) -> dict[str, Decimal]:
        rows = self.storage.get_prices_for_day(
            (company.id for company in companies.values()), day, conn
        )
        prices: dict[str, Decimal] = {}
        for code, company in sorted(companies.items()):
            row = rows.get(company.id)
            if row is None or not row.is_active:
                raise TradeRejectedError(
                    ErrorCode.PRICE_UNAVAILABLE, f"No active price for {code} on day {day}"
                )
            prices[code] = row.price
        return prices

    @staticmethod
    def _check_sells(
        orders: list[TradeOrder],
        companies: dict[str, Company],
        holdings: dict[str, PortfolioHolding],
    ) -> None:
        for order in orders:
            if order.type != TransactionType.SELL:
                continue
            holding = holdings.get(companies[order.stock_code].id)
            owned = holding.quantity if holding else 0
            if order.quantity > owned:
                raise TradeRejectedError(
                    ErrorCode.INSUFFICIENT_SHARES,
                    f"Cannot sell {order.quantity} {order.stock_code}, only {owned} held",
                )

    @staticmethod
    def _plan_holdings(
        orders: list[TradeOrder],
        amounts: list[Decimal],
        companies: dict[str, Company],
        holdings: dict[str, PortfolioHolding],
        participant_id: str,
        now: datetime,
    ) -> dict[str, PortfolioHolding]:
        """Apply the orders in sequence to in-memory holdings.

        Returns:
            Final holding per touched company; zero quantity means delete.

        Raises:
            TradeRejectedError: INSUFFICIENT_SHARES if the running quantity
                would go negative.
        """
        planned: dict[str, PortfolioHolding] = {}
        for order, amount in zip(orders, amounts):
            company_id = companies[order.stock_code].id
            current = planned.get(company_id) or holdings.get(company_id)
            quantity = current.quantity if current else 0
            average = current.average_buy_price if current else ZERO

            if order.type == TransactionType.BUY:
                average = weighted_average_cost(average, quantity, amount, order.quantity)
                quantity += order.quantity
            else:
                if order.quantity > quantity:
                    raise TradeRejectedError(
                        ErrorCode.INSUFFICIENT_SHARES,
                        f"Selling {order.quantity} {order.stock_code} exceeds the "
                        f"{quantity} left in this batch",
                    )
                quantity -= order.quantity

            planned[company_id] = PortfolioHolding(
                participant_id=participant_id,
                company_id=company_id,
                quantity=quantity,
                average_buy_price=average,
                last_updated=now,
            )
        return planned
