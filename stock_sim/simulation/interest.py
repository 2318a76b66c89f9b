"""Daily interest on stock holdings.

Interest is paid on the value of a participant's shares, never on cash, at
the rate of the participant's broker. Credited interest becomes cash, so the
effect compounds through later purchases.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal

from stock_sim.ledger.models import InterestPayment, PortfolioHolding
from stock_sim.ledger.money import ZERO, percentage_of, to_money
from stock_sim.ledger.storage import Connection, LedgerStorage

logger = logging.getLogger(__name__)


def investment_value(
    holdings: Iterable[PortfolioHolding], prices: Mapping[str, Decimal]
) -> Decimal:
    """Value holdings at the given prices.

    Holdings without a price contribute nothing.

    Args:
        holdings: Open positions.
        prices: Price per company id.

    Returns:
        Total stock value at money precision.
    """
    total = ZERO
    for holding in holdings:
        price = prices.get(holding.company_id)
        if price is None or holding.quantity <= 0:
            continue
        total += to_money(price * holding.quantity)
    return total


class InterestEngine:
    """Credits interest for the day that just became active."""

    def __init__(self, storage: LedgerStorage):
        self.storage = storage

    def credit(
        self, conn: Connection, day: int, now: datetime | None = None
    ) -> list[InterestPayment]:
        """Credit interest to every eligible participant.

        Must run inside the transaction that advanced to ``day``; calling it
        anywhere else would allow the same day to be credited twice.

        Args:
            conn: Connection with an open transaction.
            day: The new current day.
            now: Timestamp for the payment rows.

        Returns:
            The payment rows written, one per credited participant.
        """
        now = now or datetime.now()
        prices = self.storage.get_latest_active_prices(conn)
        payments: list[InterestPayment] = []

        for participant, broker in self.storage.list_interest_candidates(conn):
            holdings = self.storage.get_holdings(participant.id, conn).values()
            value = investment_value(holdings, prices)
            if value <= 0:
                continue

            amount = percentage_of(value, broker.interest_rate)
            if amount <= 0:
                continue

            before = participant.current_balance
            after = to_money(before + amount)
            self.storage.update_balance(conn, participant.id, before, after)
            payments.append(
                InterestPayment(
                    participant_id=participant.id,
                    broker_id=broker.id,
                    day_number=day,
                    portfolio_value=value,
                    interest_rate=broker.interest_rate,
                    interest_amount=amount,
                    balance_before=before,
                    balance_after=after,
                    created_at=now,
                )
            )

        self.storage.insert_interest_payments(conn, payments)
        total = sum((p.interest_amount for p in payments), start=ZERO)
        logger.info(
            f"Interest for day {day}: {len(payments)} payments, total {total}",
            extra={"extra_fields": {"day": day, "payments": len(payments)}},
        )
        return payments
