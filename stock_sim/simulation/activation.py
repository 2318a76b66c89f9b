"""Price and report activation for a simulated day."""

import logging

from stock_sim.ledger.models import ActivationResult
from stock_sim.ledger.storage import Connection, LedgerStorage

logger = logging.getLogger(__name__)


class PriceActivator:
    """Make a day's prices and reports visible to participants.

    Rows dated on the day become active; rows dated after it are switched
    off so a restart from day 1 never leaks future prices.
    """

    def __init__(self, storage: LedgerStorage):
        self.storage = storage

    def activate(self, conn: Connection, day: int) -> ActivationResult:
        """Activate rows for ``day`` inside the caller's transaction.

        Args:
            conn: Connection with an open transaction.
            day: Day that just became current.

        Returns:
            Counts of rows switched on and off.
        """
        schema = self.storage.SCHEMA

        prices_on = conn.execute(
            f"""
            UPDATE {schema}.stock_prices SET is_active = TRUE
            WHERE day_number = ?
            RETURNING company_id
            """,
            [day],
        ).fetchall()
        reports_on = conn.execute(
            f"""
            UPDATE {schema}.financial_reports SET is_active = TRUE
            WHERE day_number = ?
            RETURNING id
            """,
            [day],
        ).fetchall()
        prices_off = conn.execute(
            f"""
            UPDATE {schema}.stock_prices SET is_active = FALSE
            WHERE day_number > ? AND is_active
            RETURNING company_id
            """,
            [day],
        ).fetchall()
        reports_off = conn.execute(
            f"""
            UPDATE {schema}.financial_reports SET is_active = FALSE
            WHERE day_number > ? AND is_active
            RETURNING id
            """,
            [day],
        ).fetchall()

        result = ActivationResult(
            day=day,
            prices_activated=len(prices_on),
            reports_activated=len(reports_on),
            prices_deactivated=len(prices_off),
            reports_deactivated=len(reports_off),
        )
        logger.info(
            f"Activated day {day}: {result.prices_activated} prices, "
            f"{result.reports_activated} reports"
        )
        if not prices_on:
            logger.warning(f"No prices loaded for day {day}")
        return result
