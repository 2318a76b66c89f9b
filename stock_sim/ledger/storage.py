"""DuckDB storage layer for the competition ledger.

This module owns the schema and every SQL statement touching ledger rows.
Multi-statement mutations run inside :meth:`LedgerStorage.transaction`, which
commits on success and rolls back on any exception. Read and write helpers
accept an optional ``conn`` so callers can compose them inside one
transaction; without one they open a short-lived connection of their own.
"""

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import duckdb
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stock_sim.errors import ConcurrentModificationError
from stock_sim.ledger.models import (
    DAY_CONTROL_ID,
    Broker,
    Company,
    DayControl,
    FinancialReport,
    InterestPayment,
    Participant,
    PortfolioHolding,
    StockPrice,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)

Connection = duckdb.DuckDBPyConnection


def _dec(value: Any) -> Decimal:
    return Decimal(str(value))


class LedgerStorage:
    """DuckDB storage for simulation, reference and ledger data.

    Note: SQL queries use f-strings with the SCHEMA constant (not user input).
    """

    SCHEMA = "ledger"  # noqa: S608 - constant, not user input

    def __init__(self, db_path: str | Path = "data/competition.duckdb") -> None:
        """Initialize storage and create the schema if needed.

        Args:
            db_path: Path to the DuckDB database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @retry(
        retry=retry_if_exception_type(duckdb.IOException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _get_connection(self) -> Connection:
        """Open a connection, retrying while another process holds the lock."""
        return duckdb.connect(str(self.db_path))

    @contextmanager
    def _use(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self._get_connection() as own:
            yield own

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Run a block atomically.

        Yields:
            A connection with an open transaction.

        Raises:
            ConcurrentModificationError: If DuckDB aborts the transaction
                because another writer touched the same rows.
        """
        conn = self._get_connection()
        try:
            conn.begin()
            try:
                yield conn
                conn.commit()
            except duckdb.TransactionException as exc:
                self._rollback_quietly(conn)
                raise ConcurrentModificationError(
                    message=f"Transaction aborted by a concurrent writer: {exc}"
                ) from exc
            except BaseException:
                self._rollback_quietly(conn)
                raise
        finally:
            conn.close()

    @staticmethod
    def _rollback_quietly(conn: Connection) -> None:
        # A failed COMMIT has already ended the transaction
        try:
            conn.rollback()
        except duckdb.Error as exc:
            logger.debug(f"Rollback skipped: {exc}")

    def _init_schema(self) -> None:
        """Create the ledger schema and tables."""
        with self._get_connection() as conn:
            conn.execute(f"CREATE SCHEMA IF NOT EXISTS {self.SCHEMA}")

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.day_control (
                    id VARCHAR PRIMARY KEY,
                    current_day INTEGER NOT NULL,
                    total_days INTEGER NOT NULL,
                    is_active BOOLEAN NOT NULL,
                    is_paused BOOLEAN NOT NULL DEFAULT FALSE,
                    paused_remaining_ms BIGINT,
                    paused_at TIMESTAMP,
                    simulation_started_at TIMESTAMP,
                    last_day_change_at TIMESTAMP,
                    version INTEGER NOT NULL DEFAULT 0
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.settings (
                    key VARCHAR PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    description VARCHAR,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.companies (
                    id VARCHAR PRIMARY KEY,
                    stock_code VARCHAR NOT NULL UNIQUE,
                    name VARCHAR NOT NULL,
                    sector VARCHAR
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.stock_prices (
                    company_id VARCHAR NOT NULL,
                    day_number INTEGER NOT NULL,
                    price DECIMAL(18, 2) NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT FALSE,
                    PRIMARY KEY (company_id, day_number)
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.financial_reports (
                    id VARCHAR PRIMARY KEY,
                    company_id VARCHAR NOT NULL,
                    day_number INTEGER NOT NULL,
                    title VARCHAR NOT NULL,
                    body TEXT,
                    is_active BOOLEAN NOT NULL DEFAULT FALSE
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.brokers (
                    id VARCHAR PRIMARY KEY,
                    code VARCHAR NOT NULL UNIQUE,
                    name VARCHAR NOT NULL,
                    fee_percentage DECIMAL(9, 4) NOT NULL,
                    interest_rate DECIMAL(9, 4) NOT NULL DEFAULT 0,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.participants (
                    id VARCHAR PRIMARY KEY,
                    username VARCHAR NOT NULL UNIQUE,
                    team_name VARCHAR,
                    starting_balance DECIMAL(18, 2) NOT NULL,
                    current_balance DECIMAL(18, 2) NOT NULL,
                    broker_id VARCHAR,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.portfolio_holdings (
                    participant_id VARCHAR NOT NULL,
                    company_id VARCHAR NOT NULL,
                    quantity INTEGER NOT NULL CHECK (quantity >= 0),
                    average_buy_price DECIMAL(18, 2) NOT NULL,
                    last_updated TIMESTAMP NOT NULL,
                    PRIMARY KEY (participant_id, company_id)
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.transactions (
                    id VARCHAR PRIMARY KEY,
                    participant_id VARCHAR NOT NULL,
                    company_id VARCHAR NOT NULL,
                    broker_id VARCHAR NOT NULL,
                    day_number INTEGER NOT NULL,
                    transaction_type VARCHAR NOT NULL,
                    quantity INTEGER NOT NULL,
                    price_per_share DECIMAL(18, 2) NOT NULL,
                    total_amount DECIMAL(18, 2) NOT NULL,
                    broker_fee DECIMAL(18, 2) NOT NULL,
                    balance_before DECIMAL(18, 2) NOT NULL,
                    balance_after DECIMAL(18, 2) NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    status VARCHAR NOT NULL
                )
            """)

            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SCHEMA}.interest_payments (
                    id VARCHAR PRIMARY KEY,
                    participant_id VARCHAR NOT NULL,
                    broker_id VARCHAR NOT NULL,
                    day_number INTEGER NOT NULL,
                    portfolio_value DECIMAL(18, 2) NOT NULL,
                    interest_rate DECIMAL(9, 4) NOT NULL,
                    interest_amount DECIMAL(18, 2) NOT NULL,
                    balance_before DECIMAL(18, 2) NOT NULL,
                    balance_after DECIMAL(18, 2) NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

    # ------------------------------------------------------------------
    # Day control
    # ------------------------------------------------------------------

    def get_day_control(self, conn: Connection | None = None) -> DayControl | None:
        """Read the day-control singleton.

        Args:
            conn: Optional connection inside an open transaction.

        Returns:
            The record, or None before the first start.
        """
        with self._use(conn) as c:
            row = c.execute(
                f"""
                SELECT current_day, total_days, is_active, is_paused,
                       paused_remaining_ms, paused_at, simulation_started_at,
                       last_day_change_at, version
                FROM {self.SCHEMA}.day_control
                WHERE id = ?
                """,
                [DAY_CONTROL_ID],
            ).fetchone()

        if row is None:
            return None

        return DayControl(
            current_day=row[0],
            total_days=row[1],
            is_active=row[2],
            is_paused=row[3],
            paused_remaining_ms=row[4],
            paused_at=row[5],
            simulation_started_at=row[6],
            last_day_change_at=row[7],
            version=row[8],
        )

    def insert_day_control(self, conn: Connection, control: DayControl) -> None:
        """Create the singleton row.

        Raises:
            ConcurrentModificationError: If another writer created it first.
        """
        try:
            conn.execute(
                f"""
                INSERT INTO {self.SCHEMA}.day_control
                (id, current_day, total_days, is_active, is_paused,
                 paused_remaining_ms, paused_at, simulation_started_at,
                 last_day_change_at, version)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    DAY_CONTROL_ID,
                    control.current_day,
                    control.total_days,
                    control.is_active,
                    control.is_paused,
                    control.paused_remaining_ms,
                    control.paused_at,
                    control.simulation_started_at,
                    control.last_day_change_at,
                    control.version,
                ],
            )
        except duckdb.ConstraintException as exc:
            raise ConcurrentModificationError(
                message="Day control was created concurrently"
            ) from exc

    def update_day_control(
        self, conn: Connection, control: DayControl, expected_version: int
    ) -> DayControl:
        """Write the singleton if nobody changed it since it was read.

        Args:
            conn: Connection inside an open transaction.
            control: New field values.
            expected_version: Version observed when the row was read.

        Returns:
            The stored record with its bumped version.

        Raises:
            ConcurrentModificationError: If the stored version differs.
        """
        rows = conn.execute(
            f"""
            UPDATE {self.SCHEMA}.day_control
            SET current_day = ?,
                total_days = ?,
                is_active = ?,
                is_paused = ?,
                paused_remaining_ms = ?,
                paused_at = ?,
                simulation_started_at = ?,
                last_day_change_at = ?,
                version = version + 1
            WHERE id = ? AND version = ?
            RETURNING version
            """,
            [
                control.current_day,
                control.total_days,
                control.is_active,
                control.is_paused,
                control.paused_remaining_ms,
                control.paused_at,
                control.simulation_started_at,
                control.last_day_change_at,
                DAY_CONTROL_ID,
                expected_version,
            ],
        ).fetchall()

        if not rows:
            raise ConcurrentModificationError(
                message=(
                    f"Day control changed concurrently (expected version "
                    f"{expected_version})"
                )
            )
        return control.model_copy(update={"version": rows[0][0]})

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> dict[str, Any] | None:
        """Read a JSON setting by key."""
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT value_json FROM {self.SCHEMA}.settings WHERE key = ?",
                [key],
            ).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def save_setting(
        self, key: str, value: dict[str, Any], description: str | None = None
    ) -> None:
        """Insert or replace a JSON setting."""
        with self._get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.SCHEMA}.settings (key, value_json, description, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET
                    value_json = EXCLUDED.value_json,
                    description = COALESCE(EXCLUDED.description, description),
                    updated_at = EXCLUDED.updated_at
                """,
                [key, json.dumps(value), description, datetime.now()],
            )

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def add_company(self, company: Company) -> Company:
        """Register a company."""
        with self._get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.SCHEMA}.companies (id, stock_code, name, sector)
                VALUES (?, ?, ?, ?)
                """,
                [company.id, company.stock_code, company.name, company.sector],
            )
        return company

    def list_companies(self, conn: Connection | None = None) -> list[Company]:
        """All companies ordered by stock code."""
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT id, stock_code, name, sector
                FROM {self.SCHEMA}.companies
                ORDER BY stock_code
                """
            ).fetchall()
        return [
            Company(id=row[0], stock_code=row[1], name=row[2], sector=row[3])
            for row in rows
        ]

    def get_companies_by_codes(
        self, codes: Iterable[str], conn: Connection | None = None
    ) -> dict[str, Company]:
        """Resolve stock codes to companies.

        Returns:
            Mapping of upper-case stock code to company; unknown codes are
            simply absent.
        """
        wanted = sorted({code.upper() for code in codes})
        if not wanted:
            return {}
        placeholders = ", ".join("?" for _ in wanted)
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT id, stock_code, name, sector
                FROM {self.SCHEMA}.companies
                WHERE stock_code IN ({placeholders})
                """,
                wanted,
            ).fetchall()
        return {
            row[1]: Company(id=row[0], stock_code=row[1], name=row[2], sector=row[3])
            for row in rows
        }

    def upsert_stock_price(self, price: StockPrice) -> None:
        """Insert or replace the price of a company for a day.

        The row becomes active immediately when its day has already been
        reached, so late corrections are tradable. An update never
        deactivates a row.
        """
        with self._get_connection() as conn:
            control = self.get_day_control(conn)
            reached = (
                control is not None
                and control.current_day > 0
                and price.day_number <= control.current_day
            )
            conn.execute(
                f"""
                INSERT INTO {self.SCHEMA}.stock_prices
                (company_id, day_number, price, is_active)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (company_id, day_number) DO UPDATE SET
                    price = EXCLUDED.price,
                    is_active = is_active OR EXCLUDED.is_active
                """,
                [price.company_id, price.day_number, price.price, price.is_active or reached],
            )

    def get_price(
        self, company_id: str, day_number: int, conn: Connection | None = None
    ) -> StockPrice | None:
        """Price row keyed by ``(company_id, day_number)``, active or not."""
        with self._use(conn) as c:
            row = c.execute(
                f"""
                SELECT company_id, day_number, price, is_active
                FROM {self.SCHEMA}.stock_prices
                WHERE company_id = ? AND day_number = ?
                """,
                [company_id, day_number],
            ).fetchone()
        if row is None:
            return None
        return StockPrice(
            company_id=row[0], day_number=row[1], price=_dec(row[2]), is_active=row[3]
        )

    def get_prices_for_day(
        self, company_ids: Iterable[str], day_number: int, conn: Connection | None = None
    ) -> dict[str, StockPrice]:
        """Price rows of several companies for one day."""
        ids = sorted(set(company_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT company_id, day_number, price, is_active
                FROM {self.SCHEMA}.stock_prices
                WHERE day_number = ? AND company_id IN ({placeholders})
                """,
                [day_number, *ids],
            ).fetchall()
        return {
            row[0]: StockPrice(
                company_id=row[0], day_number=row[1], price=_dec(row[2]), is_active=row[3]
            )
            for row in rows
        }

    def get_latest_active_prices(
        self, conn: Connection | None = None
    ) -> dict[str, Decimal]:
        """Most recent active price per company."""
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT company_id, arg_max(price, day_number)
                FROM {self.SCHEMA}.stock_prices
                WHERE is_active
                GROUP BY company_id
                """
            ).fetchall()
        return {row[0]: _dec(row[1]) for row in rows}

    def get_latest_prices_up_to(
        self, day_number: int, conn: Connection | None = None
    ) -> dict[str, Decimal]:
        """Most recent price per company with ``day_number <= day``."""
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT company_id, arg_max(price, day_number)
                FROM {self.SCHEMA}.stock_prices
                WHERE day_number <= ?
                GROUP BY company_id
                """,
                [day_number],
            ).fetchall()
        return {row[0]: _dec(row[1]) for row in rows}

    def count_active_rows_after(
        self, day_number: int, conn: Connection | None = None
    ) -> int:
        """Active price and report rows dated after ``day_number``."""
        with self._use(conn) as c:
            row = c.execute(
                f"""
                SELECT
                    (SELECT count(*) FROM {self.SCHEMA}.stock_prices
                     WHERE is_active AND day_number > ?)
                  + (SELECT count(*) FROM {self.SCHEMA}.financial_reports
                     WHERE is_active AND day_number > ?)
                """,
                [day_number, day_number],
            ).fetchone()
        return int(row[0]) if row else 0

    def add_financial_report(self, report: FinancialReport) -> FinancialReport:
        """Register a report to be released on its day."""
        with self._get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.SCHEMA}.financial_reports
                (id, company_id, day_number, title, body, is_active)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    report.id,
                    report.company_id,
                    report.day_number,
                    report.title,
                    report.body,
                    report.is_active,
                ],
            )
        return report

    def list_financial_reports(
        self, company_id: str | None = None, active_only: bool = False
    ) -> list[FinancialReport]:
        """Reports, optionally filtered by company and availability."""
        query = f"""
            SELECT id, company_id, day_number, title, body, is_active
            FROM {self.SCHEMA}.financial_reports
            WHERE 1 = 1
        """
        params: list[Any] = []
        if company_id:
            query += " AND company_id = ?"
            params.append(company_id)
        if active_only:
            query += " AND is_active"
        query += " ORDER BY day_number, title"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            FinancialReport(
                id=row[0],
                company_id=row[1],
                day_number=row[2],
                title=row[3],
                body=row[4] or "",
                is_active=row[5],
            )
            for row in rows
        ]

    def add_broker(self, broker: Broker) -> Broker:
        """Register a broker."""
        with self._get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.SCHEMA}.brokers
                (id, code, name, fee_percentage, interest_rate, is_active)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    broker.id,
                    broker.code,
                    broker.name,
                    broker.fee_percentage,
                    broker.interest_rate,
                    broker.is_active,
                ],
            )
        return broker

    def get_broker(self, broker_id: str, conn: Connection | None = None) -> Broker | None:
        """Broker by id."""
        with self._use(conn) as c:
            row = c.execute(
                f"""
                SELECT id, code, name, fee_percentage, interest_rate, is_active
                FROM {self.SCHEMA}.brokers
                WHERE id = ?
                """,
                [broker_id],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_broker(row)

    def get_broker_by_code(self, code: str) -> Broker | None:
        """Broker by its short code, case-insensitive."""
        with self._get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT id, code, name, fee_percentage, interest_rate, is_active
                FROM {self.SCHEMA}.brokers
                WHERE upper(code) = upper(?)
                """,
                [code],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_broker(row)

    def list_brokers(self) -> list[Broker]:
        """All brokers ordered by code."""
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT id, code, name, fee_percentage, interest_rate, is_active
                FROM {self.SCHEMA}.brokers
                ORDER BY code
                """
            ).fetchall()
        return [self._row_to_broker(row) for row in rows]

    @staticmethod
    def _row_to_broker(row: tuple) -> Broker:
        return Broker(
            id=row[0],
            code=row[1],
            name=row[2],
            fee_percentage=_dec(row[3]),
            interest_rate=_dec(row[4]),
            is_active=row[5],
        )

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def add_participant(self, participant: Participant) -> Participant:
        """Register a participant."""
        with self._get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.SCHEMA}.participants
                (id, username, team_name, starting_balance, current_balance,
                 broker_id, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    participant.id,
                    participant.username,
                    participant.team_name,
                    participant.starting_balance,
                    participant.current_balance,
                    participant.broker_id,
                    participant.is_active,
                ],
            )
        return participant

    def get_participant(
        self, participant_id: str, conn: Connection | None = None
    ) -> Participant | None:
        """Participant by id."""
        with self._use(conn) as c:
            row = c.execute(
                f"""
                SELECT id, username, team_name, starting_balance,
                       current_balance, broker_id, is_active
                FROM {self.SCHEMA}.participants
                WHERE id = ?
                """,
                [participant_id],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_participant(row)

    def get_participant_by_username(self, username: str) -> Participant | None:
        """Participant by login name."""
        with self._get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT id, username, team_name, starting_balance,
                       current_balance, broker_id, is_active
                FROM {self.SCHEMA}.participants
                WHERE username = ?
                """,
                [username],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_participant(row)

    def list_participants(
        self, active_only: bool = False, conn: Connection | None = None
    ) -> list[Participant]:
        """Participants ordered by username."""
        query = f"""
            SELECT id, username, team_name, starting_balance,
                   current_balance, broker_id, is_active
            FROM {self.SCHEMA}.participants
        """
        if active_only:
            query += " WHERE is_active"
        query += " ORDER BY username"
        with self._use(conn) as c:
            rows = c.execute(query).fetchall()
        return [self._row_to_participant(row) for row in rows]

    @staticmethod
    def _row_to_participant(row: tuple) -> Participant:
        return Participant(
            id=row[0],
            username=row[1],
            team_name=row[2],
            starting_balance=_dec(row[3]),
            current_balance=_dec(row[4]),
            broker_id=row[5],
            is_active=row[6],
        )

    def set_participant_broker(
        self, conn: Connection, participant_id: str, broker_id: str | None
    ) -> None:
        """Assign or clear a participant's broker."""
        conn.execute(
            f"UPDATE {self.SCHEMA}.participants SET broker_id = ? WHERE id = ?",
            [broker_id, participant_id],
        )

    def update_balance(
        self,
        conn: Connection,
        participant_id: str,
        expected_balance: Decimal,
        new_balance: Decimal,
    ) -> None:
        """Set a participant's cash if it still equals what was read.

        Raises:
            ConcurrentModificationError: If the balance changed meanwhile.
        """
        rows = conn.execute(
            f"""
            UPDATE {self.SCHEMA}.participants
            SET current_balance = ?
            WHERE id = ? AND current_balance = ?
            RETURNING id
            """,
            [new_balance, participant_id, expected_balance],
        ).fetchall()
        if not rows:
            raise ConcurrentModificationError(
                message=f"Balance of participant {participant_id} changed concurrently"
            )

    def list_interest_candidates(
        self, conn: Connection | None = None
    ) -> list[tuple[Participant, Broker]]:
        """Active participants whose broker pays a positive interest rate."""
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT p.id, p.username, p.team_name, p.starting_balance,
                       p.current_balance, p.broker_id, p.is_active,
                       b.id, b.code, b.name, b.fee_percentage,
                       b.interest_rate, b.is_active
                FROM {self.SCHEMA}.participants p
                JOIN {self.SCHEMA}.brokers b ON b.id = p.broker_id
                WHERE p.is_active AND b.interest_rate > 0
                ORDER BY p.username
                """
            ).fetchall()
        return [
            (self._row_to_participant(row[:7]), self._row_to_broker(row[7:]))
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------------

    def get_holdings(
        self, participant_id: str, conn: Connection | None = None
    ) -> dict[str, PortfolioHolding]:
        """Open positions of a participant keyed by company id."""
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT participant_id, company_id, quantity,
                       average_buy_price, last_updated
                FROM {self.SCHEMA}.portfolio_holdings
                WHERE participant_id = ? AND quantity > 0
                """,
                [participant_id],
            ).fetchall()
        return {row[1]: self._row_to_holding(row) for row in rows}

    def get_all_holdings(
        self, conn: Connection | None = None
    ) -> dict[str, list[PortfolioHolding]]:
        """Open positions of every participant keyed by participant id."""
        with self._use(conn) as c:
            rows = c.execute(
                f"""
                SELECT participant_id, company_id, quantity,
                       average_buy_price, last_updated
                FROM {self.SCHEMA}.portfolio_holdings
                WHERE quantity > 0
                """
            ).fetchall()
        grouped: dict[str, list[PortfolioHolding]] = {}
        for row in rows:
            grouped.setdefault(row[0], []).append(self._row_to_holding(row))
        return grouped

    @staticmethod
    def _row_to_holding(row: tuple) -> PortfolioHolding:
        return PortfolioHolding(
            participant_id=row[0],
            company_id=row[1],
            quantity=row[2],
            average_buy_price=_dec(row[3]),
            last_updated=row[4],
        )

    def save_holding(self, conn: Connection, holding: PortfolioHolding) -> None:
        """Upsert a position; a zero quantity deletes the row."""
        if holding.quantity == 0:
            conn.execute(
                f"""
                DELETE FROM {self.SCHEMA}.portfolio_holdings
                WHERE participant_id = ? AND company_id = ?
                """,
                [holding.participant_id, holding.company_id],
            )
            return

        conn.execute(
            f"""
            INSERT INTO {self.SCHEMA}.portfolio_holdings
            (participant_id, company_id, quantity, average_buy_price, last_updated)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (participant_id, company_id) DO UPDATE SET
                quantity = EXCLUDED.quantity,
                average_buy_price = EXCLUDED.average_buy_price,
                last_updated = EXCLUDED.last_updated
            """,
            [
                holding.participant_id,
                holding.company_id,
                holding.quantity,
                holding.average_buy_price,
                holding.last_updated,
            ],
        )

    # ------------------------------------------------------------------
    # Transactions and interest
    # ------------------------------------------------------------------

    def count_completed_transactions(
        self, participant_id: str, day_number: int, conn: Connection | None = None
    ) -> int:
        """Completed transaction rows of a participant for one day."""
        with self._use(conn) as c:
            row = c.execute(
                f"""
                SELECT count(*)
                FROM {self.SCHEMA}.transactions
                WHERE participant_id = ? AND day_number = ? AND status = ?
                """,
                [participant_id, day_number, TransactionStatus.COMPLETED.value],
            ).fetchone()
        return int(row[0]) if row else 0

    def insert_transactions(
        self, conn: Connection, records: list[TransactionRecord]
    ) -> None:
        """Append transaction rows."""
        if not records:
            return
        conn.executemany(
            f"""
            INSERT INTO {self.SCHEMA}.transactions
            (id, participant_id, company_id, broker_id, day_number,
             transaction_type, quantity, price_per_share, total_amount,
             broker_fee, balance_before, balance_after, timestamp, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                [
                    r.id,
                    r.participant_id,
                    r.company_id,
                    r.broker_id,
                    r.day_number,
                    r.transaction_type.value,
                    r.quantity,
                    r.price_per_share,
                    r.total_amount,
                    r.broker_fee,
                    r.balance_before,
                    r.balance_after,
                    r.timestamp,
                    r.status.value,
                ]
                for r in records
            ],
        )

    def list_transactions(
        self,
        participant_id: str | None = None,
        day_number: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TransactionRecord]:
        """Transaction rows, newest first."""
        query = f"""
            SELECT id, participant_id, company_id, broker_id, day_number,
                   transaction_type, quantity, price_per_share, total_amount,
                   broker_fee, balance_before, balance_after, timestamp, status
            FROM {self.SCHEMA}.transactions
            WHERE 1 = 1
        """
        params: list[Any] = []
        if participant_id is not None:
            query += " AND participant_id = ?"
            params.append(participant_id)
        if day_number is not None:
            query += " AND day_number = ?"
            params.append(day_number)
        query += " ORDER BY timestamp DESC, id"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            TransactionRecord(
                id=row[0],
                participant_id=row[1],
                company_id=row[2],
                broker_id=row[3],
                day_number=row[4],
                transaction_type=TransactionType(row[5]),
                quantity=row[6],
                price_per_share=_dec(row[7]),
                total_amount=_dec(row[8]),
                broker_fee=_dec(row[9]),
                balance_before=_dec(row[10]),
                balance_after=_dec(row[11]),
                timestamp=row[12],
                status=TransactionStatus(row[13]),
            )
            for row in rows
        ]

    def count_transactions(
        self, participant_id: str | None = None, day_number: int | None = None
    ) -> int:
        """Number of transaction rows matching the filters."""
        query = f"SELECT count(*) FROM {self.SCHEMA}.transactions WHERE 1 = 1"
        params: list[Any] = []
        if participant_id is not None:
            query += " AND participant_id = ?"
            params.append(participant_id)
        if day_number is not None:
            query += " AND day_number = ?"
            params.append(day_number)
        with self._get_connection() as conn:
            row = conn.execute(query, params).fetchone()
        return int(row[0]) if row else 0

    def insert_interest_payments(
        self, conn: Connection, payments: list[InterestPayment]
    ) -> None:
        """Append interest payment rows."""
        if not payments:
            return
        conn.executemany(
            f"""
            INSERT INTO {self.SCHEMA}.interest_payments
            (id, participant_id, broker_id, day_number, portfolio_value,
             interest_rate, interest_amount, balance_before, balance_after,
             created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                [
                    p.id,
                    p.participant_id,
                    p.broker_id,
                    p.day_number,
                    p.portfolio_value,
                    p.interest_rate,
                    p.interest_amount,
                    p.balance_before,
                    p.balance_after,
                    p.created_at,
                ]
                for p in payments
            ],
        )

    def list_interest_payments(
        self, participant_id: str | None = None, day_number: int | None = None
    ) -> list[InterestPayment]:
        """Interest rows ordered by day."""
        query = f"""
            SELECT id, participant_id, broker_id, day_number, portfolio_value,
                   interest_rate, interest_amount, balance_before,
                   balance_after, created_at
            FROM {self.SCHEMA}.interest_payments
            WHERE 1 = 1
        """
        params: list[Any] = []
        if participant_id is not None:
            query += " AND participant_id = ?"
            params.append(participant_id)
        if day_number is not None:
            query += " AND day_number = ?"
            params.append(day_number)
        query += " ORDER BY day_number, participant_id"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            InterestPayment(
                id=row[0],
                participant_id=row[1],
                broker_id=row[2],
                day_number=row[3],
                portfolio_value=_dec(row[4]),
                interest_rate=_dec(row[5]),
                interest_amount=_dec(row[6]),
                balance_before=_dec(row[7]),
                balance_after=_dec(row[8]),
                created_at=row[9],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def wipe_competition_data(self, conn: Connection) -> None:
        """Delete trading and interest history and restore starting balances.

        Prices and reports are kept but deactivated; broker choices are
        cleared so participants pick again.
        """
        for table in ["transactions", "interest_payments", "portfolio_holdings"]:
            conn.execute(f"DELETE FROM {self.SCHEMA}.{table}")

        conn.execute(
            f"""
            UPDATE {self.SCHEMA}.participants
            SET current_balance = starting_balance, broker_id = NULL
            """
        )
        conn.execute(f"UPDATE {self.SCHEMA}.stock_prices SET is_active = FALSE")
        conn.execute(f"UPDATE {self.SCHEMA}.financial_reports SET is_active = FALSE")
