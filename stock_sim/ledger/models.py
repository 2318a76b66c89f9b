"""Pydantic models for the competition ledger.

This module defines the persisted entities (day control, reference data,
holdings, immutable transaction and interest rows) and the inputs/outputs of
the core operations.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

DAY_CONTROL_ID = "day-control-singleton"
SCHEDULER_SETTING_KEY = "auto_day_scheduler"
RESET_CONFIRMATION = "RESET"


class SimulationState(str, Enum):
    """Derived state of the day-control record."""

    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    ENDED = "ENDED"


class TransactionType(str, Enum):
    """Side of an executed order."""

    BUY = "BUY"
    SELL = "SELL"


class TransactionStatus(str, Enum):
    """Status of a transaction row."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DayControl(BaseModel):
    """The single global simulation record."""

    id: str = Field(default=DAY_CONTROL_ID)
    current_day: int = Field(default=0, ge=0)
    total_days: int = Field(default=15, gt=0)
    is_active: bool = Field(default=False)
    is_paused: bool = Field(default=False)
    paused_remaining_ms: int | None = Field(default=None, ge=0)
    paused_at: datetime | None = None
    simulation_started_at: datetime | None = None
    last_day_change_at: datetime | None = None
    version: int = Field(default=0, ge=0, description="Optimistic row version")

    @model_validator(mode="after")
    def check_invariants(self) -> "DayControl":
        """Enforce day bounds and that pausing implies active."""
        if self.current_day > self.total_days:
            raise ValueError(
                f"current_day {self.current_day} exceeds total_days {self.total_days}"
            )
        if self.is_paused and not self.is_active:
            raise ValueError("A paused simulation must be active")
        return self

    @property
    def state(self) -> SimulationState:
        if not self.is_active:
            if self.current_day == 0:
                return SimulationState.NOT_STARTED
            return SimulationState.ENDED
        if self.is_paused:
            return SimulationState.PAUSED
        return SimulationState.RUNNING


class SchedulerConfig(BaseModel):
    """Persisted auto-advance setting."""

    enabled: bool = Field(default=False)
    interval_minutes: int = Field(default=6, gt=0)


class SchedulerStatus(BaseModel):
    """Snapshot of the in-memory scheduler state."""

    enabled: bool
    interval_minutes: int | None = None
    next_run_at: datetime | None = None
    paused: bool = False
    remaining_ms: int | None = None
    running: bool = False


class Company(BaseModel):
    """Listed company taking part in the competition."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    stock_code: str = Field(min_length=3, max_length=5)
    name: str
    sector: str | None = None

    @field_validator("stock_code")
    @classmethod
    def upper_code(cls, value: str) -> str:
        return value.upper()


class StockPrice(BaseModel):
    """Price of one company for one simulated day."""

    company_id: str
    day_number: int = Field(gt=0)
    price: Decimal = Field(gt=Decimal("0"))
    is_active: bool = False


class FinancialReport(BaseModel):
    """Report released to participants on a given day."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    company_id: str
    day_number: int = Field(gt=0)
    title: str
    body: str = ""
    is_active: bool = False


class Broker(BaseModel):
    """Broker charging a trading fee and paying interest on holdings."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    code: str
    name: str
    fee_percentage: Decimal = Field(ge=Decimal("0"), le=Decimal("100"))
    interest_rate: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    is_active: bool = True


class Participant(BaseModel):
    """Competing team; ``current_balance`` is the only mutable money field."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    username: str
    team_name: str | None = None
    starting_balance: Decimal = Field(ge=Decimal("0"))
    current_balance: Decimal = Field(ge=Decimal("0"))
    broker_id: str | None = None
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return self.team_name or self.username


class PortfolioHolding(BaseModel):
    """Open position of one participant in one company."""

    participant_id: str
    company_id: str
    quantity: int = Field(ge=0)
    average_buy_price: Decimal = Field(ge=Decimal("0"))
    last_updated: datetime = Field(default_factory=datetime.now)


class TransactionRecord(BaseModel):
    """Immutable ledger row for one executed order.

    ``balance_before``/``balance_after`` and ``broker_fee`` are batch-level
    values, identical for every row written by the same batch.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    participant_id: str
    company_id: str
    broker_id: str
    day_number: int = Field(gt=0)
    transaction_type: TransactionType
    quantity: int = Field(gt=0)
    price_per_share: Decimal
    total_amount: Decimal
    broker_fee: Decimal
    balance_before: Decimal
    balance_after: Decimal
    timestamp: datetime = Field(default_factory=datetime.now)
    status: TransactionStatus = TransactionStatus.COMPLETED


class InterestPayment(BaseModel):
    """Immutable ledger row for one interest credit.

    ``portfolio_value`` is the stock value the interest was computed on; cash
    is not included.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    participant_id: str
    broker_id: str
    day_number: int = Field(gt=0)
    portfolio_value: Decimal
    interest_rate: Decimal
    interest_amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    created_at: datetime = Field(default_factory=datetime.now)


class TradeOrder(BaseModel):
    """One order inside a participant's daily batch."""

    stock_code: str = Field(min_length=3, max_length=5)
    type: TransactionType
    quantity: int = Field(gt=0)

    @field_validator("stock_code", mode="before")
    @classmethod
    def normalize_code(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class TradeLine(BaseModel):
    """Executed order as reported back to the participant."""

    stock_code: str
    quantity: int
    price: Decimal
    total: Decimal


class BatchSummary(BaseModel):
    """Outcome of a committed trade batch."""

    participant_id: str
    day: int
    starting_balance: Decimal
    broker_fee: Decimal
    ending_balance: Decimal
    buys: list[TradeLine] = Field(default_factory=list)
    sells: list[TradeLine] = Field(default_factory=list)
    transaction_ids: list[str] = Field(default_factory=list)

    @property
    def total_buy(self) -> Decimal:
        return sum((line.total for line in self.buys), start=Decimal("0"))

    @property
    def total_sell(self) -> Decimal:
        return sum((line.total for line in self.sells), start=Decimal("0"))


class DayAdvanceResult(BaseModel):
    """What a successful start/advance changed."""

    day: int
    prices_activated: int = 0
    reports_activated: int = 0
    interest_payments: int = 0


class ActivationResult(BaseModel):
    """Row counts touched by the price/report activator."""

    day: int
    prices_activated: int
    reports_activated: int
    prices_deactivated: int = 0
    reports_deactivated: int = 0


class HoldingView(BaseModel):
    """Holding valued at the latest known price."""

    stock_code: str
    company_name: str
    quantity: int
    average_buy_price: Decimal
    current_price: Decimal
    market_value: Decimal
    unrealized_pnl: Decimal


class PortfolioView(BaseModel):
    """Valued portfolio of one participant."""

    participant_id: str
    day: int
    holdings: list[HoldingView] = Field(default_factory=list)
    cash_balance: Decimal
    investment_value: Decimal
    total_value: Decimal
    total_return: Decimal
    return_percentage: Decimal


class LeaderboardEntry(BaseModel):
    """Ranked participant."""

    rank: int = Field(gt=0)
    participant_id: str
    team_name: str
    portfolio_value: Decimal
    return_percentage: Decimal


class DayStatus(BaseModel):
    """Read-only view of the day-control record."""

    current_day: int
    total_days: int
    is_active: bool
    is_paused: bool
    state: SimulationState
    simulation_started_at: datetime | None = None
    last_day_change_at: datetime | None = None

    @classmethod
    def from_control(cls, control: DayControl | None, total_days: int) -> "DayStatus":
        """Build a status, defaulting to NOT_STARTED when no record exists."""
        if control is None:
            return cls(
                current_day=0,
                total_days=total_days,
                is_active=False,
                is_paused=False,
                state=SimulationState.NOT_STARTED,
            )
        return cls(
            current_day=control.current_day,
            total_days=control.total_days,
            is_active=control.is_active,
            is_paused=control.is_paused,
            state=control.state,
            simulation_started_at=control.simulation_started_at,
            last_day_change_at=control.last_day_change_at,
        )


class DailyBatchView(BaseModel):
    """Summary of the batch a participant completed on a given day."""

    day: int
    total_transactions: int
    buys: list[TradeLine]
    sells: list[TradeLine]
    broker_fee: Decimal
    balance_after: Decimal

