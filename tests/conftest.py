"""Shared pytest fixtures: throw-away ledgers and a small market."""

import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from stock_sim.app import Simulator, build_simulator
from stock_sim.config.settings import Settings
from stock_sim.ledger.models import Broker, Company, Participant, StockPrice
from stock_sim.ledger.storage import LedgerStorage

TOTAL_DAYS = 15
AKNA_PRICE = Decimal("5000.00")
KJNL_PRICES = {day: Decimal(2000 + 10 * day) for day in range(1, TOTAL_DAYS + 1)}


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval: float, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.function()


class FakeTimerFactory:
    """Records every timer the scheduler creates."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, interval: float, function) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> list[FakeTimer]:
        return [
            t for t in self.timers if t.started and not (t.cancelled or t.fired)
        ]

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


@dataclass
class Market:
    """Reference data created for a test ledger."""

    broker: Broker
    free_broker: Broker
    akna: Company
    kjnl: Company
    participant: Participant
    others: list[Participant] = field(default_factory=list)


@pytest.fixture
def temp_db_path() -> Path:
    """Create a temporary database path (path only, not the file)."""
    temp_dir = Path(tempfile.gettempdir())
    return temp_dir / f"test_stock_sim_{uuid.uuid4().hex}.duckdb"


@pytest.fixture
def storage(temp_db_path: Path) -> LedgerStorage:
    """Create an empty ledger."""
    return LedgerStorage(temp_db_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer_factory() -> FakeTimerFactory:
    return FakeTimerFactory()


def add_participant(
    storage: LedgerStorage,
    username: str,
    balance: Decimal = Decimal("10000000.00"),
    broker_id: str | None = None,
) -> Participant:
    return storage.add_participant(
        Participant(
            username=username,
            team_name=f"Team {username}",
            starting_balance=balance,
            current_balance=balance,
            broker_id=broker_id,
        )
    )


def build_market(storage: LedgerStorage) -> Market:
    """Two companies priced for every day, two brokers, one trader.

    AKNA trades flat at 5,000; KJNL rises by 10 a day from 2,010.
    The trader uses a broker with a 0.5% fee and 0.1% daily interest.
    """
    broker = storage.add_broker(
        Broker(
            code="AV",
            name="Arkana Values",
            fee_percentage=Decimal("0.5"),
            interest_rate=Decimal("0.1"),
        )
    )
    free_broker = storage.add_broker(
        Broker(code="ZF", name="Zero Fee", fee_percentage=Decimal("0"))
    )
    akna = storage.add_company(Company(stock_code="AKNA", name="Arkana Digital"))
    kjnl = storage.add_company(Company(stock_code="KJNL", name="Kayjana Logistik"))
    for day in range(1, TOTAL_DAYS + 1):
        storage.upsert_stock_price(
            StockPrice(company_id=akna.id, day_number=day, price=AKNA_PRICE)
        )
        storage.upsert_stock_price(
            StockPrice(company_id=kjnl.id, day_number=day, price=KJNL_PRICES[day])
        )

    participant = add_participant(storage, "alpha", broker_id=broker.id)
    return Market(
        broker=broker,
        free_broker=free_broker,
        akna=akna,
        kjnl=kjnl,
        participant=participant,
    )


@pytest.fixture
def sim(
    temp_db_path: Path, timer_factory: FakeTimerFactory, clock: FakeClock
) -> Simulator:
    """Full service graph on a temporary ledger with fake timers."""
    settings = Settings(db_path=temp_db_path, total_days=TOTAL_DAYS)
    return build_simulator(settings, timer_factory=timer_factory, clock=clock)


@pytest.fixture
def sim_market(sim: Simulator) -> Market:
    """The standard market created inside ``sim``'s ledger."""
    return build_market(sim.storage)


@pytest.fixture
def market(storage: LedgerStorage) -> Market:
    """The standard market in a bare ledger."""
    return build_market(storage)
