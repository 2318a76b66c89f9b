"""Demo reference data: brokers, companies, a price path and participants."""

import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal

from stock_sim.ledger.models import (
    Broker,
    Company,
    FinancialReport,
    Participant,
    StockPrice,
)
from stock_sim.ledger.storage import LedgerStorage

logger = logging.getLogger(__name__)

DEMO_BROKERS = [
    ("AV", "Arkana Values", Decimal("0.50"), Decimal("0.10")),
    ("XP", "Xperience Partners", Decimal("0.65"), Decimal("0.15")),
    ("CC", "Capital Connect", Decimal("0.45"), Decimal("0.05")),
]

DEMO_COMPANIES = [
    ("AKNA", "Arkana Digital Nusantara", "Technology"),
    ("KJNL", "Kayjana Logistik", "Logistics"),
    ("BBCC", "Berca Cyber Cloud", "Technology"),
    ("ESDA", "Estrada Energi", "Energy"),
    ("TPDU", "Terpadu Infrastruktur", "Infrastructure"),
]


@dataclass
class SeedResult:
    """Ids of the rows created by :func:`seed_demo`."""

    brokers: list[Broker] = field(default_factory=list)
    companies: list[Company] = field(default_factory=list)
    participants: list[Participant] = field(default_factory=list)
    prices: int = 0
    reports: int = 0


def seed_demo(
    storage: LedgerStorage,
    *,
    total_days: int = 15,
    starting_balance: Decimal = Decimal("10000000.00"),
    participants: int = 3,
    seed: int = 42,
) -> SeedResult:
    """Populate an empty ledger with demo data.

    Prices follow a small random walk around a base of 5,000-6,000 with an
    upward drift of 50 per day, never below 1,000.

    Args:
        storage: Target ledger.
        total_days: Number of days to generate prices for.
        starting_balance: Cash for each demo participant.
        participants: Number of demo teams.
        seed: Random seed for reproducible prices.

    Returns:
        The created rows.

    Raises:
        ValueError: If the ledger already holds companies.
    """
    if storage.list_companies():
        raise ValueError("Ledger already contains companies; seed only an empty database")

    rng = random.Random(seed)
    result = SeedResult()

    for code, name, fee, rate in DEMO_BROKERS:
        result.brokers.append(
            storage.add_broker(
                Broker(code=code, name=name, fee_percentage=fee, interest_rate=rate)
            )
        )

    for code, name, sector in DEMO_COMPANIES:
        company = storage.add_company(Company(stock_code=code, name=name, sector=sector))
        result.companies.append(company)

        base = 5000 + rng.randrange(1000)
        for day in range(1, total_days + 1):
            variance = rng.randrange(400) - 200
            price = max(1000, base + variance + day * 50)
            storage.upsert_stock_price(
                StockPrice(company_id=company.id, day_number=day, price=Decimal(price))
            )
            result.prices += 1

        for day in sorted({1, (total_days + 1) // 2}):
            storage.add_financial_report(
                FinancialReport(
                    company_id=company.id,
                    day_number=day,
                    title=f"{code} report for day {day}",
                    body=f"{name} publishes its results for day {day}.",
                )
            )
            result.reports += 1

    for index in range(1, participants + 1):
        result.participants.append(
            storage.add_participant(
                Participant(
                    username=f"team{index:02d}",
                    team_name=f"Team {index:02d}",
                    starting_balance=starting_balance,
                    current_balance=starting_balance,
                )
            )
        )

    logger.info(
        f"Seeded {len(result.brokers)} brokers, {len(result.companies)} companies, "
        f"{result.prices} prices, {len(result.participants)} participants"
    )
    return result
