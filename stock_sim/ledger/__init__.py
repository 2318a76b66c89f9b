"""Ledger: models, money arithmetic and DuckDB storage."""

from stock_sim.ledger.models import (
    BatchSummary,
    Broker,
    Company,
    DayControl,
    FinancialReport,
    InterestPayment,
    Participant,
    PortfolioHolding,
    SimulationState,
    StockPrice,
    TradeOrder,
    TransactionRecord,
    TransactionType,
)
from stock_sim.ledger.storage import LedgerStorage

__all__ = [
    "BatchSummary",
    "Broker",
    "Company",
    "DayControl",
    "FinancialReport",
    "InterestPayment",
    "LedgerStorage",
    "Participant",
    "PortfolioHolding",
    "SimulationState",
    "StockPrice",
    "TradeOrder",
    "TransactionRecord",
    "TransactionType",
]
