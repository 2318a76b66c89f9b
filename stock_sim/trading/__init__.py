"""Trade execution and participant read models."""

from stock_sim.trading.executor import TradeExecutionEngine
from stock_sim.trading.portfolio import PortfolioService

__all__ = ["PortfolioService", "TradeExecutionEngine"]
