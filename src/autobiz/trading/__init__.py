"""Autonomous trading: loop, strategies, alerts and risk controls."""

from autobiz.trading.alerts import AlertProcessor
from autobiz.trading.loop import AutonomousTradingLoop
from autobiz.trading.risk_guard import RiskGuard
from autobiz.trading.strategies import StrategyService

__all__ = ["AlertProcessor", "AutonomousTradingLoop", "RiskGuard", "StrategyService"]
