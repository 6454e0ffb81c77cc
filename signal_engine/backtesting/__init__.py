"""Backtesting: AlphaTrend signal replay through the filter pipeline."""

from signal_engine.backtesting.engine import BacktestResult, BacktestSimulator, resolve_exit, save_results

__all__ = ["BacktestResult", "BacktestSimulator", "resolve_exit", "save_results"]
