#!/usr/bin/env python3
"""
Signal engine CLI: backtest | signal
Usage:
  python main.py backtest [--config config.yaml] [--symbol ETHUSDT] [--timeframe 15m] [--start 2024-01-01] [--end 2024-01-31]
  python main.py signal --symbol ETHUSDT --action BUY --price 2500 [--timeframe 15m] [--monitor]
"""

from __future__ import annotations
import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

from signal_engine.backtesting import BacktestSimulator, save_results
from signal_engine.core.config import Config, load_config
from signal_engine.core.errors import DataUnavailable
from signal_engine.core.logger import setup_logging
from signal_engine.core.types import Signal, SignalSide
from signal_engine.data.binance import BinanceMarketData
from signal_engine.execution.base import ExchangeGateway
from signal_engine.execution.binance_futures import BinanceFuturesGateway
from signal_engine.execution.paper import PaperGateway
from signal_engine.filters.pipeline import build_pipeline
from signal_engine.risk.manager import RiskGate
from signal_engine.storage.snapshot import SnapshotStore
from signal_engine.trading.engine import TradingEngine
from signal_engine.trading.lifecycle import PositionLifecycleManager
from signal_engine.utils.telegram import TelegramNotifier

ROOT = Path(__file__).resolve().parent

logger = logging.getLogger("signal_engine")


def _setup(config_path: Optional[Path]) -> Config:
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, ROOT / config.log_dir, config.log_file, config.trade_log_file)
    return config


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return pd.Timestamp(value, tz="UTC").to_pydatetime()


def run_backtest(args: argparse.Namespace) -> int:
    """Fetch history from Binance, replay it and save the report."""
    config = _setup(args.config)
    symbol = (args.symbol or config.backtest_symbol).upper()
    timeframe = args.timeframe or config.backtest_timeframe
    start = _parse_date(args.start or config.backtest_start)
    end = _parse_date(args.end or config.backtest_end)
    if start is None:
        logger.error("Backtest needs a start date (--start or backtest.start_date in config.yaml)")
        return 1
    market_data = BinanceMarketData.from_keys(config.binance_api_key, config.binance_api_secret,
                                              testnet=config.use_testnet)
    simulator = BacktestSimulator(config, initial_balance=config.backtest_initial_balance)
    try:
        result = simulator.run_range(market_data, symbol, timeframe, start, end or datetime.now(timezone.utc))
    except DataUnavailable as e:
        logger.error("Backtest aborted: %s", e)
        return 1

    print("\n--- Backtest Results ---")
    print(f"Period: {result.start} -> {result.end} ({symbol} {timeframe})")
    print(f"Signals: {result.total_signals} (approved: {result.approved_signals}, rejected: {result.rejected_signals})")
    print(f"Trades: {len(result.trades)}")
    print(f"Win rate: {result.win_rate*100:.1f}%")
    print(f"Total profit: {result.total_profit:.2f} USDT | Total loss: {result.total_loss:.2f} USDT")
    print(f"Final balance: {result.final_balance:.2f} USDT")
    print(f"Max drawdown: {result.max_drawdown*100:.2f}%")
    for name, counts in result.filter_stats.items():
        print(f"Filter {name}: passed={counts['passed']} failed={counts['failed']}")
    output = args.output or ROOT / config.backtest_results_file
    save_results(result, output, config)
    return 0


def build_gateway(config: Config, market_data: BinanceMarketData) -> ExchangeGateway:
    """Paper gateway in simulation mode or without keys, Binance Futures otherwise."""
    if config.simulation_mode or not config.binance_api_key or not config.binance_api_secret:
        logger.info("Paper trading (simulation mode)")
        return PaperGateway(
            initial_balance=config.simulation_initial_balance,
            market_data=market_data,
            store=SnapshotStore(ROOT / config.simulation_state_file),
        )
    return BinanceFuturesGateway(config.binance_api_key, config.binance_api_secret, testnet=config.use_testnet)


def build_engine(config: Config) -> TradingEngine:
    market_data = BinanceMarketData.from_keys(config.binance_api_key, config.binance_api_secret,
                                              testnet=config.use_testnet)
    notifier = TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id)
    gateway = build_gateway(config, market_data)
    lifecycle = PositionLifecycleManager(config, gateway, notifier=notifier)
    return TradingEngine(
        config,
        pipeline=build_pipeline(config, market_data),
        risk_gate=RiskGate(config),
        gateway=gateway,
        lifecycle=lifecycle,
        notifier=notifier,
    )


def run_signal(args: argparse.Namespace) -> int:
    """Push one signal through the engine, optionally monitoring until flat."""
    config = _setup(args.config)
    engine = build_engine(config)
    signal = Signal(
        strategy=args.strategy,
        action=SignalSide(args.action.upper()),
        symbol=args.symbol.upper(),
        timeframe=args.timeframe,
        price=args.price,
        timestamp=datetime.now(timezone.utc),
    )
    try:
        outcome = engine.handle_signal(signal)
        print(f"{outcome.status}: {outcome.reason}")
        if outcome.process_result is not None:
            for name, result in outcome.process_result.filter_results.items():
                state = "skipped" if result.skipped else ("passed" if result.passed else "failed")
                print(f"  {name}: {state} ({result.reason})")
        if args.monitor and outcome.executed:
            engine.run(poll_seconds=args.poll_seconds, until_flat=True)
    finally:
        engine.lifecycle.shutdown()
        engine.notifier.close()
    return 0 if outcome.executed or outcome.status in ("rejected", "denied") else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Signal decision and position lifecycle engine")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    sub = parser.add_subparsers(dest="mode", required=True)

    bt = sub.add_parser("backtest", help="Replay AlphaTrend signals over Binance history")
    bt.add_argument("--symbol", default=None)
    bt.add_argument("--timeframe", default=None)
    bt.add_argument("--start", default=None, help="Start date, e.g. 2024-01-01")
    bt.add_argument("--end", default=None, help="End date (default: now)")
    bt.add_argument("--output", type=Path, default=None, help="JSON report path")

    sg = sub.add_parser("signal", help="Process one signal")
    sg.add_argument("--symbol", required=True)
    sg.add_argument("--action", required=True, choices=["BUY", "SELL", "buy", "sell"])
    sg.add_argument("--price", type=float, required=True)
    sg.add_argument("--timeframe", default="15m")
    sg.add_argument("--strategy", default="manual")
    sg.add_argument("--monitor", action="store_true", help="Keep monitoring until positions close")
    sg.add_argument("--poll-seconds", type=float, default=5.0)

    args = parser.parse_args()
    if args.mode == "backtest":
        return run_backtest(args)
    return run_signal(args)


if __name__ == "__main__":
    sys.exit(main())
