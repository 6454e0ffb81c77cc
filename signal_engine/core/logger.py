"""
Logging setup. Console + file, plus a separate audit file for signal/trade events.
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional

TRADE_LOGGER = "signal_engine.trades"


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    log_file: Optional[str] = None,
    trade_log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the signal_engine logger: console and optional file.
    Signal/trade audit lines also go to trade_log_file when given.
    Never log API keys or secrets.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger("signal_engine")
    root.setLevel(log_level)
    root.handlers.clear()

    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_fmt = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(fmt, datefmt=date_fmt)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir and (log_file or trade_log_file):
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        if log_file:
            fh = logging.FileHandler(log_dir / log_file, encoding="utf-8")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        if trade_log_file:
            trades = logging.getLogger(TRADE_LOGGER)
            trades.handlers.clear()
            th = logging.FileHandler(log_dir / trade_log_file, encoding="utf-8")
            th.setFormatter(logging.Formatter("%(asctime)s | %(message)s", datefmt=date_fmt))
            trades.addHandler(th)

    return root


def trade_event(event: str, **fields) -> None:
    """Write one key=value audit line for a signal or trade event."""
    parts = " ".join(f"{k}={v}" for k, v in fields.items())
    logging.getLogger(TRADE_LOGGER).info("%s %s", event, parts)
