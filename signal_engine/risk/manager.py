"""
Risk gate: max active trades, max trades per symbol, daily loss cap, free balance.
Every check is evaluated; the signal is allowed only if all pass.
Daily loss cap = MAX_ACTIVE_TRADES * DEFAULT_USDT_AMOUNT * DAILY_LOSS_CAP_PERCENT / 100.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

from signal_engine.core.config import Config
from signal_engine.core.logger import trade_event
from signal_engine.core.types import Signal

logger = logging.getLogger("signal_engine.risk")


@dataclass
class ExposureSnapshot:
    """Current exposure as seen by the caller at decision time."""
    open_positions: int
    open_positions_for_symbol: int
    balance_free: float


@dataclass
class RiskCheck:
    name: str
    passed: bool
    reason: str


@dataclass
class RiskDecision:
    """Allowed or denied + one RiskCheck per rule."""
    allowed: bool
    reason: str = ""
    checks: List[RiskCheck] = field(default_factory=list)


@dataclass
class DailyStats:
    day: date
    total_loss: float = 0.0
    total_profit: float = 0.0
    trade_count: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RiskGate:
    """
    Limits are read from config on every check, so runtime config updates apply
    to the next signal. Daily stats reset on the first check or record of a new UTC day.
    """

    def __init__(self, config: Config, clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._daily = DailyStats(day=self._today())

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def _roll_day(self) -> None:
        today = self._today()
        if self._daily.day != today:
            logger.info("New UTC day %s, daily risk stats reset", today.isoformat())
            self._daily = DailyStats(day=today)

    def daily_loss_limit(self) -> float:
        c = self.config
        return c.max_active_trades * c.default_usdt_amount * c.daily_loss_cap_percent / 100.0

    def check(self, signal: Signal, exposure: ExposureSnapshot) -> RiskDecision:
        c = self.config
        with self._lock:
            self._roll_day()
            today_loss = self._daily.total_loss
        limit = self.daily_loss_limit()
        checks = [
            RiskCheck(
                "max_active_trades",
                exposure.open_positions < c.max_active_trades,
                f"{exposure.open_positions}/{c.max_active_trades} active trades",
            ),
            RiskCheck(
                "max_trades_per_coin",
                exposure.open_positions_for_symbol < c.max_trades_per_coin,
                f"{exposure.open_positions_for_symbol}/{c.max_trades_per_coin} trades on {signal.symbol}",
            ),
            RiskCheck(
                "daily_loss_limit",
                today_loss < limit,
                f"daily loss {today_loss:.2f}/{limit:.2f} USDT",
            ),
            RiskCheck(
                "sufficient_balance",
                exposure.balance_free >= c.default_usdt_amount,
                f"free balance {exposure.balance_free:.2f}, required {c.default_usdt_amount:.2f} USDT",
            ),
        ]
        failed = [ch for ch in checks if not ch.passed]
        if not failed:
            return RiskDecision(allowed=True, reason="all risk checks passed", checks=checks)
        reason = "; ".join(f"{ch.name}: {ch.reason}" for ch in failed)
        logger.warning("Risk denied %s %s: %s", signal.symbol, signal.action.value, reason)
        return RiskDecision(allowed=False, reason=reason, checks=checks)

    def record_trade_result(self, pnl: float, symbol: str = "") -> None:
        """Feed a closed trade into today's stats. pnl <= 0 counts as loss."""
        with self._lock:
            self._roll_day()
            self._daily.trade_count += 1
            if pnl > 0:
                self._daily.total_profit += pnl
            else:
                self._daily.total_loss += abs(pnl)
            stats = self._daily
        if pnl > 0:
            logger.info("Profitable trade %s: +%.2f", symbol, pnl)
        else:
            logger.warning("Losing trade %s: %.2f", symbol, pnl)
        trade_event("risk_result", symbol=symbol, pnl=round(pnl, 4),
                    daily_loss=round(stats.total_loss, 4), daily_profit=round(stats.total_profit, 4))

    def snapshot(self) -> dict:
        """Daily stats and the limits currently in force."""
        c = self.config
        with self._lock:
            self._roll_day()
            d = self._daily
            daily = {
                "date": d.day.isoformat(),
                "total_loss": d.total_loss,
                "total_profit": d.total_profit,
                "trade_count": d.trade_count,
            }
        return {
            "daily_stats": daily,
            "limits": {
                "max_active_trades": c.max_active_trades,
                "max_trades_per_coin": c.max_trades_per_coin,
                "daily_loss_cap_percent": c.daily_loss_cap_percent,
                "daily_loss_limit": self.daily_loss_limit(),
                "min_balance": c.default_usdt_amount,
            },
        }
