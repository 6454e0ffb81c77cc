"""
Flat JSON snapshot {stats, balance, trades, last_update} for paper trading runs.
Written atomically (temp file + replace) so a crash never leaves half a file.
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from signal_engine.analytics.metrics import TradeStats
from signal_engine.core.types import Trade

logger = logging.getLogger("signal_engine.storage")


@dataclass
class Snapshot:
    balance: float
    stats: TradeStats = field(default_factory=TradeStats)
    trades: List[Trade] = field(default_factory=list)
    last_update: Optional[str] = None


class SnapshotStore:

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, snapshot: Snapshot) -> None:
        data = {
            "stats": snapshot.stats.to_dict(),
            "balance": snapshot.balance,
            "trades": [t.to_dict() for t in snapshot.trades],
            "last_update": datetime.now(timezone.utc).isoformat(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(f".tmp_{os.getpid()}")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)
        logger.debug("Snapshot saved: %s (%d trades)", self.path, len(snapshot.trades))

    def load(self) -> Optional[Snapshot]:
        """Return the saved snapshot, or None if there is none or it cannot be read."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            snapshot = Snapshot(
                balance=float(data["balance"]),
                stats=TradeStats.from_dict(data.get("stats", {})),
                trades=[Trade.from_dict(t) for t in data.get("trades", [])],
                last_update=data.get("last_update"),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Could not load snapshot %s, starting fresh: %s", self.path, e)
            return None
        logger.info("Snapshot loaded: %s (balance %.2f, %d trades)", self.path, snapshot.balance, len(snapshot.trades))
        return snapshot
