"""Filter stage interface and per-stage counters."""

from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from signal_engine.core.types import FilterOutcome, Signal


@dataclass
class FilterStats:
    """Running counters for one stage."""
    total_checks: int = 0
    passed: int = 0
    failed: int = 0
    fail_reasons: Dict[str, int] = field(default_factory=dict)
    last_update: Optional[datetime] = None

    def record(self, outcome: FilterOutcome, failed_checks: Iterable[str] = ()) -> None:
        self.total_checks += 1
        self.last_update = datetime.now(timezone.utc)
        if outcome.passed:
            self.passed += 1
            return
        self.failed += 1
        for name in failed_checks:
            self.fail_reasons[name] = self.fail_reasons.get(name, 0) + 1

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total_checks * 100 if self.total_checks else 0.0

    def to_dict(self) -> dict:
        top = sorted(self.fail_reasons.items(), key=lambda kv: kv[1], reverse=True)[:3]
        return {
            "total_checks": self.total_checks,
            "passed": self.passed,
            "failed": self.failed,
            "pass_rate": round(self.pass_rate, 2),
            "top_fail_reasons": [{"reason": r, "count": c} for r, c in top],
            "last_update": self.last_update.isoformat() if self.last_update else None,
        }


class FilterStage(ABC):
    """
    One gate in the approval pipeline. check() returns an outcome for every expected
    failure mode instead of raising; `context` holds the outcomes of earlier stages.
    """

    name: str = "stage"
    label: str = "Stage"

    def __init__(self) -> None:
        self.stats = FilterStats()
        self._stats_lock = threading.Lock()

    @abstractmethod
    def check(self, signal: Signal, context: Dict[str, FilterOutcome]) -> FilterOutcome:
        pass

    def _record(self, outcome: FilterOutcome, failed_checks: Iterable[str] = ()) -> FilterOutcome:
        with self._stats_lock:
            self.stats.record(outcome, failed_checks)
        return outcome
