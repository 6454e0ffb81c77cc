"""Abstract strategy: signal generation from a bar series."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional

import pandas as pd

from signal_engine.core.types import Signal


class BaseStrategy(ABC):
    """Strategy inspects bars up to and including `index` and may return a Signal."""

    name: str = "base"

    @abstractmethod
    def get_signal(self, df: pd.DataFrame, index: int, symbol: str, timeframe: str) -> Optional[Signal]:
        """
        Return a Signal for bar `index` or None.
        Must not read bars after `index` (no lookahead).
        """
        pass
