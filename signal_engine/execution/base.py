"""Abstract exchange gateway: orders, balance, positions, prices."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from signal_engine.core.types import TradeParams

FILLED = "FILLED"
NEW = "NEW"
PARTIALLY_FILLED = "PARTIALLY_FILLED"
CANCELED = "CANCELED"


@dataclass
class OrderResult:
    """Result of placing or querying an order."""
    order_id: str
    status: str
    fill_price: Optional[float] = None
    quantity: float = 0.0
    child_order_ids: List[str] = field(default_factory=list)

    @property
    def filled(self) -> bool:
        return self.status == FILLED


@dataclass
class Balance:
    free: float
    total: float


class ExchangeGateway(ABC):
    """
    Every method raises GatewayError carrying the upstream message on failure.
    place_order is never retried by callers.
    """

    @abstractmethod
    def place_order(self, params: TradeParams) -> OrderResult:
        """Place entry or reduce-only order. Entry orders with TP/SL get reduce-only children."""
        pass

    @abstractmethod
    def cancel_order(self, symbol: str, order_id: str) -> None:
        pass

    @abstractmethod
    def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        pass

    @abstractmethod
    def get_balance(self) -> Balance:
        """Quote asset (USDT) balance."""
        pass

    @abstractmethod
    def get_open_positions(self) -> List[dict]:
        """Exchange-side open positions: [{symbol, side, quantity, entry_price, unrealized_pnl}]."""
        pass

    @abstractmethod
    def get_market_price(self, symbol: str) -> float:
        pass

    def attach_protective_orders(self, params: TradeParams, quantity: Optional[float] = None) -> List[str]:
        """Place reduce-only TP/SL for an entry that filled after placement. Default: none."""
        return []
