"""
Binance USDT-M Futures gateway with rate-limit retry on reads.
Order placement is never retried: a timeout after submit may still have filled.
"""

from __future__ import annotations
import functools
import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, List, Optional

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException

from signal_engine.core.errors import GatewayError
from signal_engine.core.types import OrderType, TradeParams
from signal_engine.execution.base import Balance, ExchangeGateway, OrderResult, FILLED
from signal_engine.utils.exchange_filters import SymbolFilters, parse_symbol_filters

logger = logging.getLogger("signal_engine.execution.binance")


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry on 429 or 418 (rate limit)."""
    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            last_exc = None
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except BinanceAPIException as e:
                    last_exc = e
                    if e.status_code in (429, 418) and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                    else:
                        raise
            raise last_exc
        return wrapped
    return decorator


@contextmanager
def gateway_errors(action: str):
    """Translate python-binance exceptions into GatewayError with the upstream message."""
    try:
        yield
    except BinanceAPIException as e:
        logger.error("Binance %s failed: code=%s %s", action, e.code, e.message)
        raise GatewayError(f"{action} failed: {e.message}", upstream=str(e)) from e
    except BinanceRequestException as e:
        logger.error("Binance %s request error: %s", action, e)
        raise GatewayError(f"{action} failed: {e}", upstream=str(e)) from e


class BinanceFuturesGateway(ExchangeGateway):
    """Binance USDT-M Futures gateway (testnet and live)."""

    quote_asset = "USDT"

    def __init__(self, api_key: str, api_secret: str, testnet: bool = True, client: Optional[Client] = None):
        self._client = client or Client(api_key, api_secret, testnet=testnet)
        logger.info("Binance Futures: using %s", "TESTNET" if testnet else "LIVE")
        self._filters: Dict[str, SymbolFilters] = {}
        self._filters_lock = threading.Lock()

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def _read(self, method: str, **kwargs):
        return getattr(self._client, method)(**kwargs)

    def _write(self, method: str, **kwargs):
        return getattr(self._client, method)(**kwargs)

    def symbol_filters(self, symbol: str) -> SymbolFilters:
        with self._filters_lock:
            cached = self._filters.get(symbol)
        if cached is not None:
            return cached
        with gateway_errors("exchange info"):
            info = self._read("futures_exchange_info")
        entry = next((s for s in info.get("symbols", []) if s.get("symbol") == symbol), None)
        filters = parse_symbol_filters(entry)
        with self._filters_lock:
            self._filters[symbol] = filters
        return filters

    def place_order(self, params: TradeParams) -> OrderResult:
        filters = self.symbol_filters(params.symbol)
        qty = filters.quantity(params.quantity)
        if qty <= 0:
            raise GatewayError(f"quantity {params.quantity} below minimum {filters.min_qty} for {params.symbol}")
        request = {
            "symbol": params.symbol,
            "side": params.side.value,
            "quantity": str(qty),
            "newOrderRespType": "RESULT",
        }
        if params.order_type == OrderType.LIMIT:
            request.update(type="LIMIT", timeInForce=params.time_in_force, price=str(filters.price(params.entry_price)))
        else:
            request["type"] = "MARKET"
        if params.reduce_only:
            request["reduceOnly"] = "true"

        with gateway_errors("place order"):
            res = self._write("futures_create_order", **request)
        result = self._to_result(res, qty)
        logger.info(
            "Order %s %s %s qty=%s type=%s status=%s fill=%s",
            result.order_id, params.symbol, params.side.value, qty, request["type"], result.status, result.fill_price,
        )
        if result.filled and not params.reduce_only:
            result.child_order_ids = self.attach_protective_orders(params, qty)
        return result

    def attach_protective_orders(self, params: TradeParams, quantity: Optional[float] = None) -> List[str]:
        """Reduce-only TP (LIMIT) and SL (STOP_MARKET) for a filled entry. Returns the child order ids."""
        filters = self.symbol_filters(params.symbol)
        qty = quantity if quantity is not None else filters.quantity(params.quantity)
        close_side = params.side.opposite.value
        children: List[str] = []
        if params.take_profit_price:
            try:
                with gateway_errors("take profit order"):
                    res = self._write(
                        "futures_create_order", symbol=params.symbol, side=close_side, type="LIMIT",
                        timeInForce="GTC", quantity=str(qty),
                        price=str(filters.price(params.take_profit_price)), reduceOnly="true",
                    )
                children.append(str(res.get("orderId")))
            except GatewayError as e:
                logger.warning("TP order not placed for %s: %s", params.symbol, e)
        if params.stop_price:
            try:
                with gateway_errors("stop loss order"):
                    res = self._write(
                        "futures_create_order", symbol=params.symbol, side=close_side, type="STOP_MARKET",
                        stopPrice=str(filters.price(params.stop_price)), quantity=str(qty), reduceOnly="true",
                    )
                children.append(str(res.get("orderId")))
            except GatewayError as e:
                logger.warning("SL order not placed for %s: %s", params.symbol, e)
        return children

    def cancel_order(self, symbol: str, order_id: str) -> None:
        with gateway_errors("cancel order"):
            self._write("futures_cancel_order", symbol=symbol, orderId=order_id)
        logger.info("Order cancelled: %s %s", symbol, order_id)

    def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        with gateway_errors("order status"):
            res = self._read("futures_get_order", symbol=symbol, orderId=order_id)
        return self._to_result(res, float(res.get("origQty") or 0))

    def get_balance(self) -> Balance:
        with gateway_errors("balance"):
            balances = self._read("futures_account_balance")
        for b in balances:
            if b.get("asset") == self.quote_asset:
                return Balance(free=float(b.get("availableBalance", 0)), total=float(b.get("balance", 0)))
        return Balance(free=0.0, total=0.0)

    def get_open_positions(self) -> List[dict]:
        with gateway_errors("positions"):
            info = self._read("futures_position_information")
        positions = []
        for p in info:
            amt = float(p.get("positionAmt", 0.0))
            if amt == 0:
                continue
            positions.append({
                "symbol": p.get("symbol"),
                "side": "BUY" if amt > 0 else "SELL",
                "quantity": abs(amt),
                "entry_price": float(p.get("entryPrice", 0)),
                "unrealized_pnl": float(p.get("unRealizedProfit", 0)),
            })
        return positions

    def get_market_price(self, symbol: str) -> float:
        with gateway_errors("ticker"):
            ticker = self._read("futures_symbol_ticker", symbol=symbol)
        return float(ticker["price"])

    @staticmethod
    def _to_result(res: dict, qty: float) -> OrderResult:
        avg = float(res.get("avgPrice") or 0) or float(res.get("price") or 0)
        executed = float(res.get("executedQty") or 0)
        return OrderResult(
            order_id=str(res.get("orderId")),
            status=res.get("status", ""),
            fill_price=avg or None,
            quantity=executed if res.get("status") == FILLED and executed else qty,
        )
