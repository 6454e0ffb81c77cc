"""Lot size and price tick rounding from exchange symbol info."""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SymbolFilters:
    min_qty: float = 0.001
    lot_step: float = 0.001
    price_tick: float = 0.01
    min_notional: float = 5.0

    def quantity(self, qty: float) -> float:
        return round_quantity(qty, self.min_qty, self.lot_step)

    def price(self, price: float) -> float:
        return round_price(price, self.price_tick)


def parse_symbol_filters(symbol_info: Optional[dict]) -> SymbolFilters:
    """
    Read LOT_SIZE, PRICE_FILTER and MIN_NOTIONAL from a futures exchange_info symbol entry.
    Falls back to defaults for anything missing.
    """
    defaults = SymbolFilters()
    if not symbol_info:
        return defaults
    min_qty, lot_step = defaults.min_qty, defaults.lot_step
    price_tick, min_notional = defaults.price_tick, defaults.min_notional
    for f in symbol_info.get("filters", []):
        kind = f.get("filterType")
        if kind == "LOT_SIZE":
            min_qty = float(f.get("minQty", min_qty))
            lot_step = float(f.get("stepSize", lot_step))
        elif kind == "PRICE_FILTER":
            price_tick = float(f.get("tickSize", price_tick))
        elif kind == "MIN_NOTIONAL":
            min_notional = float(f.get("notional", f.get("minNotional", min_notional)))
    return SymbolFilters(min_qty=min_qty, lot_step=lot_step, price_tick=price_tick, min_notional=min_notional)


def round_quantity(qty: float, min_qty: float, step_size: float) -> float:
    """Round down to step size; return 0 if below min_qty."""
    if qty <= 0:
        return 0.0
    # small epsilon so 0.3/0.1 style float error does not drop a whole step
    rounded = math.floor(qty / step_size + 1e-9) * step_size
    if rounded < min_qty:
        return 0.0
    return round(rounded, 8)


def round_price(price: float, tick_size: float) -> float:
    """Round price to exchange tick."""
    return round(round(price / tick_size) * tick_size, 8)
