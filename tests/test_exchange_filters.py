"""Unit tests for utils.exchange_filters."""

import pytest

from signal_engine.utils.exchange_filters import SymbolFilters, parse_symbol_filters, round_price, round_quantity


def test_round_quantity_floors_to_step():
    assert round_quantity(0.12345, 0.001, 0.001) == 0.123
    assert round_quantity(0.3, 0.1, 0.1) == pytest.approx(0.3)
    assert round_quantity(0.0005, 0.001, 0.001) == 0.0
    assert round_quantity(-1.0, 0.001, 0.001) == 0.0


def test_round_price_to_tick():
    assert round_price(100.4999, 0.01) == 100.5
    assert round_price(2501.237, 0.1) == 2501.2


def test_parse_symbol_filters():
    info = {"filters": [
        {"filterType": "PRICE_FILTER", "tickSize": "0.10"},
        {"filterType": "LOT_SIZE", "minQty": "0.01", "stepSize": "0.01"},
        {"filterType": "MIN_NOTIONAL", "notional": "20"},
    ]}
    filters = parse_symbol_filters(info)
    assert filters == SymbolFilters(min_qty=0.01, lot_step=0.01, price_tick=0.1, min_notional=20.0)
    assert filters.quantity(1.239) == 1.23
    assert filters.price(99.96) == 100.0


def test_missing_symbol_uses_defaults():
    assert parse_symbol_filters(None) == SymbolFilters()
    assert parse_symbol_filters({"filters": []}) == SymbolFilters()
