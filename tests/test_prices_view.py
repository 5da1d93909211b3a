from datetime import datetime

import pytest

from hodlbook.formatting import format_amount, format_price
from hodlbook.prices_view import PricesView
from hodlbook.records import Asset, Exchange
from hodlbook.repository import open_repository

T = datetime(2024, 3, 1, 9, 0)


@pytest.fixture
def repo():
    repository = open_repository(":memory:")
    yield repository
    repository.connection.close()


def test_empty_table(repo):
    table = PricesView(repo, {}).table()
    assert table.prices == []
    assert table.empty is True


def test_all_symbols_unions_assets_and_exchanges(repo):
    repo.create_asset(Asset(symbol="BTC", name="Bitcoin", transaction_type="deposit", amount=1.0, timestamp=T))
    repo.create_asset(Asset(symbol="BTC", name="Bitcoin", transaction_type="deposit", amount=2.0, timestamp=T))
    repo.create_exchange(
        Exchange(from_symbol="BTC", to_symbol="ETH", from_amount=1.0, to_amount=15.0, timestamp=T)
    )
    symbols = PricesView(repo, {}).all_symbols()
    assert symbols == ["BTC", "ETH"]


def test_table_rows(repo):
    repo.create_asset(Asset(symbol="BTC", name="Bitcoin", transaction_type="deposit", amount=2.0, timestamp=T))
    repo.create_exchange(
        Exchange(from_symbol="BTC", to_symbol="ETH", from_amount=1.0, to_amount=15.0, timestamp=T)
    )
    cache = {"BTC": 100.0, "ETH": 5.0}
    table = PricesView(repo, cache).table()

    rows = {row.symbol: row for row in table.prices}
    assert rows["BTC"].name == "Bitcoin"
    assert rows["ETH"].name == "ETH"
    assert rows["BTC"].value_raw == pytest.approx((2.0 - 1.0) * 100.0)
    assert rows["ETH"].value_raw == pytest.approx(15.0 * 5.0)
    assert rows["ETH"].price == format_price(5.0)
    assert rows["ETH"].holdings == format_amount(15.0)
    values = [row.value_raw for row in table.prices]
    assert values == sorted(values, reverse=True)
    assert table.empty is False


def test_missing_price_gives_zero_value(repo):
    repo.create_asset(Asset(symbol="XYZ", name="", transaction_type="deposit", amount=3.0, timestamp=T))
    (row,) = PricesView(repo, None).table().prices
    assert row.price_raw == 0
    assert row.value_raw == 0
    assert row.price == "$0"
    assert row.name == "XYZ"