import json
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from hodlbook.exchanges_view import (
    ExchangeForm,
    ExchangeQuery,
    ExchangesView,
    Toast,
)
from hodlbook.formatting import format_currency, format_exchange_rate
from hodlbook.records import Asset, Exchange


class FakeRepository:
    def __init__(self, assets=None, exchanges=None):
        self.assets = list(assets or [])
        self.exchanges = {}
        self._next_id = 1
        for ex in exchanges or []:
            self.create_exchange(ex)

    def get_all_assets(self):
        return sorted(self.assets, key=lambda a: a.timestamp, reverse=True)

    def get_all_exchanges(self):
        return sorted(self.exchanges.values(), key=lambda e: e.timestamp, reverse=True)

    def get_unique_symbols(self):
        symbols = {a.symbol for a in self.assets}
        for ex in self.exchanges.values():
            symbols.update((ex.from_symbol, ex.to_symbol))
        return sorted(symbols)

    def create_exchange(self, exchange):
        exchange.id = self._next_id
        self._next_id += 1
        self.exchanges[exchange.id] = replace(exchange)
        return exchange

    def get_exchange_by_id(self, exchange_id):
        return replace(self.exchanges[exchange_id])

    def update_exchange(self, exchange):
        self.exchanges[exchange.id] = replace(exchange)

    def delete_exchange(self, exchange_id):
        if exchange_id not in self.exchanges:
            raise KeyError(exchange_id)
        del self.exchanges[exchange_id]


class FakeFetcher:
    def __init__(self, prices=None, fail=False):
        self.prices = prices or {}
        self.fail = fail

    def fetch_many(self, *quotes):
        if self.fail:
            raise RuntimeError("unavailable")
        for quote in quotes:
            quote.value = self.prices.get(quote.symbol, 0.0)


BASE = datetime(2024, 3, 10, 12, 0)


def make_view(exchanges=None, assets=None, cache=None, fetcher=None):
    repo = FakeRepository(assets=assets, exchanges=exchanges)
    view = ExchangesView(repo, cache if cache is not None else {}, fetcher or FakeFetcher())
    return view, repo


def valid_form(**changes):
    form = ExchangeForm(
        from_symbol="BTC",
        from_amount="1",
        to_symbol="ETH",
        to_amount="15",
        fee="0.001",
        fee_currency="BTC",
        timestamp="2024-03-10T12:30",
        notes="test exchange",
    )
    return replace(form, **changes)


def test_toast_header_matches_trigger_format():
    assert Toast("Prices refreshed", "success").as_header() == (
        '{"show-toast": {"message": "Prices refreshed", "type": "success"}}'
    )
    assert json.loads(Toast("Invalid form data").as_header())["show-toast"]["type"] == "error"


def test_table_row_rates_and_pnl():
    ex = Exchange(from_symbol="USDT", from_amount=100.0, to_symbol="BTC", to_amount=2.0, timestamp=BASE)
    view, _ = make_view([ex], cache={"USDT": 1.0, "BTC": 60.0})
    data = view.table()
    assert len(data.exchanges) == 1
    row = data.exchanges[0]
    assert row.rate == format_exchange_rate(100.0 / 2.0)
    assert row.rate_pair == "BTCUSDT"
    assert row.market_rate == format_exchange_rate(60.0 / 1.0)
    assert row.market_rate_pair == "BTCUSDT"
    assert row.pnl_positive is True
    assert data.total_pnl_usd == row.pnl_usd
    assert data.total_pnl_percent == row.pnl_percent
    assert row.timestamp_raw == "2024-03-10T12:00"
    assert data.toast is None


def test_table_without_prices_has_no_market_data():
    ex = Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0, timestamp=BASE)
    view, _ = make_view([ex], cache={"BTC": 50000.0})
    row = view.table().exchanges[0]
    assert row.market_rate == ""
    assert row.pnl_usd == ""
    assert row.pnl_positive is False
    assert view.table().total_pnl_usd == format_currency(0.0, "USD")


def test_table_pagination():
    exchanges = [
        Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0,
                 timestamp=BASE + timedelta(minutes=i))
        for i in range(25)
    ]
    view, _ = make_view(exchanges)
    first = view.table(ExchangeQuery(page="1"))
    assert len(first.exchanges) == 20
    assert first.total_pages == 2
    assert first.has_next and not first.has_prev
    second = view.table(ExchangeQuery(page=2))
    assert len(second.exchanges) == 5
    assert second.has_prev and not second.has_next
    bad = view.table(ExchangeQuery(page="abc"))
    assert bad.page == 1


def test_table_empty_has_one_page():
    view, _ = make_view()
    data = view.table()
    assert data.empty is True
    assert data.total_pages == 1


def test_table_filters_by_symbol_and_date():
    exchanges = [
        Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0,
                 timestamp=BASE - timedelta(days=2)),
        Exchange(from_symbol="ETH", from_amount=15.0, to_symbol="SOL", to_amount=300.0, timestamp=BASE),
    ]
    view, _ = make_view(exchanges)
    by_from = view.table(ExchangeQuery(from_symbol="BTC"))
    assert [r.from_symbol for r in by_from.exchanges] == ["BTC"]
    by_to = view.table(ExchangeQuery(to_symbol="SOL"))
    assert [r.to_symbol for r in by_to.exchanges] == ["SOL"]
    by_date = view.table(ExchangeQuery(from_date="2024-03-09", to_date="2024-03-10"))
    assert [r.to_symbol for r in by_date.exchanges] == ["SOL"]


def test_table_newest_first():
    exchanges = [
        Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0, timestamp=BASE),
        Exchange(from_symbol="BTC", from_amount=2.0, to_symbol="ETH", to_amount=30.0,
                 timestamp=BASE + timedelta(days=1)),
    ]
    view, _ = make_view(exchanges)
    raws = [r.from_amount_raw for r in view.table().exchanges]
    assert raws == [2.0, 1.0]


def test_create_stores_exchange():
    view, repo = make_view()
    data = view.create(valid_form())
    assert data.toast is None
    assert len(data.exchanges) == 1
    stored = repo.get_all_exchanges()[0]
    assert stored.from_symbol == "BTC"
    assert stored.to_amount == 15.0
    assert stored.timestamp == datetime(2024, 3, 10, 12, 30)


@pytest.mark.parametrize(
    "changes, message",
    [
        ({"to_symbol": "BTC"}, "From and To symbols must be different"),
        ({"timestamp": "10/03/2024"}, "Invalid date format"),
        ({"from_symbol": ""}, "Invalid form data"),
        ({"to_amount": "abc"}, "Invalid form data"),
    ],
)
def test_create_rejects_invalid_forms(changes, message):
    view, repo = make_view()
    data = view.create(valid_form(**changes))
    assert data.toast == Toast(message)
    assert repo.get_all_exchanges() == []


def test_update_changes_exchange():
    ex = Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=30000.0, timestamp=BASE)
    view, repo = make_view([ex])
    data = view.update(str(ex.id), valid_form(to_amount="31000"))
    assert data.toast is None
    assert repo.get_exchange_by_id(ex.id).to_amount == 31000.0


def test_update_errors():
    view, _ = make_view()
    assert view.update("x", valid_form()).toast == Toast("Invalid exchange ID")
    assert view.update(99, valid_form()).toast == Toast("Exchange not found")


def test_delete_and_invalid_id():
    ex = Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0, timestamp=BASE)
    view, repo = make_view([ex])
    assert view.delete("nope").toast == Toast("Invalid exchange ID")
    data = view.delete(str(ex.id))
    assert data.empty is True
    assert repo.get_all_exchanges() == []
    assert view.delete(ex.id).toast == Toast("Failed to delete exchange")


def test_bulk_delete_counts_deleted():
    exchanges = [
        Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0, timestamp=BASE)
        for _ in range(3)
    ]
    view, repo = make_view(exchanges)
    data = view.bulk_delete([1, 2, 42])
    assert data.toast == Toast("2 exchanges deleted", "success")
    assert [ex.id for ex in repo.get_all_exchanges()] == [3]
    assert view.bulk_delete([]).toast == Toast("No exchanges selected")


def test_refresh_prices_fills_cache():
    ex = Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0, timestamp=BASE)
    cache = {}
    view, _ = make_view([ex], cache=cache, fetcher=FakeFetcher({"BTC": 50000.0, "ETH": 3000.0}))
    data = view.refresh_prices()
    assert data.toast == Toast("Prices refreshed", "success")
    assert cache == {"BTC": 50000.0, "ETH": 3000.0}
    assert data.exchanges[0].market_rate_pair == "ETHBTC"


def test_refresh_prices_failure_reports_toast():
    ex = Exchange(from_symbol="BTC", from_amount=1.0, to_symbol="ETH", to_amount=15.0, timestamp=BASE)
    cache = {}
    view, _ = make_view([ex], cache=cache, fetcher=FakeFetcher(fail=True))
    assert view.refresh_prices().toast == Toast("Failed to fetch prices")
    assert cache == {}


def test_index_data_and_holdings():
    assets = [Asset(symbol="BTC", transaction_type="deposit", amount=2.0, timestamp=BASE)]
    ex = Exchange(from_symbol="BTC", from_amount=0.5, to_symbol="ETH", to_amount=7.5,
                  timestamp=BASE + timedelta(hours=1))
    view, _ = make_view([ex], assets=assets, cache={"BTC": 50000.0})
    page = view.index_data()
    assert page.active_page == "exchanges"
    assert page.symbols == ["BTC", "ETH"]
    assert json.loads(page.holdings_json) == {"BTC": 1.5, "ETH": 7.5}
    assert json.loads(page.prices_json) == {"BTC": 50000}
    assert view.holdings() == {"BTC": 1.5, "ETH": 7.5}