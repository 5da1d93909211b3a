import json
from datetime import datetime

import pytest

from hodlbook.formatting import format_currency
from hodlbook.portfolio import PortfolioView
from hodlbook.records import Asset, AssetHistoricValue, Price
from hodlbook.repository import open_repository

T = datetime(2024, 5, 7, 10, 0)


@pytest.fixture
def repo():
    repository = open_repository(":memory:")
    yield repository
    repository.connection.close()


def _deposit(repo, symbol, amount, when=T):
    repo.create_asset(
        Asset(symbol=symbol, name=symbol, transaction_type="deposit", amount=amount, timestamp=when)
    )


def _withdraw(repo, symbol, amount, when=T):
    repo.create_asset(
        Asset(symbol=symbol, name=symbol, transaction_type="withdraw", amount=amount, timestamp=when)
    )


def test_empty_book(repo):
    view = PortfolioView(repo, {})
    summary = view.summary()
    assert summary.total_invested_raw == 0
    assert summary.current_value_raw == 0
    assert summary.is_positive is True
    assert view.holdings().empty is True
    assert view.performance().empty is True


def test_summary_uses_recorded_price_for_cost(repo):
    repo.create_price(Price(symbol="BTC", currency="USD", price=100.0, timestamp=T))
    _deposit(repo, "BTC", 2.0)
    summary = PortfolioView(repo, {"BTC": 150.0}).summary()
    assert summary.total_invested_raw == pytest.approx(2.0 * 100.0)
    assert summary.current_value_raw == pytest.approx(2.0 * 150.0)
    assert summary.total_pnl_raw == pytest.approx(
        summary.current_value_raw - summary.total_invested_raw
    )
    assert summary.is_positive is True
    assert summary.total_invested == format_currency(summary.total_invested_raw, "USD")


def test_summary_negative_when_price_falls(repo):
    repo.create_price(Price(symbol="ETH", currency="USD", price=50.0, timestamp=T))
    _deposit(repo, "ETH", 4.0)
    summary = PortfolioView(repo, {"ETH": 10.0}).summary()
    assert summary.total_pnl_raw < 0
    assert summary.is_positive is False
    assert summary.total_pnl.startswith("-$")


def test_holdings_sorting_and_allocation(repo):
    _deposit(repo, "BTC", 2.0)
    _deposit(repo, "ETH", 10.0)
    view = PortfolioView(repo, {"BTC": 150.0, "ETH": 20.0})

    by_value = view.holdings("value").holdings
    assert [row.symbol for row in by_value] == ["BTC", "ETH"]
    assert sum(row.alloc_raw for row in by_value) == pytest.approx(100.0)

    by_amount = view.holdings("amount").holdings
    assert [row.symbol for row in by_amount] == ["ETH", "BTC"]

    by_symbol = view.holdings("symbol").holdings
    assert [row.symbol for row in by_symbol] == sorted(row.symbol for row in by_symbol)

    fallback = view.holdings("unknown").holdings
    assert [row.symbol for row in fallback] == [row.symbol for row in by_value]


def test_holdings_skip_emptied_positions(repo):
    _deposit(repo, "SOL", 1.0)
    _withdraw(repo, "SOL", 1.0, datetime(2024, 5, 8))
    _deposit(repo, "BTC", 1.0)
    table = PortfolioView(repo, {"BTC": 10.0, "SOL": 5.0}).holdings()
    assert [row.symbol for row in table.holdings] == ["BTC"]
    assert table.empty is False


def test_performance_totals_match_rows(repo):
    repo.create_price(Price(symbol="BTC", currency="USD", price=100.0, timestamp=T))
    repo.create_price(Price(symbol="ETH", currency="USD", price=30.0, timestamp=T))
    _deposit(repo, "BTC", 2.0)
    _deposit(repo, "ETH", 10.0)
    table = PortfolioView(repo, {"BTC": 150.0, "ETH": 20.0}).performance("pnl")

    pnls = [row.pnl_raw for row in table.assets]
    assert pnls == sorted(pnls, reverse=True)
    total_cost = sum(row.cost_raw for row in table.assets)
    total_value = sum(row.value_raw for row in table.assets)
    assert table.total_cost_basis == format_currency(total_cost, "USD")
    assert table.total_value == format_currency(total_value, "USD")
    assert table.total_pnl == format_currency(total_value - total_cost, "USD")
    for row in table.assets:
        assert row.pnl_raw == pytest.approx(row.value_raw - row.cost_raw)


def test_chart_trims_leading_empty_days(repo):
    _deposit(repo, "BTC", 2.0)
    view = PortfolioView(repo, {"BTC": 150.0})
    chart = view.chart("7d", now=datetime(2024, 5, 10, 12, 0))
    assert chart.labels[0] == "May 7"
    assert chart.labels[-1] == "May 10"
    assert len(chart.values) == len(chart.labels)
    assert all(value == pytest.approx(2.0 * 150.0) for value in chart.values)
    assert chart.labels_json == json.dumps(chart.labels)


def test_chart_prefers_historic_value(repo):
    _deposit(repo, "BTC", 2.0)
    repo.insert_historic_value(
        AssetHistoricValue(symbol="BTC", value=200.0, timestamp=datetime(2024, 5, 9, 1, 0))
    )
    chart = PortfolioView(repo, {"BTC": 150.0}).chart("7d", now=datetime(2024, 5, 10, 12, 0))
    by_label = dict(zip(chart.labels, chart.values))
    assert by_label["May 9"] == pytest.approx(2.0 * 200.0)
    assert by_label["May 10"] == pytest.approx(2.0 * 150.0)