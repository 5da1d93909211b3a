"""Data behind the portfolio page: summary, chart, holdings and performance."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from hodlbook.dashboard import ChartData, PortfolioCalculator
from hodlbook.formatting import (
    format_amount,
    format_currency,
    format_percent,
    format_percent_no_sign,
    format_price,
    parse_days,
)


@dataclass
class PortfolioSummaryData:
    total_invested: str
    total_invested_raw: float
    current_value: str
    current_value_raw: float
    total_pnl: str
    total_pnl_raw: float
    total_pnl_pct: str
    is_positive: bool


@dataclass
class HoldingRow:
    symbol: str
    amount: str
    amount_raw: float
    price: str
    price_raw: float
    value: str
    value_raw: float
    change: str
    change_raw: float
    allocation: str
    alloc_raw: float
    positive: bool


@dataclass
class HoldingsTableData:
    holdings: list[HoldingRow]
    total_value: str
    empty: bool


@dataclass
class PerformanceRow:
    symbol: str
    cost_basis: str
    cost_raw: float
    value: str
    value_raw: float
    pnl: str
    pnl_raw: float
    pnl_pct: str
    pnl_pct_raw: float
    positive: bool


@dataclass
class PerformanceTableData:
    assets: list[PerformanceRow]
    total_cost_basis: str
    total_value: str
    total_pnl: str
    total_pnl_pct: str
    is_positive: bool
    empty: bool


def _pct(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


_HOLDING_SORTS = {
    "value": (lambda row: row.value_raw, True),
    "amount": (lambda row: row.amount_raw, True),
    "change": (lambda row: row.change_raw, True),
    "allocation": (lambda row: row.alloc_raw, True),
    "symbol": (lambda row: row.symbol, False),
}

_PERFORMANCE_SORTS = {
    "value": (lambda row: row.value_raw, True),
    "pnl": (lambda row: row.pnl_raw, True),
    "pnl_pct": (lambda row: row.pnl_pct_raw, True),
    "symbol": (lambda row: row.symbol, False),
}


class PortfolioView:
    """Portfolio figures computed from the book and the live price cache."""

    def __init__(self, repository, price_cache: Mapping[str, float] | None) -> None:
        self.repository = repository
        self.calculator = PortfolioCalculator(repository, price_cache)

    def _price(self, symbol: str) -> float:
        return self.calculator.price_cache.get(symbol, 0.0)

    def summary(self) -> PortfolioSummaryData:
        """Invested cost of the positive holdings against their current value."""
        holdings, current_value = self.calculator.portfolio()
        cost_basis = self.calculator.cost_basis(self.repository.get_all_assets())

        total_invested = sum(
            cost_basis.get(symbol, 0.0) for symbol, amount in holdings.items() if amount > 0
        )
        total_pnl = current_value - total_invested
        return PortfolioSummaryData(
            total_invested=format_currency(total_invested, "USD"),
            total_invested_raw=total_invested,
            current_value=format_currency(current_value, "USD"),
            current_value_raw=current_value,
            total_pnl=format_currency(total_pnl, "USD"),
            total_pnl_raw=total_pnl,
            total_pnl_pct=format_percent(_pct(total_pnl, total_invested)),
            is_positive=total_pnl >= 0,
        )

    def chart(self, range_param: str = "30d", now: datetime | None = None) -> ChartData:
        return self.calculator.chart(parse_days(range_param), now)

    def holdings(self, sort_by: str = "value") -> HoldingsTableData:
        """Rows for every positive holding, with allocation share of the total."""
        holdings, total_value = self.calculator.portfolio()
        cost_basis = self.calculator.cost_basis(self.repository.get_all_assets())

        rows: list[HoldingRow] = []
        for symbol, amount in holdings.items():
            if amount <= 0:
                continue
            price = self._price(symbol)
            value = amount * price
            cost = cost_basis.get(symbol, 0.0)
            pnl = value - cost
            pnl_pct = _pct(pnl, cost)
            alloc_pct = _pct(value, total_value)
            rows.append(
                HoldingRow(
                    symbol=symbol,
                    amount=format_amount(amount),
                    amount_raw=amount,
                    price=format_price(price),
                    price_raw=price,
                    value=format_currency(value, "USD"),
                    value_raw=value,
                    change=format_percent(pnl_pct),
                    change_raw=pnl_pct,
                    allocation=format_percent_no_sign(alloc_pct),
                    alloc_raw=alloc_pct,
                    positive=pnl >= 0,
                )
            )

        key, descending = _HOLDING_SORTS.get(sort_by, _HOLDING_SORTS["value"])
        rows.sort(key=key, reverse=descending)
        return HoldingsTableData(
            holdings=rows,
            total_value=format_currency(total_value, "USD"),
            empty=not rows,
        )

    def performance(self, sort_by: str = "value") -> PerformanceTableData:
        """Cost basis, value and gain per positive holding, with totals."""
        holdings, _ = self.calculator.portfolio()
        cost_basis = self.calculator.cost_basis(self.repository.get_all_assets())

        rows: list[PerformanceRow] = []
        total_cost = total_value = total_pnl = 0.0
        for symbol, amount in holdings.items():
            if amount <= 0:
                continue
            value = amount * self._price(symbol)
            cost = cost_basis.get(symbol, 0.0)
            pnl = value - cost
            pnl_pct = _pct(pnl, cost)
            total_cost += cost
            total_value += value
            total_pnl += pnl
            rows.append(
                PerformanceRow(
                    symbol=symbol,
                    cost_basis=format_currency(cost, "USD"),
                    cost_raw=cost,
                    value=format_currency(value, "USD"),
                    value_raw=value,
                    pnl=format_currency(pnl, "USD"),
                    pnl_raw=pnl,
                    pnl_pct=format_percent(pnl_pct),
                    pnl_pct_raw=pnl_pct,
                    positive=pnl >= 0,
                )
            )

        key, descending = _PERFORMANCE_SORTS.get(sort_by, _PERFORMANCE_SORTS["value"])
        rows.sort(key=key, reverse=descending)
        return PerformanceTableData(
            assets=rows,
            total_cost_basis=format_currency(total_cost, "USD"),
            total_value=format_currency(total_value, "USD"),
            total_pnl=format_currency(total_pnl, "USD"),
            total_pnl_pct=format_percent(_pct(total_pnl, total_cost)),
            is_positive=total_pnl >= 0,
            empty=not rows,
        )