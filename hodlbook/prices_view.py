"""Data behind the live prices page."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from hodlbook.dashboard import PortfolioCalculator
from hodlbook.formatting import format_amount, format_currency, format_price


@dataclass
class PriceRow:
    symbol: str
    name: str
    price: str
    price_raw: float
    holdings: str
    value: str
    value_raw: float


@dataclass
class PricesTableData:
    prices: list[PriceRow]
    empty: bool


class PricesView:
    """Cached prices for every symbol in the book, with the amount held."""

    def __init__(self, repository, price_cache: Mapping[str, float] | None) -> None:
        self.repository = repository
        self.calculator = PortfolioCalculator(repository, price_cache)

    def all_symbols(self) -> list[str]:
        """Every symbol found in assets and exchanges, sorted and unique."""
        symbols = set(self.repository.get_unique_symbols())
        symbols.update(self.repository.get_unique_exchange_symbols())
        return sorted(symbols)

    def table(self) -> PricesTableData:
        """One row per symbol, highest held value first."""
        holdings = self.calculator.holdings()

        names: dict[str, str] = {}
        for asset in self.repository.get_all_assets():
            names.setdefault(asset.symbol, asset.name)

        rows: list[PriceRow] = []
        for symbol in self.all_symbols():
            price = self.calculator.price_cache.get(symbol, 0.0)
            amount = holdings.get(symbol, 0.0)
            value = amount * price
            rows.append(
                PriceRow(
                    symbol=symbol,
                    name=names.get(symbol) or symbol,
                    price=format_price(price),
                    price_raw=price,
                    holdings=format_amount(amount),
                    value=format_currency(value, "USD"),
                    value_raw=value,
                )
            )
        rows.sort(key=lambda row: row.value_raw, reverse=True)
        return PricesTableData(prices=rows, empty=not rows)