"""Portfolio arithmetic and the data behind the dashboard page."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Mapping

from hodlbook.formatting import (
    format_amount,
    format_currency,
    format_percent,
    format_price,
    parse_days,
)
from hodlbook.records import Asset, Exchange

_CHART_COLORS = (
    "#f7931a", "#627eea", "#26a17b", "#2775ca", "#e84142",
    "#8247e5", "#00d395", "#ff007a", "#2b6cb0", "#48bb78",
)
_WORST_PNL = -999999.0
_TOP_ROWS = 5


@dataclass
class SummaryData:
    total_value: str
    total_value_raw: float
    asset_count: int
    total_pnl: str
    total_pnl_raw: float
    pnl_percent: str
    is_positive: bool
    best_performer: str
    best_pnl: str


@dataclass
class ChartData:
    labels: list[str] = field(default_factory=list)
    values: list[float] = field(default_factory=list)
    labels_json: str = ""
    values_json: str = ""


@dataclass
class AllocationItem:
    symbol: str
    value: float
    percentage: float
    color: str


@dataclass
class AllocationData:
    items: list[AllocationItem]
    total_value: str


@dataclass
class HoldingItem:
    symbol: str
    amount: str
    price: str
    value: str
    value_raw: float
    change: str
    change_raw: float
    positive: bool


@dataclass
class HoldingsData:
    items: list[HoldingItem]
    empty: bool
    sort_by: str
    sort_dir: str
    endpoint: str
    target: str


@dataclass
class RecentAssetItem:
    type: str
    type_class: str
    date: str
    symbol: str = ""
    amount: str = ""
    is_exchange: bool = False
    from_symbol: str = ""
    from_amount: str = ""
    to_symbol: str = ""
    to_amount: str = ""


@dataclass
class RecentAssetsData:
    items: list[RecentAssetItem]
    empty: bool


def _type_class(tx_type: str) -> str:
    return {"deposit": "positive", "withdraw": "negative"}.get(tx_type, "neutral")


def _tally(
    assets: Iterable[Asset], exchanges: Iterable[Exchange], until: datetime | None = None
) -> dict[str, float]:
    holdings: dict[str, float] = {}
    for asset in assets:
        if until is not None and asset.timestamp > until:
            continue
        if asset.transaction_type == "deposit":
            holdings[asset.symbol] = holdings.get(asset.symbol, 0.0) + asset.amount
        elif asset.transaction_type == "withdraw":
            holdings[asset.symbol] = holdings.get(asset.symbol, 0.0) - asset.amount
    for ex in exchanges:
        if until is not None and ex.timestamp > until:
            continue
        holdings[ex.from_symbol] = holdings.get(ex.from_symbol, 0.0) - ex.from_amount
        holdings[ex.to_symbol] = holdings.get(ex.to_symbol, 0.0) + ex.to_amount
    return holdings


def _json_number(value: float) -> str:
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _json_values(values: list[float]) -> str:
    if not values:
        return "null"
    if not all(math.isfinite(v) for v in values):
        return ""
    return "[" + ",".join(_json_number(v) for v in values) + "]"


def _pct(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def _short_date(moment: datetime) -> str:
    return f"{moment:%b} {moment.day}, {moment.year}"


class PortfolioCalculator:
    """Holdings, values and average cost basis computed from the book."""

    def __init__(self, repository, price_cache: Mapping[str, float] | None) -> None:
        self.repository = repository
        self.price_cache: Mapping[str, float] = price_cache if price_cache is not None else {}

    def _price(self, symbol: str) -> float:
        return self.price_cache.get(symbol, 0.0)

    def holdings(self) -> dict[str, float]:
        """Net amount held of every symbol seen in assets and exchanges."""
        return _tally(self.repository.get_all_assets(), self.repository.get_all_exchanges())

    def holdings_at(self, target: datetime) -> dict[str, float]:
        """Net amounts counting only entries at or before the moment."""
        return _tally(
            self.repository.get_all_assets(), self.repository.get_all_exchanges(), target
        )

    def portfolio(self) -> tuple[dict[str, float], float]:
        """The holdings and the cached-price value of the positive ones."""
        holdings = self.holdings()
        total = sum(
            amount * self._price(symbol) for symbol, amount in holdings.items() if amount > 0
        )
        return holdings, total

    def price_at(self, symbol: str, timestamp: datetime) -> float:
        """The recorded USD price at the moment, else the cached price."""
        try:
            record = self.repository.get_price_at_time(symbol, "USD", timestamp)
        except Exception:
            record = None
        if record is not None:
            return record.price
        return self._price(symbol)

    def cost_basis(self, assets: Iterable[Asset]) -> dict[str, float]:
        """Average-cost basis per symbol, carried across exchanges."""
        events: list[tuple[datetime, Asset | Exchange]] = [(a.timestamp, a) for a in assets]
        events += [(ex.timestamp, ex) for ex in self.repository.get_all_exchanges()]
        events.sort(key=lambda event: event[0])

        cost: dict[str, float] = {}
        running: dict[str, float] = {}
        for _, event in events:
            if isinstance(event, Exchange):
                held = running.get(event.from_symbol, 0.0)
                if held > 0:
                    transferred = event.from_amount * (cost.get(event.from_symbol, 0.0) / held)
                    cost[event.from_symbol] = cost.get(event.from_symbol, 0.0) - transferred
                    cost[event.to_symbol] = cost.get(event.to_symbol, 0.0) + transferred
                running[event.from_symbol] = held - event.from_amount
                running[event.to_symbol] = running.get(event.to_symbol, 0.0) + event.to_amount
            elif event.transaction_type == "deposit":
                price = self.price_at(event.symbol, event.timestamp)
                cost[event.symbol] = cost.get(event.symbol, 0.0) + event.amount * price
                running[event.symbol] = running.get(event.symbol, 0.0) + event.amount
            elif event.transaction_type == "withdraw":
                held = running.get(event.symbol, 0.0)
                if held > 0:
                    average = cost.get(event.symbol, 0.0) / held
                    cost[event.symbol] = cost.get(event.symbol, 0.0) - event.amount * average
                running[event.symbol] = held - event.amount
        return cost

    def chart(self, days: int, now: datetime | None = None) -> ChartData:
        """Daily portfolio value for the last days, from the first non-zero day."""
        now = now or datetime.now()
        assets = self.repository.get_all_assets()
        exchanges = self.repository.get_all_exchanges()

        historic: dict[str, dict[str, float]] = {}
        for symbol in self.repository.get_unique_symbols():
            try:
                history = self.repository.select_historic_by_symbol(symbol)
            except Exception:
                continue
            historic[symbol] = {hp.timestamp.strftime("%Y-%m-%d"): hp.value for hp in history}

        labels: list[str] = []
        values: list[float] = []
        for offset in range(days - 1, -1, -1):
            date = now - timedelta(days=offset)
            date_key = date.strftime("%Y-%m-%d")
            end_of_day = date.replace(hour=23, minute=59, second=59, microsecond=0)
            daily = 0.0
            for symbol, amount in _tally(assets, exchanges, end_of_day).items():
                if amount <= 0:
                    continue
                price = historic.get(symbol, {}).get(date_key, 0.0)
                if price == 0:
                    price = self._price(symbol)
                daily += amount * price
            labels.append(f"{date:%b} {date.day}")
            values.append(daily)

        start = next((i for i, v in enumerate(values) if v > 0), 0)
        labels, values = labels[start:], values[start:]
        return ChartData(
            labels=labels,
            values=values,
            labels_json=json.dumps(labels) if labels else "null",
            values_json=_json_values(values),
        )

    def holding_items(self) -> list[HoldingItem]:
        """One row per positive holding with its value and gain against cost."""
        holdings, _ = self.portfolio()
        cost_basis = self.cost_basis(self.repository.get_all_assets())
        items = []
        for symbol, amount in holdings.items():
            if amount <= 0:
                continue
            price = self._price(symbol)
            value = amount * price
            cost = cost_basis.get(symbol, 0.0)
            pnl = value - cost
            pnl_pct = _pct(pnl, cost)
            items.append(
                HoldingItem(
                    symbol=symbol,
                    amount=format_amount(amount),
                    price=format_price(price),
                    value=format_currency(value, "USD"),
                    value_raw=value,
                    change=format_percent(pnl_pct),
                    change_raw=pnl_pct,
                    positive=pnl >= 0,
                )
            )
        return items


def sort_holding_items(items: list, sort_by: str, sort_dir: str) -> list:
    """Sort rows in place by asset, value or change; descending when dir is desc."""
    if sort_by == "asset":
        key = lambda item: item.symbol  # noqa: E731
    elif sort_by == "change":
        key = lambda item: item.change_raw  # noqa: E731
    else:
        key = lambda item: item.value_raw  # noqa: E731
    items.sort(key=key, reverse=sort_dir == "desc")
    return items


class DashboardView:
    """Data for the dashboard's summary, chart, allocation and tables."""

    def __init__(self, repository, price_cache: Mapping[str, float] | None) -> None:
        self.repository = repository
        self.calculator = PortfolioCalculator(repository, price_cache)

    def summary(self) -> SummaryData:
        holdings, total_value = self.calculator.portfolio()
        cost_basis = self.calculator.cost_basis(self.repository.get_all_assets())

        total_cost = total_pnl = 0.0
        best_symbol = ""
        best_pct = _WORST_PNL
        for symbol, amount in holdings.items():
            if amount <= 0:
                continue
            current = amount * self.calculator._price(symbol)
            cost = cost_basis.get(symbol, 0.0)
            pnl = current - cost
            total_cost += cost
            total_pnl += pnl
            pnl_pct = _pct(pnl, cost)
            if pnl_pct > best_pct and cost > 0 and symbol != "USD":
                best_pct = pnl_pct
                best_symbol = symbol

        return SummaryData(
            total_value=format_currency(total_value, "USD"),
            total_value_raw=total_value,
            asset_count=len(holdings),
            total_pnl=format_currency(total_pnl, "USD"),
            total_pnl_raw=total_pnl,
            pnl_percent=format_percent(_pct(total_pnl, total_cost)),
            is_positive=total_pnl >= 0,
            best_performer=best_symbol,
            best_pnl=format_percent(best_pct),
        )

    def chart(self, range_param: str = "30d", now: datetime | None = None) -> ChartData:
        return self.calculator.chart(parse_days(range_param), now)

    def allocation(self) -> AllocationData:
        holdings, total_value = self.calculator.portfolio()
        items = []
        for symbol, amount in holdings.items():
            if amount <= 0:
                continue
            value = amount * self.calculator._price(symbol)
            items.append(
                AllocationItem(
                    symbol=symbol,
                    value=value,
                    percentage=_pct(value, total_value),
                    color=_CHART_COLORS[len(items) % len(_CHART_COLORS)],
                )
            )
        items.sort(key=lambda item: item.value, reverse=True)
        return AllocationData(items=items, total_value=format_currency(total_value, "USD"))

    def holdings(self, sort_by: str = "value", sort_dir: str = "desc") -> HoldingsData:
        items = sort_holding_items(self.calculator.holding_items(), sort_by, sort_dir)[:_TOP_ROWS]
        return HoldingsData(
            items=items,
            empty=not items,
            sort_by=sort_by,
            sort_dir=sort_dir,
            endpoint="/partials/dashboard/holdings",
            target="#dashboard-holdings-container",
        )

    def transactions(self) -> RecentAssetsData:
        """The five most recent assets and exchanges, newest first."""
        entries: list[tuple[datetime, RecentAssetItem]] = []
        for asset in self.repository.get_all_assets():
            entries.append((
                asset.timestamp,
                RecentAssetItem(
                    type=asset.transaction_type,
                    type_class=_type_class(asset.transaction_type),
                    symbol=asset.symbol,
                    amount=format_amount(asset.amount),
                    date=_short_date(asset.timestamp),
                ),
            ))
        for ex in self.repository.get_all_exchanges():
            entries.append((
                ex.timestamp,
                RecentAssetItem(
                    type="exchange",
                    type_class="neutral",
                    is_exchange=True,
                    from_symbol=ex.from_symbol,
                    from_amount=format_amount(ex.from_amount),
                    to_symbol=ex.to_symbol,
                    to_amount=format_amount(ex.to_amount),
                    date=_short_date(ex.timestamp),
                ),
            ))
        entries.sort(key=lambda entry: entry[0], reverse=True)
        items = [item for _, item in entries[:_TOP_ROWS]]
        return RecentAssetsData(items=items, empty=not items)