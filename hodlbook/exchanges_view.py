"""Data behind the exchanges page: the swap table, its edits and price refreshes."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Iterable, MutableMapping

from hodlbook.dashboard import PortfolioCalculator
from hodlbook.formatting import (
    format_amount,
    format_currency,
    format_exchange_rate,
    format_percent,
)
from hodlbook.records import Exchange, PriceQuote

_PAGE_SIZE = 20
_DATE_FORMAT = "%Y-%m-%d"
_FORM_TIME_FORMAT = "%Y-%m-%dT%H:%M"


@dataclass(frozen=True)
class Toast:
    """A notification shown to the user after an action."""

    message: str
    type: str = "error"

    def as_header(self) -> str:
        """The HX-Trigger header value that shows this toast."""
        return json.dumps({"show-toast": {"message": self.message, "type": self.type}})


@dataclass
class ExchangeQuery:
    """Filters and page of the exchanges table."""

    from_symbol: str = ""
    to_symbol: str = ""
    from_date: str = ""
    to_date: str = ""
    page: str | int = "1"


@dataclass
class ExchangeForm:
    """The submitted fields of a new or edited exchange."""

    from_symbol: str = ""
    from_amount: float | str = 0.0
    to_symbol: str = ""
    to_amount: float | str = 0.0
    fee: float | str = 0.0
    fee_currency: str = ""
    timestamp: str = ""
    notes: str = ""


@dataclass
class ExchangeRow:
    id: int | None
    from_symbol: str
    from_amount: str
    from_amount_raw: float
    to_symbol: str
    to_amount: str
    to_amount_raw: float
    fee: str
    fee_raw: float
    fee_currency: str
    rate: str
    rate_pair: str
    market_rate: str
    market_rate_pair: str
    pnl_usd: str
    pnl_percent: str
    pnl_positive: bool
    timestamp: str
    timestamp_raw: str
    notes: str


@dataclass
class ExchangesTableData:
    exchanges: list[ExchangeRow]
    empty: bool
    page: int
    total_pages: int
    has_prev: bool
    has_next: bool
    total_pnl_usd: str
    total_pnl_percent: str
    total_pnl_positive: bool
    toast: Toast | None = None


@dataclass
class ExchangesPageData:
    title: str
    page_title: str
    active_page: str
    symbols: list[str] = field(default_factory=list)
    holdings_json: str = "{}"
    prices_json: str = "{}"


def _json_number(value: float) -> str:
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _json_map(values: dict[str, float]) -> str:
    return "{" + ",".join(
        f"{json.dumps(key)}:{_json_number(float(values[key]))}" for key in sorted(values)
    ) + "}"


def _parse_page(raw: str | int) -> int:
    try:
        page = int(raw)
    except (TypeError, ValueError):
        page = 0
    return max(page, 1)


def _parse_date(raw: str) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, _DATE_FORMAT)
    except ValueError:
        return None


def _parse_id(raw: str | int) -> int:
    return int(str(raw).strip())


@dataclass
class _Bound:
    from_symbol: str
    from_amount: float
    to_symbol: str
    to_amount: float
    fee: float
    fee_currency: str
    timestamp: str
    notes: str


def _bind(form: ExchangeForm | None) -> _Bound:
    """Check the required fields and convert the amounts; raise ValueError if invalid."""
    if form is None:
        raise ValueError("missing form")
    from_amount = float(form.from_amount or 0)
    to_amount = float(form.to_amount or 0)
    fee = float(form.fee or 0)
    if not form.from_symbol or not form.to_symbol or not form.timestamp:
        raise ValueError("missing required field")
    if from_amount == 0 or to_amount == 0:
        raise ValueError("missing required amount")
    return _Bound(
        from_symbol=form.from_symbol,
        from_amount=from_amount,
        to_symbol=form.to_symbol,
        to_amount=to_amount,
        fee=fee,
        fee_currency=form.fee_currency,
        timestamp=form.timestamp,
        notes=form.notes,
    )


class ExchangesView:
    """Lists, edits and prices the exchanges of the book."""

    def __init__(self, repository, price_cache: MutableMapping[str, float] | None, fetcher) -> None:
        self.repository = repository
        self.price_cache: MutableMapping[str, float] = price_cache if price_cache is not None else {}
        self.fetcher = fetcher
        self.calculator = PortfolioCalculator(repository, self.price_cache)

    def index_data(self) -> ExchangesPageData:
        """Symbols, holdings and cached prices for the exchange form."""
        prices = {symbol: self.price_cache.get(symbol, 0.0) for symbol in list(self.price_cache)}
        return ExchangesPageData(
            title="Exchanges",
            page_title="Exchanges",
            active_page="exchanges",
            symbols=list(self.repository.get_unique_symbols()),
            holdings_json=_json_map(self.holdings()),
            prices_json=_json_map(prices),
        )

    def holdings(self) -> dict[str, float]:
        """Net amount held of every symbol."""
        return self.calculator.holdings()

    def _filtered(self, query: ExchangeQuery) -> list[Exchange]:
        start = _parse_date(query.from_date)
        end_day = _parse_date(query.to_date)
        end = end_day + timedelta(days=1) - timedelta(seconds=1) if end_day else None

        def keep(ex: Exchange) -> bool:
            if query.from_symbol and ex.from_symbol != query.from_symbol:
                return False
            if query.to_symbol and ex.to_symbol != query.to_symbol:
                return False
            if start is not None and ex.timestamp < start:
                return False
            if end is not None and ex.timestamp > end:
                return False
            return True

        matching = [ex for ex in self.repository.get_all_exchanges() if keep(ex)]
        matching.sort(key=lambda ex: ex.timestamp, reverse=True)
        return matching

    def _row(self, ex: Exchange) -> tuple[ExchangeRow, float, float]:
        rate = rate_pair = market_rate = market_pair = pnl_usd = pnl_percent = ""
        pnl_positive = False
        cost_usd = value_usd = 0.0

        if ex.from_amount > 0 and ex.to_amount > 0:
            rate = format_exchange_rate(ex.from_amount / ex.to_amount)
            rate_pair = ex.to_symbol + ex.from_symbol
            if ex.from_symbol in self.price_cache and ex.to_symbol in self.price_cache:
                from_price = self.price_cache[ex.from_symbol]
                to_price = self.price_cache[ex.to_symbol]
                if from_price > 0:
                    market_rate = format_exchange_rate(to_price / from_price)
                    market_pair = ex.to_symbol + ex.from_symbol
                    cost_usd = ex.from_amount * from_price
                    value_usd = ex.to_amount * to_price
                    pnl = value_usd - cost_usd
                    pnl_pct = (pnl / cost_usd) * 100 if cost_usd > 0 else 0.0
                    pnl_positive = pnl >= 0
                    pnl_usd = format_currency(pnl, "USD")
                    pnl_percent = format_percent(pnl_pct)

        row = ExchangeRow(
            id=ex.id,
            from_symbol=ex.from_symbol,
            from_amount=format_amount(ex.from_amount),
            from_amount_raw=ex.from_amount,
            to_symbol=ex.to_symbol,
            to_amount=format_amount(ex.to_amount),
            to_amount_raw=ex.to_amount,
            fee=format_amount(ex.fee),
            fee_raw=ex.fee,
            fee_currency=ex.fee_currency,
            rate=rate,
            rate_pair=rate_pair,
            market_rate=market_rate,
            market_rate_pair=market_pair,
            pnl_usd=pnl_usd,
            pnl_percent=pnl_percent,
            pnl_positive=pnl_positive,
            timestamp=ex.timestamp.strftime("%b %d, %Y %H:%M"),
            timestamp_raw=ex.timestamp.strftime(_FORM_TIME_FORMAT),
            notes=ex.notes,
        )
        return row, cost_usd, value_usd

    def table(self, query: ExchangeQuery | None = None) -> ExchangesTableData:
        """One page of exchanges with market comparison and total gain."""
        return self._table(query, None)

    def _table(self, query: ExchangeQuery | None, toast: Toast | None) -> ExchangesTableData:
        query = query or ExchangeQuery()
        page = _parse_page(query.page)
        matching = self._filtered(query)
        total = len(matching)
        total_pages = max((total + _PAGE_SIZE - 1) // _PAGE_SIZE, 1)
        offset = (page - 1) * _PAGE_SIZE

        rows: list[ExchangeRow] = []
        total_cost = total_value = 0.0
        for ex in matching[offset:offset + _PAGE_SIZE]:
            row, cost, value = self._row(ex)
            rows.append(row)
            total_cost += cost
            total_value += value

        total_pnl = total_value - total_cost
        total_pct = (total_pnl / total_cost) * 100 if total_cost > 0 else 0.0
        return ExchangesTableData(
            exchanges=rows,
            empty=not rows,
            page=page,
            total_pages=total_pages,
            has_prev=page > 1,
            has_next=page < total_pages,
            total_pnl_usd=format_currency(total_pnl, "USD"),
            total_pnl_percent=format_percent(total_pct),
            total_pnl_positive=total_pnl >= 0,
            toast=toast,
        )

    def _checked(self, form: ExchangeForm | None) -> tuple[_Bound, datetime] | Toast:
        try:
            bound = _bind(form)
        except (TypeError, ValueError):
            return Toast("Invalid form data")
        if bound.from_symbol == bound.to_symbol:
            return Toast("From and To symbols must be different")
        try:
            timestamp = datetime.strptime(bound.timestamp, _FORM_TIME_FORMAT)
        except ValueError:
            return Toast("Invalid date format")
        return bound, timestamp

    def create(self, form: ExchangeForm | None, query: ExchangeQuery | None = None) -> ExchangesTableData:
        """Record a new exchange and return the refreshed table."""
        checked = self._checked(form)
        if isinstance(checked, Toast):
            return self._table(query, checked)
        bound, timestamp = checked
        exchange = Exchange(
            from_symbol=bound.from_symbol,
            from_amount=bound.from_amount,
            to_symbol=bound.to_symbol,
            to_amount=bound.to_amount,
            fee=bound.fee,
            fee_currency=bound.fee_currency,
            timestamp=timestamp,
            notes=bound.notes,
        )
        try:
            self.repository.create_exchange(exchange)
        except Exception:
            return self._table(query, Toast("Failed to create exchange"))
        return self.table(query)

    def update(
        self, exchange_id: str | int, form: ExchangeForm | None, query: ExchangeQuery | None = None
    ) -> ExchangesTableData:
        """Replace the fields of an existing exchange and return the refreshed table."""
        try:
            parsed_id = _parse_id(exchange_id)
        except ValueError:
            return self._table(query, Toast("Invalid exchange ID"))
        checked = self._checked(form)
        if isinstance(checked, Toast):
            return self._table(query, checked)
        bound, timestamp = checked
        try:
            existing = self.repository.get_exchange_by_id(parsed_id)
        except Exception:
            existing = None
        if existing is None:
            return self._table(query, Toast("Exchange not found"))
        updated = replace(
            existing,
            from_symbol=bound.from_symbol,
            from_amount=bound.from_amount,
            to_symbol=bound.to_symbol,
            to_amount=bound.to_amount,
            fee=bound.fee,
            fee_currency=bound.fee_currency,
            timestamp=timestamp,
            notes=bound.notes,
        )
        try:
            self.repository.update_exchange(updated)
        except Exception:
            return self._table(query, Toast("Failed to update exchange"))
        return self.table(query)

    def delete(self, exchange_id: str | int, query: ExchangeQuery | None = None) -> ExchangesTableData:
        """Remove one exchange and return the refreshed table."""
        try:
            parsed_id = _parse_id(exchange_id)
        except ValueError:
            return self._table(query, Toast("Invalid exchange ID"))
        try:
            self.repository.delete_exchange(parsed_id)
        except Exception:
            return self._table(query, Toast("Failed to delete exchange"))
        return self.table(query)

    def bulk_delete(
        self, ids: Iterable[int] | None, query: ExchangeQuery | None = None
    ) -> ExchangesTableData:
        """Remove several exchanges, reporting how many were deleted."""
        id_list = list(ids or [])
        if not id_list:
            return self._table(query, Toast("No exchanges selected"))
        deleted = 0
        for exchange_id in id_list:
            try:
                self.repository.delete_exchange(exchange_id)
            except Exception:
                continue
            deleted += 1
        return self._table(query, Toast(f"{deleted} exchanges deleted", "success"))

    def refresh_prices(self, query: ExchangeQuery | None = None) -> ExchangesTableData:
        """Fetch current prices of every symbol in an exchange into the cache."""
        try:
            exchanges = self.repository.get_all_exchanges()
        except Exception:
            return self._table(query, Toast("Failed to load exchanges"))

        symbols: set[str] = set()
        for ex in exchanges:
            symbols.add(ex.from_symbol)
            symbols.add(ex.to_symbol)

        quotes = [PriceQuote(symbol=symbol) for symbol in sorted(symbols)]
        if quotes:
            try:
                self.fetcher.fetch_many(*quotes)
            except Exception:
                return self._table(query, Toast("Failed to fetch prices"))
            for quote in quotes:
                self.price_cache[quote.symbol] = quote.value

        return self._table(query, Toast("Prices refreshed", "success"))