"""SQLite storage for assets, exchanges, prices, historic values and import logs."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from hodlbook.records import Asset, AssetHistoricValue, Exchange, ImportLog, Price

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICRO = timedelta(microseconds=1)
_DEFAULT_LIMIT = 20
_MAX_LIMIT = 100


class NotFoundError(LookupError):
    """Raised when a requested record does not exist."""


@dataclass
class AssetFilter:
    symbol: str = ""
    transaction_type: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 0
    offset: int = 0


@dataclass
class AssetListResult:
    assets: list[Asset] = field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0


@dataclass
class ExchangeFilter:
    from_symbol: str | None = None
    to_symbol: str | None = None
    symbol: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 0
    offset: int = 0


@dataclass
class ExchangeListResult:
    exchanges: list[Exchange] = field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0


@dataclass
class AssetPriceQuery:
    symbol: str
    timestamp: datetime


def _to_micros(value: datetime | None) -> int | None:
    if value is None:
        return None
    aware = value if value.tzinfo is not None else value.astimezone()
    return (aware - _EPOCH) // _MICRO


def _from_micros(value: int | None) -> datetime | None:
    if value is None:
        return None
    return (_EPOCH + timedelta(microseconds=value)).astimezone().replace(tzinfo=None)


def _paging(limit: int, offset: int) -> tuple[int, int]:
    if limit <= 0:
        limit = _DEFAULT_LIMIT
    return min(limit, _MAX_LIMIT), max(offset, 0)


_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS assets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        symbol TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        transaction_type TEXT NOT NULL DEFAULT '',
        amount REAL NOT NULL DEFAULT 0,
        timestamp INTEGER,
        notes TEXT NOT NULL DEFAULT '',
        price_source TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS exchanges (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        from_symbol TEXT NOT NULL DEFAULT '',
        to_symbol TEXT NOT NULL DEFAULT '',
        from_amount REAL NOT NULL DEFAULT 0,
        to_amount REAL NOT NULL DEFAULT 0,
        fee REAL NOT NULL DEFAULT 0,
        fee_currency TEXT NOT NULL DEFAULT '',
        timestamp INTEGER,
        notes TEXT NOT NULL DEFAULT ''
    )""",
    """CREATE TABLE IF NOT EXISTS prices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        symbol TEXT NOT NULL DEFAULT '',
        currency TEXT NOT NULL DEFAULT '',
        price REAL NOT NULL DEFAULT 0,
        timestamp INTEGER
    )""",
    """CREATE TABLE IF NOT EXISTS asset_historic_values (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        symbol TEXT NOT NULL DEFAULT '',
        value REAL NOT NULL DEFAULT 0,
        timestamp INTEGER
    )""",
    """CREATE TABLE IF NOT EXISTS import_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        filename TEXT NOT NULL DEFAULT '',
        format TEXT NOT NULL DEFAULT '',
        entity_type TEXT NOT NULL DEFAULT '',
        total_rows INTEGER NOT NULL DEFAULT 0,
        imported_rows INTEGER NOT NULL DEFAULT 0,
        failed_rows INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT '',
        failed_data TEXT NOT NULL DEFAULT '',
        created_at INTEGER
    )""",
)

_ASSET_COLS = "id, symbol, name, transaction_type, amount, timestamp, notes, price_source"
_EXCHANGE_COLS = "id, from_symbol, to_symbol, from_amount, to_amount, fee, fee_currency, timestamp, notes"
_PRICE_COLS = "id, symbol, currency, price, timestamp"
_HISTORIC_COLS = "id, symbol, value, timestamp"
_LOG_COLS = (
    "id, filename, format, entity_type, total_rows, imported_rows, failed_rows, "
    "status, failed_data, created_at"
)


def _asset(row: tuple) -> Asset:
    id_, symbol, name, tx_type, amount, ts, notes, source = row
    return Asset(
        id=id_, symbol=symbol, name=name, transaction_type=tx_type, amount=amount,
        timestamp=_from_micros(ts), notes=notes, price_source=source,
    )


def _exchange(row: tuple) -> Exchange:
    id_, from_sym, to_sym, from_amt, to_amt, fee, fee_cur, ts, notes = row
    return Exchange(
        id=id_, from_symbol=from_sym, to_symbol=to_sym, from_amount=from_amt,
        to_amount=to_amt, fee=fee, fee_currency=fee_cur, timestamp=_from_micros(ts), notes=notes,
    )


def _price(row: tuple) -> Price:
    id_, symbol, currency, price, ts = row
    return Price(id=id_, symbol=symbol, currency=currency, price=price, timestamp=_from_micros(ts))


def _historic(row: tuple) -> AssetHistoricValue:
    id_, symbol, value, ts = row
    return AssetHistoricValue(id=id_, symbol=symbol, value=value, timestamp=_from_micros(ts))


def _log(row: tuple) -> ImportLog:
    id_, filename, fmt, entity, total, imported, failed, status, failed_data, created = row
    return ImportLog(
        id=id_, filename=filename, format=fmt, entity_type=entity, total_rows=total,
        imported_rows=imported, failed_rows=failed, status=status, failed_data=failed_data,
        created_at=_from_micros(created),
    )


class Repository:
    """All persistence operations over one SQLite connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        if connection is None:
            raise ValueError("database cannot be nil")
        self.connection = connection
        self._lock = threading.RLock()

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[tuple]:
        with self._lock:
            return self.connection.execute(sql, tuple(params)).fetchall()

    def _write(self, sql: str, params: Iterable[Any] = ()) -> int | None:
        with self._lock, self.connection:
            return self.connection.execute(sql, tuple(params)).lastrowid

    def _one(self, sql: str, params: Iterable[Any], what: str) -> tuple:
        rows = self._query(sql, params)
        if not rows:
            raise NotFoundError(f"{what} not found")
        return rows[0]

    def migrate(self) -> None:
        """Create the tables and drop indexes left behind by older schemas."""
        with self._lock, self.connection:
            for statement in _SCHEMA:
                self.connection.execute(statement)
            for index in ("uni_assets_symbol", "idx_assets_symbol_unique", "idx_assets_symbol"):
                self.connection.execute(f"DROP INDEX IF EXISTS {index}")

    # assets

    def create_asset(self, asset: Asset) -> Asset:
        asset.id = self._write(
            "INSERT INTO assets (symbol, name, transaction_type, amount, timestamp, notes, price_source)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (asset.symbol, asset.name, asset.transaction_type, asset.amount,
             _to_micros(asset.timestamp), asset.notes, asset.price_source),
        )
        return asset

    def get_asset_by_id(self, asset_id: int) -> Asset:
        return _asset(self._one(f"SELECT {_ASSET_COLS} FROM assets WHERE id = ?", (asset_id,), "asset"))

    def _assets(self, where: str = "", params: Iterable[Any] = ()) -> list[Asset]:
        clause = f" WHERE {where}" if where else ""
        rows = self._query(
            f"SELECT {_ASSET_COLS} FROM assets{clause} ORDER BY timestamp DESC, id ASC", params
        )
        return [_asset(row) for row in rows]

    def get_all_assets(self) -> list[Asset]:
        return self._assets()

    def get_assets_by_symbol(self, symbol: str) -> list[Asset]:
        return self._assets("symbol = ?", (symbol,))

    def get_assets_by_type(self, tx_type: str) -> list[Asset]:
        return self._assets("transaction_type = ?", (tx_type,))

    def update_asset(self, asset: Asset) -> None:
        """Update the asset's non-empty fields; empty fields keep their stored value."""
        if asset.id is None:
            raise ValueError("asset has no id")
        changes: dict[str, Any] = {}
        if asset.symbol:
            changes["symbol"] = asset.symbol
        if asset.name:
            changes["name"] = asset.name
        if asset.transaction_type:
            changes["transaction_type"] = asset.transaction_type
        if asset.amount:
            changes["amount"] = asset.amount
        if asset.timestamp is not None:
            changes["timestamp"] = _to_micros(asset.timestamp)
        if asset.notes:
            changes["notes"] = asset.notes
        if asset.price_source is not None:
            changes["price_source"] = asset.price_source
        if not changes:
            return
        assignments = ", ".join(f"{column} = ?" for column in changes)
        self._write(f"UPDATE assets SET {assignments} WHERE id = ?", (*changes.values(), asset.id))

    def delete_asset(self, asset_id: int) -> None:
        self._write("DELETE FROM assets WHERE id = ?", (asset_id,))

    def get_assets_by_date_range(self, start: datetime, end: datetime) -> list[Asset]:
        return self._assets("timestamp BETWEEN ? AND ?", (_to_micros(start), _to_micros(end)))

    def get_total_by_symbol_and_type(self, symbol: str, tx_type: str) -> float:
        (total,) = self._query(
            "SELECT COALESCE(SUM(amount), 0) FROM assets WHERE symbol = ? AND transaction_type = ?",
            (symbol, tx_type),
        )[0]
        return float(total)

    def list_assets(self, filter: AssetFilter) -> AssetListResult:
        conditions: list[str] = []
        params: list[Any] = []
        if filter.symbol:
            conditions.append("symbol = ?")
            params.append(filter.symbol)
        if filter.transaction_type:
            conditions.append("transaction_type = ?")
            params.append(filter.transaction_type)
        if filter.start_date is not None:
            conditions.append("timestamp >= ?")
            params.append(_to_micros(filter.start_date))
        if filter.end_date is not None:
            conditions.append("timestamp <= ?")
            params.append(_to_micros(filter.end_date))
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        (total,) = self._query(f"SELECT COUNT(*) FROM assets{where}", params)[0]
        limit, offset = _paging(filter.limit, filter.offset)
        rows = self._query(
            f"SELECT {_ASSET_COLS} FROM assets{where} ORDER BY timestamp DESC, id ASC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return AssetListResult([_asset(row) for row in rows], total, limit, offset)

    def count_assets(self) -> int:
        return self._query("SELECT COUNT(*) FROM assets")[0][0]

    def get_unique_symbols(self) -> list[str]:
        """Every symbol that appears in assets or exchanges, sorted."""
        asset_symbols = {row[0] for row in self._query("SELECT DISTINCT symbol FROM assets")}
        return sorted(asset_symbols | set(self.get_unique_exchange_symbols()))

    def get_first_asset_by_symbol(self, symbol: str) -> Asset:
        return _asset(self._one(
            f"SELECT {_ASSET_COLS} FROM assets WHERE symbol = ? ORDER BY id LIMIT 1", (symbol,), "asset"
        ))

    # historic values

    def insert_historic_value(self, value: AssetHistoricValue) -> AssetHistoricValue:
        value.id = self._write(
            "INSERT INTO asset_historic_values (symbol, value, timestamp) VALUES (?, ?, ?)",
            (value.symbol, value.value, _to_micros(value.timestamp)),
        )
        return value

    def select_historic_by_symbol(self, symbol: str) -> list[AssetHistoricValue]:
        rows = self._query(
            f"SELECT {_HISTORIC_COLS} FROM asset_historic_values WHERE symbol = ?"
            " ORDER BY timestamp DESC, id ASC",
            (symbol,),
        )
        return [_historic(row) for row in rows]

    def get_historic_symbols(self) -> list[str]:
        rows = self._query("SELECT DISTINCT symbol FROM asset_historic_values ORDER BY symbol")
        return [row[0] for row in rows]

    # exchanges

    def create_exchange(self, exchange: Exchange) -> Exchange:
        exchange.id = self._write(
            "INSERT INTO exchanges (from_symbol, to_symbol, from_amount, to_amount, fee, fee_currency,"
            " timestamp, notes) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (exchange.from_symbol, exchange.to_symbol, exchange.from_amount, exchange.to_amount,
             exchange.fee, exchange.fee_currency, _to_micros(exchange.timestamp), exchange.notes),
        )
        return exchange

    def get_exchange_by_id(self, exchange_id: int) -> Exchange:
        return _exchange(self._one(
            f"SELECT {_EXCHANGE_COLS} FROM exchanges WHERE id = ?", (exchange_id,), "exchange"
        ))

    def _exchanges(self, where: str = "", params: Iterable[Any] = ()) -> list[Exchange]:
        clause = f" WHERE {where}" if where else ""
        rows = self._query(
            f"SELECT {_EXCHANGE_COLS} FROM exchanges{clause} ORDER BY timestamp DESC, id ASC", params
        )
        return [_exchange(row) for row in rows]

    def get_all_exchanges(self) -> list[Exchange]:
        return self._exchanges()

    def get_exchanges_by_symbol(self, symbol: str) -> list[Exchange]:
        return self._exchanges("from_symbol = ? OR to_symbol = ?", (symbol, symbol))

    def get_exchanges_by_from_symbol(self, symbol: str) -> list[Exchange]:
        return self._exchanges("from_symbol = ?", (symbol,))

    def get_exchanges_by_to_symbol(self, symbol: str) -> list[Exchange]:
        return self._exchanges("to_symbol = ?", (symbol,))

    def get_exchanges_by_date_range(self, start: datetime, end: datetime) -> list[Exchange]:
        return self._exchanges("timestamp BETWEEN ? AND ?", (_to_micros(start), _to_micros(end)))

    def update_exchange(self, exchange: Exchange) -> Exchange:
        """Store every field of the exchange, inserting it if it has no row yet."""
        if exchange.id is None:
            return self.create_exchange(exchange)
        self._write(
            f"INSERT OR REPLACE INTO exchanges ({_EXCHANGE_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (exchange.id, exchange.from_symbol, exchange.to_symbol, exchange.from_amount,
             exchange.to_amount, exchange.fee, exchange.fee_currency,
             _to_micros(exchange.timestamp), exchange.notes),
        )
        return exchange

    def delete_exchange(self, exchange_id: int) -> None:
        self._write("DELETE FROM exchanges WHERE id = ?", (exchange_id,))

    def get_unique_exchange_symbols(self) -> list[str]:
        rows = self._query(
            "SELECT from_symbol FROM exchanges UNION SELECT to_symbol FROM exchanges ORDER BY 1"
        )
        return [row[0] for row in rows]

    def list_exchanges(self, filter: ExchangeFilter) -> ExchangeListResult:
        conditions: list[str] = []
        params: list[Any] = []
        if filter.symbol is not None:
            conditions.append("(from_symbol = ? OR to_symbol = ?)")
            params += [filter.symbol, filter.symbol]
        else:
            if filter.from_symbol is not None:
                conditions.append("from_symbol = ?")
                params.append(filter.from_symbol)
            if filter.to_symbol is not None:
                conditions.append("to_symbol = ?")
                params.append(filter.to_symbol)
        if filter.start_date is not None:
            conditions.append("timestamp >= ?")
            params.append(_to_micros(filter.start_date))
        if filter.end_date is not None:
            conditions.append("timestamp <= ?")
            params.append(_to_micros(filter.end_date))
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        (total,) = self._query(f"SELECT COUNT(*) FROM exchanges{where}", params)[0]
        limit, offset = _paging(filter.limit, filter.offset)
        rows = self._query(
            f"SELECT {_EXCHANGE_COLS} FROM exchanges{where} ORDER BY timestamp DESC, id ASC"
            " LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return ExchangeListResult([_exchange(row) for row in rows], total, limit, offset)

    # import logs

    def create_import_log(self, log: ImportLog) -> ImportLog:
        if log.created_at is None:
            log.created_at = datetime.now()
        log.id = self._write(
            "INSERT INTO import_logs (filename, format, entity_type, total_rows, imported_rows,"
            " failed_rows, status, failed_data, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (log.filename, log.format, log.entity_type, log.total_rows, log.imported_rows,
             log.failed_rows, log.status, log.failed_data, _to_micros(log.created_at)),
        )
        return log

    def get_import_log_by_id(self, log_id: int) -> ImportLog:
        return _log(self._one(f"SELECT {_LOG_COLS} FROM import_logs WHERE id = ?", (log_id,), "import log"))

    def list_import_logs(self) -> list[ImportLog]:
        rows = self._query(f"SELECT {_LOG_COLS} FROM import_logs ORDER BY created_at DESC, id DESC")
        return [_log(row) for row in rows]

    def update_import_log(self, log: ImportLog) -> ImportLog:
        if log.id is None:
            return self.create_import_log(log)
        if log.created_at is None:
            log.created_at = datetime.now()
        self._write(
            f"INSERT OR REPLACE INTO import_logs ({_LOG_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (log.id, log.filename, log.format, log.entity_type, log.total_rows, log.imported_rows,
             log.failed_rows, log.status, log.failed_data, _to_micros(log.created_at)),
        )
        return log

    def delete_import_log(self, log_id: int) -> None:
        self._write("DELETE FROM import_logs WHERE id = ?", (log_id,))

    # prices

    def create_price(self, price: Price) -> Price:
        price.id = self._write(
            "INSERT INTO prices (symbol, currency, price, timestamp) VALUES (?, ?, ?, ?)",
            (price.symbol, price.currency, price.price, _to_micros(price.timestamp)),
        )
        return price

    def get_price_by_id(self, price_id: int) -> Price:
        return _price(self._one(f"SELECT {_PRICE_COLS} FROM prices WHERE id = ?", (price_id,), "price"))

    def get_latest_price(self, symbol: str, currency: str) -> Price:
        return _price(self._one(
            f"SELECT {_PRICE_COLS} FROM prices WHERE symbol = ? AND currency = ?"
            " ORDER BY timestamp DESC, id ASC LIMIT 1",
            (symbol, currency), "price",
        ))

    def _prices(self, where: str, params: Iterable[Any], order: str = "DESC") -> list[Price]:
        rows = self._query(
            f"SELECT {_PRICE_COLS} FROM prices WHERE {where} ORDER BY timestamp {order}, id ASC", params
        )
        return [_price(row) for row in rows]

    def get_prices_by_symbol(self, symbol: str) -> list[Price]:
        return self._prices("symbol = ?", (symbol,))

    def get_prices_by_symbol_and_currency(self, symbol: str, currency: str) -> list[Price]:
        return self._prices("symbol = ? AND currency = ?", (symbol, currency))

    def get_prices_by_date_range(
        self, symbol: str, currency: str, start: datetime, end: datetime
    ) -> list[Price]:
        return self._prices(
            "symbol = ? AND currency = ? AND timestamp BETWEEN ? AND ?",
            (symbol, currency, _to_micros(start), _to_micros(end)),
            order="ASC",
        )

    def update_price(self, price: Price) -> Price:
        if price.id is None:
            return self.create_price(price)
        self._write(
            f"INSERT OR REPLACE INTO prices ({_PRICE_COLS}) VALUES (?, ?, ?, ?, ?)",
            (price.id, price.symbol, price.currency, price.price, _to_micros(price.timestamp)),
        )
        return price

    def delete_price(self, price_id: int) -> None:
        self._write("DELETE FROM prices WHERE id = ?", (price_id,))

    def delete_prices_older_than(self, date: datetime) -> None:
        self._write("DELETE FROM prices WHERE timestamp < ?", (_to_micros(date),))

    def get_price_at_time(self, symbol: str, currency: str, timestamp: datetime) -> Price | None:
        """The latest price recorded at or before the moment, or None."""
        rows = self._query(
            f"SELECT {_PRICE_COLS} FROM prices WHERE symbol = ? AND currency = ? AND timestamp <= ?"
            " ORDER BY timestamp DESC, id ASC LIMIT 1",
            (symbol, currency, _to_micros(timestamp)),
        )
        return _price(rows[0]) if rows else None

    def get_prices_at_times(
        self, queries: Iterable[AssetPriceQuery], currency: str
    ) -> dict[str, dict[int, float]]:
        """Prices keyed by symbol, then by the query's Unix time in seconds."""
        result: dict[str, dict[int, float]] = {}
        for query in queries:
            price = self.get_price_at_time(query.symbol, currency, query.timestamp)
            if price is None:
                continue
            unix = _to_micros(query.timestamp) // 1_000_000
            result.setdefault(query.symbol, {})[unix] = price.price
        return result


def open_repository(path: str) -> Repository:
    """Open (or create) the database at the path and bring its schema up to date."""
    connection = sqlite3.connect(path, check_same_thread=False)
    repository = Repository(connection)
    repository.migrate()
    return repository