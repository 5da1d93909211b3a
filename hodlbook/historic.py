"""Services that record daily historic values of the symbols in the book."""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from hodlbook.records import AssetHistoricValue, PriceQuote, asset_from_json

_POLL_SECONDS = 0.05


class InvalidConfigError(ValueError):
    """Raised when a service is built without a required collaborator."""


class PriceFetcher(Protocol):
    def fetch_many(self, *quotes: PriceQuote) -> None: ...


class AssetHistoricRepository(Protocol):
    def select_historic_by_symbol(self, symbol: str) -> list[AssetHistoricValue]: ...

    def insert_historic_value(self, value: AssetHistoricValue) -> AssetHistoricValue: ...


class HistoricValueRepository(Protocol):
    def get_unique_symbols(self) -> list[str]: ...

    def get_historic_symbols(self) -> list[str]: ...

    def insert_historic_value(self, value: AssetHistoricValue) -> AssetHistoricValue: ...


def _require(service: str, **collaborators: object) -> None:
    for name, value in collaborators.items():
        if value is None:
            raise InvalidConfigError(f"invalid {service} config: {name} cannot be nil")


def _until_midnight_utc(now: datetime) -> float:
    following = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (following - now).total_seconds()


class _Ticker:
    """Runs a handler on a background thread after each computed delay."""

    def __init__(
        self,
        delay: Callable[[datetime], float],
        handler: Callable[[], object],
        logger: logging.Logger,
        name: str,
    ) -> None:
        self._delay = delay
        self._handler = handler
        self._logger = logger
        self._name = name
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("scheduler already running")
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.wait(self._delay(datetime.now(timezone.utc))):
            try:
                self._handler()
            except Exception:
                self._logger.exception("scheduled task %s failed", self._name)

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


def _quotes(symbols: list[str]) -> list[PriceQuote]:
    return [PriceQuote(symbol=symbol, name=symbol) for symbol in symbols]


class AssetHistoricService:
    """Records a first historic value whenever a new asset is announced."""

    def __init__(self, *, logger, fetcher, repo, channel) -> None:
        _require(
            "asset historic service",
            logger=logger,
            fetcher=fetcher,
            repo=repo,
            channel=channel,
        )
        self.logger: logging.Logger = logger
        self.fetcher: PriceFetcher = fetcher
        self.repo: AssetHistoricRepository = repo
        self.channel: queue.Queue = channel
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Begin consuming announced assets from the channel."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("subscriber already running")
        self._stopped.clear()
        self._thread = threading.Thread(target=self._consume, name="asset-created", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def publish(self, data: bytes) -> None:
        """Announce a newly created asset, given as its JSON encoding."""
        self.channel.put(data)

    def _consume(self) -> None:
        while not self._stopped.is_set():
            try:
                data = self.channel.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                self.handle_asset_created(data)
            except Exception:
                self.logger.debug("asset-created handler failed", exc_info=True)

    def handle_asset_created(self, data: bytes | str) -> None:
        """Store the current price of a symbol that has no history yet."""
        try:
            asset = asset_from_json(data)
        except ValueError as exc:
            self.logger.error("failed to unmarshal asset: %s", exc)
            raise

        try:
            history = self.repo.select_historic_by_symbol(asset.symbol)
        except Exception as exc:
            self.logger.error("failed to check existing history for %s: %s", asset.symbol, exc)
            raise

        if history:
            self.logger.debug(
                "symbol %s already has historic data (%d values)", asset.symbol, len(history)
            )
            return

        quote = PriceQuote(symbol=asset.symbol, name=asset.name)
        try:
            self.fetcher.fetch_many(quote)
        except Exception as exc:
            self.logger.error("failed to fetch price for new asset %s: %s", asset.symbol, exc)
            raise

        value = AssetHistoricValue(symbol=asset.symbol, value=quote.value, timestamp=datetime.now())
        try:
            self.repo.insert_historic_value(value)
        except Exception as exc:
            self.logger.error("failed to insert initial historic value for %s: %s", asset.symbol, exc)
            raise

        self.logger.info("added initial historic price for %s: %s", asset.symbol, quote.value)


class HistoricPriceService:
    """Stores a value for every known symbol once a day at midnight UTC."""

    def __init__(self, *, logger, fetcher, repo) -> None:
        _require("historic price service", logger=logger, fetcher=fetcher, repo=repo)
        self.logger: logging.Logger = logger
        self.fetcher: PriceFetcher = fetcher
        self.repo: HistoricValueRepository = repo
        self._scheduler = _Ticker(_until_midnight_utc, self.tick, logger, "historic-prices")

    def start(self) -> None:
        """Fill in symbols without history, then start the daily schedule."""
        try:
            self.add_missing_symbols()
        except Exception as exc:
            self.logger.error("failed to add missing symbols on startup: %s", exc)
        self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.stop()

    def _store(self, symbols: list[str], quotes: list[PriceQuote], what: str) -> None:
        now = datetime.now()
        for symbol, quote in zip(symbols, quotes):
            try:
                self.repo.insert_historic_value(
                    AssetHistoricValue(symbol=symbol, value=quote.value, timestamp=now)
                )
            except Exception as exc:
                self.logger.error("failed to insert %s for %s: %s", what, symbol, exc)

    def add_missing_symbols(self) -> list[str]:
        """Record a value for each symbol with no history; return those symbols."""
        all_symbols = self.repo.get_unique_symbols()
        historic = set(self.repo.get_historic_symbols())
        missing = [symbol for symbol in all_symbols if symbol not in historic]
        if not missing:
            return []

        self.logger.info("adding missing historic values: %s", missing)
        quotes = _quotes(missing)
        self.fetcher.fetch_many(*quotes)
        self._store(missing, quotes, "historic value for missing symbol")
        self.logger.info("added missing historic values: %d", len(missing))
        return missing

    def tick(self) -> None:
        """Fetch and store the current value of every known symbol."""
        symbols = self.repo.get_unique_symbols()
        if not symbols:
            return
        quotes = _quotes(symbols)
        self.fetcher.fetch_many(*quotes)
        self._store(symbols, quotes, "historic value")
        self.logger.info("stored historic prices: %d", len(symbols))