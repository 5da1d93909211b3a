# hodlbook

A library for keeping a book of crypto holdings. It stores deposits,
withdrawals, exchanges between assets, price records, daily historic values
and import logs in SQLite. From these it works out holdings, average cost
basis, profit and loss, and portfolio value over time, and builds the data
behind a dashboard, a portfolio page, a prices page and an exchanges page.

It depends on nothing outside the standard library.

## Install

    pip install .

To run the tests:

    pip install ".[test]"
    pytest

## Modules

### `hodlbook.records`

Dataclasses for the stored records: `Asset`, `Exchange`, `Price`,
`AssetHistoricValue` and `ImportLog`. `PriceQuote` is a symbol whose `value`
a price fetcher fills in. `Asset.to_json()` serialises an asset, and
`asset_from_json(data)` reads one back from a string or bytes. It raises
`ValueError` on malformed input.

### `hodlbook.repository`

`open_repository(path)` opens or creates a SQLite database and creates the
tables. `Repository(connection)` wraps an existing `sqlite3` connection, and
`Repository.migrate()` creates the tables on it.

The repository has create, get, update, delete and query methods for each
record type. Examples are `create_asset`, `get_all_assets`, `list_assets`,
`create_exchange`, `get_exchanges_by_symbol`, `list_exchanges`,
`create_price`, `get_price_at_time`, `get_prices_at_times`,
`insert_historic_value`, `select_historic_by_symbol`, `create_import_log` and
`list_import_logs`.

- Lookups by id raise `NotFoundError` when the record does not exist. So do
  `get_latest_price` and `get_first_asset_by_symbol`.
- `get_price_at_time` returns `None` when no price is recorded at or before
  the moment.
- `list_assets(AssetFilter(...))` and `list_exchanges(ExchangeFilter(...))`
  filter, count and page results. The page size defaults to 20 and is capped
  at 100.
- `get_unique_symbols()` returns every symbol found in assets or exchanges,
  sorted.

### `hodlbook.historic`

- `AssetHistoricService(logger=..., fetcher=..., repo=..., channel=...)`
  consumes JSON-encoded assets from a `queue.Queue`.
  - `publish(data)` puts an asset on the queue.
  - `start()` and `stop()` control a background consumer.
  - For each asset whose symbol has no history yet, `handle_asset_created`
    fetches a price and stores a first historic value.
- `HistoricPriceService(logger=..., fetcher=..., repo=...)` stores the values
  of the symbols in the book.
  - `start()` first records every symbol that has no history
    (`add_missing_symbols`). It then calls `tick()` on a background thread
    each midnight UTC.
  - `tick()` stores the current value of every known symbol.

Both services raise `InvalidConfigError` if any collaborator is `None`. A
`Repository` can serve as `repo`. The `fetcher` is any object with a
`fetch_many(*quotes)` method that sets `value` on each `PriceQuote`.

### `hodlbook.formatting`

Display helpers:

- `format_currency` and `format_price` format money.
- `format_amount` formats coin amounts.
- `format_percent` and `format_percent_no_sign` format percentages.
- `format_exchange_rate`, `format_number`, `format_float`, `float_to_str2` and
  `float_to_str_n` format other numbers. Decimals are truncated rather than
  rounded, except where `format_price` formats prices below one.
- `parse_days` reads a chart range such as `"7d"`, `"1y"`, `"all"` or a number
  of days. It falls back to 30.

### `hodlbook.dashboard`

`PortfolioCalculator(repository, price_cache)` computes:

- holdings, in total and as of a moment;
- portfolio value at cached prices;
- average cost basis carried across exchanges;
- a daily value chart.

`DashboardView` builds the dashboard's summary, chart, allocation, top-five
holdings (`holdings(sort_by, sort_dir)`) and five most recent transactions.
`sort_holding_items` sorts holding rows by asset, value or change.

### `hodlbook.portfolio`

`PortfolioView` builds the portfolio summary, chart, holdings table
(`holdings(sort_by)`) and performance table (`performance(sort_by)`). The
holdings table includes each holding's share of the total.

### `hodlbook.prices_view`

`PricesView.table()` lists the cached price, amount held and value of every
symbol, highest value first.

### `hodlbook.exchanges_view`

`ExchangesView(repository, price_cache, fetcher)` lists exchanges 20 to a page
with filters (`ExchangeQuery`). Each row shows the traded rate, the current
market rate and the gain or loss.

- `create`, `update`, `delete` and `bulk_delete` take an `ExchangeForm` or ids
  and return the refreshed table.
- `refresh_prices` fetches current prices into the cache.
- Problems are reported as a `Toast` on the returned table, not raised.

### `hodlbook.pages`

- `import_history(repository)` lists import logs for display.
- `health(now)` returns an `ok` status stamped with UTC time.

## Example

    from hodlbook.repository import open_repository
    from hodlbook.records import Asset
    from hodlbook.dashboard import DashboardView

    repo = open_repository(":memory:")
    repo.create_asset(Asset(symbol="BTC", name="Bitcoin",
                            transaction_type="deposit", amount=0.5))

    view = DashboardView(repo, {"BTC": 50000.0})
    print(view.summary().total_value)

The price cache is any mapping of symbol to USD price. A plain `dict` will do.

## What it does not do

- **No price sources.** Callers supply the fetcher that fills in prices.
- **No live price cache.** Nothing keeps the price cache in step with the
  database or publishes live prices.
- **No assets page.** There is no page-level view for assets with forms and
  sorting. Assets are created, changed and removed through `Repository`
  directly.
- **No web interface.** There is no web server, no HTML templates and no
  command-line program. The views return dataclasses for the caller to
  render.