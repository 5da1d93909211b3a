"""Book-keeping for crypto holdings: records, SQLite storage, historic price services and data for portfolio pages."""

__version__ = "0.1.0"