"""Records kept in the portfolio book and the price quotes passed to fetchers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Asset:
    """A deposit or withdrawal of some amount of one symbol."""

    symbol: str = ""
    name: str = ""
    transaction_type: str = ""
    amount: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    notes: str = ""
    price_source: str | None = None
    id: int | None = None

    def to_json(self) -> str:
        """Serialise the asset as a JSON object."""
        return json.dumps(
            {
                "id": self.id,
                "symbol": self.symbol,
                "name": self.name,
                "transaction_type": self.transaction_type,
                "amount": self.amount,
                "timestamp": self.timestamp.isoformat() if self.timestamp else None,
                "notes": self.notes,
                "price_source": self.price_source,
            }
        )


@dataclass
class Exchange:
    """A swap of one symbol for another."""

    from_symbol: str = ""
    to_symbol: str = ""
    from_amount: float = 0.0
    to_amount: float = 0.0
    fee: float = 0.0
    fee_currency: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    notes: str = ""
    id: int | None = None


@dataclass
class Price:
    """A recorded price of a symbol in a currency at a moment."""

    symbol: str = ""
    currency: str = ""
    price: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    id: int | None = None


@dataclass
class AssetHistoricValue:
    """A daily snapshot of a symbol's value."""

    symbol: str = ""
    value: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    id: int | None = None


@dataclass
class ImportLog:
    """The outcome of one file import."""

    filename: str = ""
    format: str = ""
    entity_type: str = ""
    total_rows: int = 0
    imported_rows: int = 0
    failed_rows: int = 0
    status: str = ""
    failed_data: str = ""
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class PriceQuote:
    """A symbol whose current value a price fetcher fills in."""

    symbol: str
    name: str = ""
    value: float = 0.0


def _parse_timestamp(raw: Any) -> datetime:
    if raw is None:
        return datetime.now()
    if not isinstance(raw, str):
        raise ValueError(f"invalid timestamp: {raw!r}")
    text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def asset_from_json(data: str | bytes | bytearray) -> Asset:
    """Build an asset from a JSON object; raise ValueError on malformed input."""
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise ValueError("asset JSON must be an object")
    raw_id = payload.get("id")
    price_source = payload.get("price_source")
    return Asset(
        id=int(raw_id) if raw_id is not None else None,
        symbol=str(payload.get("symbol") or ""),
        name=str(payload.get("name") or ""),
        transaction_type=str(payload.get("transaction_type") or ""),
        amount=float(payload.get("amount") or 0.0),
        timestamp=_parse_timestamp(payload.get("timestamp")),
        notes=str(payload.get("notes") or ""),
        price_source=str(price_source) if price_source is not None else None,
    )