"""Import history listing and the health check."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass
class ImportLogView:
    id: int | None
    filename: str
    format: str
    entity_type: str
    total_rows: int
    imported_rows: int
    failed_rows: int
    status: str
    created_at: str
    has_errors: bool


@dataclass
class HealthResponse:
    status: str
    timestamp: str


def import_history(repository) -> list[ImportLogView]:
    """Every import log, newest first, ready for display."""
    return [
        ImportLogView(
            id=log.id,
            filename=log.filename,
            format=log.format,
            entity_type=log.entity_type,
            total_rows=log.total_rows,
            imported_rows=log.imported_rows,
            failed_rows=log.failed_rows,
            status=log.status,
            created_at=log.created_at.strftime("%Y-%m-%d %H:%M") if log.created_at else "",
            has_errors=log.failed_rows > 0,
        )
        for log in repository.list_import_logs()
    ]


def health(now: datetime | None = None) -> HealthResponse:
    """An ok status stamped with the current UTC time in RFC 3339 form."""
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return HealthResponse(status="ok", timestamp=moment.strftime("%Y-%m-%dT%H:%M:%SZ"))