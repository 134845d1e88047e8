"""In-process implementations of the store and audit Protocols.

Used as the default collaborators for local hosts and by the test suite.
"""

from __future__ import annotations

import copy
import datetime
import logging
import threading
import uuid
from typing import Any, Optional

from ..core.exceptions import PersistenceError
from ..core.timezone_utils import coerce_datetime, now_utc

logger = logging.getLogger(__name__)


class InMemoryEventStore:
    """Thread-safe dict-backed event table.

    Rows are copied on the way in and out so callers never share state with
    the store.
    """

    def __init__(self, records: Optional[list[dict[str, Any]]] = None) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, dict[str, Any]] = {}
        self._fail_writes = 0
        for record in records or []:
            self._put(record)

    def _put(self, record: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(record)
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("status", "active")
        row.setdefault("deleted_at", None)
        row.setdefault("parent_event_id", None)
        self._rows[str(row["id"])] = row
        return copy.deepcopy(row)

    def fail_next_write(self, count: int = 1) -> None:
        """Make the next ``count`` writes raise ``PersistenceError``."""
        with self._lock:
            self._fail_writes = count

    def _check_write(self) -> None:
        if self._fail_writes > 0:
            self._fail_writes -= 1
            raise PersistenceError("Simulated write failure")

    def all_rows(self) -> list[dict[str, Any]]:
        """Snapshot of every row, including soft-deleted ones."""
        with self._lock:
            return [copy.deepcopy(row) for row in self._rows.values()]

    async def fetch_active_events(self, user_id: str, start_before: datetime.datetime) -> list[dict[str, Any]]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._rows.values()
                if row.get("user_id") == user_id
                and row.get("status") == "active"
                and row.get("deleted_at") is None
                and coerce_datetime(row["start_time"]) <= start_before
            ]
        rows.sort(key=lambda row: coerce_datetime(row["start_time"]))
        return rows

    async def get_event(self, event_id: str, user_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self._rows.get(event_id)
            if row is None or row.get("user_id") != user_id:
                return None
            return copy.deepcopy(row)

    async def insert_event(self, record: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._check_write()
            now = now_utc()
            return self._put({**record, "created_at": now, "updated_at": now})

    async def update_event(self, event_id: str, user_id: str, fields: dict[str, Any]) -> Optional[dict[str, Any]]:
        with self._lock:
            self._check_write()
            row = self._rows.get(event_id)
            if row is None or row.get("user_id") != user_id:
                return None
            row.update(copy.deepcopy(fields))
            return copy.deepcopy(row)

    async def soft_delete(self, event_id: str, user_id: str) -> list[str]:
        with self._lock:
            self._check_write()
            row = self._rows.get(event_id)
            if row is None or row.get("user_id") != user_id:
                return []
            self._mark_deleted(row)
            return [event_id]

    async def soft_delete_series(self, parent_id: str, user_id: str) -> list[str]:
        with self._lock:
            self._check_write()
            affected = []
            for row_id, row in self._rows.items():
                if row.get("user_id") != user_id:
                    continue
                if row_id == parent_id or row.get("parent_event_id") == parent_id:
                    self._mark_deleted(row)
                    affected.append(row_id)
            return affected

    @staticmethod
    def _mark_deleted(row: dict[str, Any]) -> None:
        row["deleted_at"] = now_utc()
        row["status"] = "cancelled"


class InMemoryHolidayStore:
    """Holiday rows filtered by date, inclusive on both ends."""

    def __init__(self, holidays: Optional[list[dict[str, Any]]] = None) -> None:
        self._holidays = [copy.deepcopy(h) for h in holidays or []]

    async def fetch_holidays(self, start: datetime.date, end: datetime.date) -> list[dict[str, Any]]:
        matches = [
            copy.deepcopy(h)
            for h in self._holidays
            if h.get("is_active", True) and start <= _as_date(h["holiday_date"]) <= end
        ]
        matches.sort(key=lambda h: _as_date(h["holiday_date"]))
        return matches


def _as_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


class RecordingAuditSink:
    """Keeps audit entries in memory."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(self, action: str, user_id: str, entity_id: str, details: dict[str, Any]) -> None:
        self.entries.append(
            {
                "action": action,
                "user_id": user_id,
                "entity_id": entity_id,
                "details": dict(details),
                "recorded_at": now_utc(),
            }
        )
        logger.debug("Audit %s for %s by %s", action, entity_id, user_id)
