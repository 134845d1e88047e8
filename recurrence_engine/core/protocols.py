"""Protocol definitions for the engine's external collaborators.

Stores return raw rows (mappings) shaped like the persisted
``calendar_events`` / ``public_holidays`` tables; the engine converts them to
models itself.
"""

from __future__ import annotations

import datetime
from typing import Any, Optional, Protocol

EventRecord = dict[str, Any]


class EventStore(Protocol):
    """Persistence collaborator for stored event rows."""

    async def fetch_active_events(self, user_id: str, start_before: datetime.datetime) -> list[EventRecord]:
        """Active, non-deleted rows for ``user_id`` whose start is <= ``start_before``."""
        ...

    async def get_event(self, event_id: str, user_id: str) -> Optional[EventRecord]:
        """Row by id for the owning user, or None."""
        ...

    async def insert_event(self, record: EventRecord) -> EventRecord:
        """Persist a new row and return it with its assigned id."""
        ...

    async def update_event(self, event_id: str, user_id: str, fields: dict[str, Any]) -> Optional[EventRecord]:
        """Apply a partial update. Returns the updated row, None if nothing matched.

        Raises on a failed write; a failed write changes nothing.
        """
        ...

    async def soft_delete(self, event_id: str, user_id: str) -> list[str]:
        """Mark one row deleted and cancelled. Returns the affected ids."""
        ...

    async def soft_delete_series(self, parent_id: str, user_id: str) -> list[str]:
        """Mark the row ``parent_id`` and every row whose ``parent_event_id`` is it.

        Returns the affected ids.
        """
        ...


class HolidayStore(Protocol):
    """Holiday collaborator; independent of user identity."""

    async def fetch_holidays(self, start: datetime.date, end: datetime.date) -> list[dict[str, Any]]:
        """Active holidays whose date falls within ``[start, end]``."""
        ...


class AuditSink(Protocol):
    """Informed after each mutation, never consulted."""

    async def record(self, action: str, user_id: str, entity_id: str, details: dict[str, Any]) -> None:
        """Persist one audit entry."""
        ...
