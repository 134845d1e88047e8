"""Create, update and delete semantics for stored events and recurring series.

Every mutation writes through the event store first. Only after the write
succeeds is the instance cache invalidated, and that happens before the
mutation returns. A failed write leaves the cache untouched. Audit entries
are scheduled last and can never fail the mutation.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from ..calendar.models import DeleteScope, EndOnDate, EventCreate, EventTemplate, EventUpdate
from ..calendar.recurrence_config import rule_to_config, template_from_record, with_end_policy
from ..core.exceptions import EventNotFoundError, PersistenceError
from ..core.protocols import AuditSink, EventStore
from ..core.timezone_utils import now_utc
from .instance_cache import InstanceCache

logger = logging.getLogger(__name__)


class SeriesMutationCoordinator:
    """Applies mutations to stored events and keeps the instance cache coherent."""

    def __init__(
        self,
        event_store: EventStore,
        instance_cache: InstanceCache,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.event_store = event_store
        self.instance_cache = instance_cache
        self.audit_sink = audit_sink
        self._audit_tasks: set[asyncio.Task] = set()

    async def create_event(self, user_id: str, data: EventCreate) -> EventTemplate:
        """Persist a new event. Nothing is cached for an id that did not exist."""
        rule = data.recurrence
        record = {
            "user_id": user_id,
            "title": data.title,
            "description": data.description,
            "location": data.location,
            "start_time": data.start_time,
            "end_time": data.end_time,
            "all_day": data.all_day,
            "timezone": data.timezone,
            "recurrence_type": rule.type if rule is not None else "none",
            "recurrence_config": rule_to_config(rule) if rule is not None else None,
            "is_recurring_parent": rule is not None,
            "status": "active",
        }
        created = template_from_record(await self._write(self.event_store.insert_event(record), "create"))

        self._emit_audit(
            "calendar_event_created",
            user_id,
            created.id,
            {"title": created.title, "isRecurring": rule is not None, "recurrenceType": record["recurrence_type"]},
        )
        logger.info("Calendar event created: %s by user %s", created.id, user_id)
        return created

    async def update_event(self, event_id: str, user_id: str, changes: EventUpdate) -> EventTemplate:
        """Apply the explicitly set fields of ``changes`` and invalidate the event's cache.

        Raises:
            EventNotFoundError: If the event does not exist for ``user_id``
            PersistenceError: If the write fails (cache is left untouched)
        """
        existing = await self._load(event_id, user_id)

        fields: dict[str, Any] = {}
        for name in changes.model_fields_set:
            value = getattr(changes, name)
            if name == "recurrence":
                fields["recurrence_type"] = value.type if value is not None else "none"
                fields["recurrence_config"] = rule_to_config(value) if value is not None else None
                fields["is_recurring_parent"] = value is not None
            elif name == "status":
                fields["status"] = value.value if value is not None else None
            else:
                fields[name] = value
        fields["updated_at"] = now_utc()

        updated = await self._write(self.event_store.update_event(event_id, user_id, fields), "update")
        if updated is None:
            raise EventNotFoundError(event_id, user_id)

        self.instance_cache.invalidate(event_id)

        self._emit_audit(
            "calendar_event_updated",
            user_id,
            event_id,
            {
                "title": changes.title,
                "fieldsUpdated": sorted(changes.model_fields_set),
                "isRecurringUpdate": existing.is_recurring_parent,
            },
        )
        logger.info("Calendar event updated: %s by user %s", event_id, user_id)
        return template_from_record(updated)

    async def delete_event(
        self,
        event_id: str,
        user_id: str,
        scope: DeleteScope = DeleteScope.SINGLE,
        occurrence_start: Optional[datetime] = None,
    ) -> list[str]:
        """Delete an event or part of a recurring series.

        Args:
            event_id: Stored row id (a parent for series-level scopes)
            user_id: Owning user
            scope: ``single`` soft-deletes the row (a parent takes its whole
                series with it); ``thisAndFuture`` truncates a parent's series
                one day before ``occurrence_start``; ``all`` soft-deletes the
                parent and every row referencing it
            occurrence_start: Start of the occurrence the truncation begins at;
                defaults to the parent's own start

        Returns:
            Ids of the rows written

        Raises:
            EventNotFoundError: If the event does not exist for ``user_id``
            PersistenceError: If the write fails (cache is left untouched)
        """
        scope = DeleteScope(scope)
        event = await self._load(event_id, user_id)

        if scope == DeleteScope.THIS_AND_FUTURE and not event.is_recurring_parent:
            logger.debug("thisAndFuture on non-recurring event %s; deleting single", event_id)
            scope = DeleteScope.SINGLE

        if scope == DeleteScope.SINGLE:
            affected = await self._write(self.event_store.soft_delete(event_id, user_id), "delete")
        elif scope == DeleteScope.THIS_AND_FUTURE:
            affected = await self._truncate_series(event, occurrence_start)
        else:
            affected = await self._write(self.event_store.soft_delete_series(event_id, user_id), "delete all")

        if not affected:
            raise EventNotFoundError(event_id, user_id)

        for affected_id in {event_id, *affected}:
            self.instance_cache.invalidate(affected_id)

        self._emit_audit(
            "calendar_event_deleted",
            user_id,
            event_id,
            {"title": event.title, "deleteType": scope.value, "isRecurring": event.is_recurring_parent},
        )
        logger.info("Calendar event deleted: %s (type: %s) by user %s", event_id, scope.value, user_id)
        return list(affected)

    async def _truncate_series(self, parent: EventTemplate, occurrence_start: Optional[datetime]) -> list[str]:
        cutoff_from = occurrence_start or parent.start_time
        end_date = cutoff_from - timedelta(days=1)
        truncated = with_end_policy(parent.recurrence, EndOnDate(end_date=end_date))

        updated = await self._write(
            self.event_store.update_event(
                parent.id,
                parent.user_id,
                {"recurrence_config": rule_to_config(truncated), "updated_at": now_utc()},
            ),
            "truncate series",
        )
        return [parent.id] if updated is not None else []

    async def _load(self, event_id: str, user_id: str) -> EventTemplate:
        try:
            record = await self.event_store.get_event(event_id, user_id)
        except Exception as e:
            logger.exception("Failed to load event %s", event_id)
            raise PersistenceError(f"Failed to load event {event_id}") from e
        if record is None:
            raise EventNotFoundError(event_id, user_id)
        return template_from_record(record)

    @staticmethod
    async def _write(awaitable: Any, operation: str) -> Any:
        try:
            return await awaitable
        except PersistenceError:
            logger.error("Calendar %s failed", operation)
            raise
        except Exception as e:
            logger.exception("Calendar %s failed", operation)
            raise PersistenceError(f"Failed to {operation} event") from e

    def _emit_audit(self, action: str, user_id: str, entity_id: str, details: dict[str, Any]) -> None:
        if self.audit_sink is None:
            return
        task = asyncio.create_task(self._record_audit(action, user_id, entity_id, details))
        self._audit_tasks.add(task)
        task.add_done_callback(self._audit_tasks.discard)

    async def _record_audit(self, action: str, user_id: str, entity_id: str, details: dict[str, Any]) -> None:
        try:
            await self.audit_sink.record(action, user_id, entity_id, details)  # type: ignore[union-attr]
        except Exception:
            logger.warning("Audit %s for %s failed", action, entity_id, exc_info=True)

    async def drain_audit(self) -> None:
        """Wait for scheduled audit entries (shutdown and tests)."""
        if self._audit_tasks:
            await asyncio.gather(*self._audit_tasks, return_exceptions=True)
