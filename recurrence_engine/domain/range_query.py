"""Range queries over stored events with recurring-series expansion."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Union

from ..calendar.models import EventTemplate, EventWindow, Holiday, Occurrence, RangeQueryResult
from ..calendar.recurrence_config import template_from_record
from ..core.exceptions import PersistenceError
from ..core.protocols import EventStore, HolidayStore
from .instance_cache import InstanceCache

logger = logging.getLogger(__name__)

CalendarItem = Union[Occurrence, EventTemplate]


class RangeQueryCoordinator:
    """Builds the merged, time-sorted event list for a user and window.

    Recurring parents are fetched with a loose "start <= window end" filter
    because a parent that began years ago can still produce in-window
    occurrences; exact filtering happens during expansion.
    """

    def __init__(
        self,
        event_store: EventStore,
        holiday_store: HolidayStore,
        instance_cache: InstanceCache,
        inclusive_end: bool = True,
    ):
        """Initialize coordinator.

        Args:
            event_store: Persistence collaborator for event rows
            holiday_store: Holiday collaborator
            instance_cache: Cache consulted for every recurring parent
            inclusive_end: Keep standalone events starting exactly at the window end
        """
        self.event_store = event_store
        self.holiday_store = holiday_store
        self.instance_cache = instance_cache
        self.inclusive_end = inclusive_end

    async def get_events_in_range(
        self,
        user_id: str,
        window: EventWindow,
        include_recurring: bool = True,
    ) -> RangeQueryResult:
        """Fetch, expand, merge and sort events for ``window``; fetch holidays alongside.

        Raises:
            PersistenceError: If the event read fails (holiday failures only log)
        """
        logger.info(
            "Fetching events for user %s: start=%s end=%s include_recurring=%s",
            user_id,
            window.start.isoformat(),
            window.end.isoformat(),
            include_recurring,
        )

        # Taken before the store read so a concurrent invalidate discards our stores
        generation = self.instance_cache.snapshot_generation()
        records, holidays = await asyncio.gather(
            self._fetch_records(user_id, window),
            self._fetch_holidays(window),
        )

        templates = self._to_templates(records)
        standalone = [t for t in templates if not t.is_recurring_parent and self._standalone_in_window(t, window)]
        parents = [t for t in templates if t.is_recurring_parent]

        events: list[CalendarItem] = list(standalone)
        if include_recurring:
            for parent in parents:
                events.extend(self.instance_cache.get_or_generate(parent, window, generation))
        else:
            events.extend(parents)

        # sorted() is stable: ties keep encounter order
        events = sorted(events, key=lambda item: item.start_time)

        logger.info("Found %d events, %d holidays for user %s", len(events), len(holidays), user_id)
        return RangeQueryResult(events=events, holidays=holidays)

    async def _fetch_records(self, user_id: str, window: EventWindow) -> list[dict[str, Any]]:
        try:
            return await self.event_store.fetch_active_events(user_id, window.end)
        except PersistenceError:
            raise
        except Exception as e:
            logger.exception("Failed to fetch calendar events for user %s", user_id)
            raise PersistenceError("Failed to fetch events") from e

    async def _fetch_holidays(self, window: EventWindow) -> list[Holiday]:
        try:
            rows = await self.holiday_store.fetch_holidays(window.start.date(), window.end.date())
            return [Holiday.model_validate(row) for row in rows]
        except Exception:
            logger.exception("Failed to fetch public holidays")
            return []

    @staticmethod
    def _to_templates(records: list[dict[str, Any]]) -> list[EventTemplate]:
        templates = []
        for record in records:
            try:
                template = template_from_record(record)
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed event row %s: %s", record.get("id"), e)
                continue
            if not template.is_active:
                logger.debug("Dropping inactive event %s returned by store", template.id)
                continue
            templates.append(template)
        return templates

    def _standalone_in_window(self, template: EventTemplate, window: EventWindow) -> bool:
        if self.inclusive_end:
            return window.start <= template.start_time <= window.end
        return window.contains(template.start_time)
