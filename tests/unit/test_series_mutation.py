"""
Unit tests for SeriesMutationCoordinator.

Mutations are exercised end to end against the in-memory store with the
range query sharing the same instance cache, so every test also checks that
a read after the mutation never sees stale occurrences.
"""

from datetime import datetime, timezone

import pytest

from recurrence_engine.calendar.models import (
    DailyRule,
    DeleteScope,
    EndAfterCount,
    EventCreate,
    EventUpdate,
    WeeklyRule,
)
from recurrence_engine.core.dependencies import DependencyContainer
from recurrence_engine.core.exceptions import AuditError, EventNotFoundError, PersistenceError
from recurrence_engine.domain.memory_store import InMemoryEventStore

pytestmark = pytest.mark.unit

UTC = timezone.utc

SERIES_START = datetime(2024, 1, 1, 9, tzinfo=UTC)


class FailingAuditSink:
    def __init__(self) -> None:
        self.calls = 0

    async def record(self, action, user_id, entity_id, details):
        self.calls += 1
        raise AuditError("audit table unavailable")


@pytest.fixture
def weekly_store(make_record) -> InMemoryEventStore:
    return InMemoryEventStore([make_record("series", SERIES_START, WeeklyRule())])


@pytest.fixture
def deps(weekly_store, holiday_store, audit_sink, engine_settings):
    return DependencyContainer.build_dependencies(weekly_store, holiday_store, audit_sink, engine_settings)


async def _series_starts(deps, window) -> list[datetime]:
    result = await deps.range_query.get_events_in_range("user-1", window)
    return [event.start_time for event in result.events if getattr(event, "parent_event_id", None) == "series"]


class TestDeleteThisAndFuture:
    """Truncating a series at an occurrence."""

    @pytest.mark.asyncio
    @pytest.mark.critical_path
    async def test_truncation_hides_cached_occurrences(self, deps, weekly_store, year_2024) -> None:
        assert len(await _series_starts(deps, year_2024)) == 53

        affected = await deps.series_mutation.delete_event(
            "series", "user-1", DeleteScope.THIS_AND_FUTURE, occurrence_start=datetime(2024, 1, 15, 9, tzinfo=UTC)
        )

        assert affected == ["series"]
        assert await _series_starts(deps, year_2024) == [SERIES_START, datetime(2024, 1, 8, 9, tzinfo=UTC)]

        stored = (await weekly_store.get_event("series", "user-1"))["recurrence_config"]
        assert stored["endType"] == "on"
        assert stored["endDate"] == "2024-01-14T09:00:00+00:00"

    @pytest.mark.asyncio
    async def test_scope_accepts_the_wire_value(self, deps, year_2024) -> None:
        await deps.series_mutation.delete_event(
            "series", "user-1", "thisAndFuture", occurrence_start=datetime(2024, 1, 8, 9, tzinfo=UTC)
        )

        assert await _series_starts(deps, year_2024) == [SERIES_START]

    @pytest.mark.asyncio
    async def test_without_occurrence_start_the_series_is_emptied(self, deps, year_2024) -> None:
        await deps.series_mutation.delete_event("series", "user-1", DeleteScope.THIS_AND_FUTURE)

        assert await _series_starts(deps, year_2024) == []

    @pytest.mark.asyncio
    async def test_non_recurring_event_is_deleted_singly(
        self, make_record, holiday_store, engine_settings, year_2024
    ) -> None:
        store = InMemoryEventStore([make_record("lunch", datetime(2024, 1, 10, 12, tzinfo=UTC))])
        deps = DependencyContainer.build_dependencies(store, holiday_store, settings=engine_settings)

        affected = await deps.series_mutation.delete_event("lunch", "user-1", DeleteScope.THIS_AND_FUTURE)

        assert affected == ["lunch"]
        assert (await deps.range_query.get_events_in_range("user-1", year_2024)).events == []


class TestDeleteSingleAndAll:
    @pytest.mark.asyncio
    async def test_single_delete_of_a_parent_removes_the_series(self, deps, year_2024) -> None:
        await _series_starts(deps, year_2024)

        await deps.series_mutation.delete_event("series", "user-1", DeleteScope.SINGLE)

        assert await _series_starts(deps, year_2024) == []

    @pytest.mark.asyncio
    async def test_delete_all_removes_parent_and_child_rows(
        self, make_record, holiday_store, engine_settings, year_2024
    ) -> None:
        store = InMemoryEventStore(
            [
                make_record("series", SERIES_START, WeeklyRule()),
                make_record("moved-1", datetime(2024, 1, 9, 10, tzinfo=UTC), parent_event_id="series"),
                make_record("moved-2", datetime(2024, 1, 16, 10, tzinfo=UTC), parent_event_id="series"),
                make_record("unrelated", datetime(2024, 2, 1, 10, tzinfo=UTC)),
            ]
        )
        deps = DependencyContainer.build_dependencies(store, holiday_store, settings=engine_settings)
        await deps.range_query.get_events_in_range("user-1", year_2024)

        affected = await deps.series_mutation.delete_event("series", "user-1", DeleteScope.ALL)

        assert sorted(affected) == ["moved-1", "moved-2", "series"]
        result = await deps.range_query.get_events_in_range("user-1", year_2024)
        assert [event.id for event in result.events] == ["unrelated"]
        assert all(row["status"] == "cancelled" for row in store.all_rows() if row["id"] != "unrelated")

    @pytest.mark.asyncio
    async def test_missing_event_raises_not_found(self, deps) -> None:
        with pytest.raises(EventNotFoundError) as exc_info:
            await deps.series_mutation.delete_event("missing", "user-1")

        assert exc_info.value.event_id == "missing"

    @pytest.mark.asyncio
    async def test_other_users_event_raises_not_found(self, deps) -> None:
        with pytest.raises(EventNotFoundError):
            await deps.series_mutation.delete_event("series", "user-2", DeleteScope.ALL)


class TestWriteFailures:
    @pytest.mark.asyncio
    async def test_failed_write_leaves_cache_untouched(self, deps, weekly_store, year_2024) -> None:
        await _series_starts(deps, year_2024)
        weekly_store.fail_next_write()

        with pytest.raises(PersistenceError):
            await deps.series_mutation.delete_event("series", "user-1", DeleteScope.ALL)

        stats = deps.instance_cache.get_stats()
        assert stats["invalidations"] == 0
        assert stats["current_size"] == 1
        assert len(await _series_starts(deps, year_2024)) == 53

    @pytest.mark.asyncio
    async def test_unexpected_store_error_is_wrapped(self, deps, weekly_store, monkeypatch) -> None:
        async def broken_update(event_id, user_id, fields):
            raise ConnectionError("database unreachable")

        monkeypatch.setattr(weekly_store, "update_event", broken_update)

        with pytest.raises(PersistenceError) as exc_info:
            await deps.series_mutation.update_event("series", "user-1", EventUpdate(title="Retro"))

        assert isinstance(exc_info.value.__cause__, ConnectionError)


class TestUpdateAndCreate:
    @pytest.mark.asyncio
    async def test_update_invalidates_cached_occurrences(self, deps, year_2024) -> None:
        await deps.range_query.get_events_in_range("user-1", year_2024)

        updated = await deps.series_mutation.update_event("series", "user-1", EventUpdate(title="Retro"))

        assert updated.title == "Retro"
        result = await deps.range_query.get_events_in_range("user-1", year_2024)
        assert {event.title for event in result.events} == {"Retro"}

    @pytest.mark.asyncio
    async def test_update_recurrence_rewrites_stored_config(self, deps, weekly_store, year_2024) -> None:
        changes = EventUpdate(recurrence=DailyRule(end=EndAfterCount(occurrences=2)))

        updated = await deps.series_mutation.update_event("series", "user-1", changes)

        assert updated.recurrence == DailyRule(end=EndAfterCount(occurrences=2))
        row = await weekly_store.get_event("series", "user-1")
        assert row["recurrence_type"] == "daily"
        assert row["title"] == "Event series"
        assert len(await _series_starts(deps, year_2024)) == 2

    @pytest.mark.asyncio
    async def test_update_missing_event_raises_not_found(self, deps) -> None:
        with pytest.raises(EventNotFoundError):
            await deps.series_mutation.update_event("missing", "user-1", EventUpdate(title="Retro"))

    @pytest.mark.asyncio
    async def test_created_series_is_expanded_by_the_next_query(self, deps, year_2024) -> None:
        data = EventCreate(
            title="Planning",
            start_time="2024-03-04T10:00:00Z",
            end_time="2024-03-04T11:00:00Z",
            recurrence=WeeklyRule(end=EndAfterCount(occurrences=3)),
        )

        created = await deps.series_mutation.create_event("user-1", data)

        assert created.is_recurring_parent
        result = await deps.range_query.get_events_in_range("user-1", year_2024)
        planning = [event for event in result.events if event.title == "Planning"]
        assert [event.id for event in planning] == [f"{created.id}_instance_{i}" for i in range(3)]


class TestAudit:
    @pytest.mark.asyncio
    async def test_mutations_are_audited(self, deps, audit_sink) -> None:
        await deps.series_mutation.update_event("series", "user-1", EventUpdate(title="Retro"))
        await deps.series_mutation.delete_event("series", "user-1", DeleteScope.ALL)
        await deps.series_mutation.drain_audit()

        assert [entry["action"] for entry in audit_sink.entries] == [
            "calendar_event_updated",
            "calendar_event_deleted",
        ]
        assert audit_sink.entries[1]["details"]["deleteType"] == "all"
        assert audit_sink.entries[0]["details"]["fieldsUpdated"] == ["title"]

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_the_mutation(
        self, weekly_store, holiday_store, engine_settings, year_2024
    ) -> None:
        sink = FailingAuditSink()
        deps = DependencyContainer.build_dependencies(weekly_store, holiday_store, sink, engine_settings)

        affected = await deps.series_mutation.delete_event("series", "user-1")
        await deps.series_mutation.drain_audit()

        assert affected == ["series"]
        assert sink.calls == 1
        assert await _series_starts(deps, year_2024) == []
