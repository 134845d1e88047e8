"""Shared fixtures for recurrence engine tests."""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from recurrence_engine.calendar.models import EventTemplate, EventWindow
from recurrence_engine.calendar.recurrence_config import rule_to_config
from recurrence_engine.core.config_manager import EngineSettings
from recurrence_engine.domain.memory_store import (
    InMemoryEventStore,
    InMemoryHolidayStore,
    RecordingAuditSink,
)

UTC = timezone.utc


def pytest_configure(config: Any) -> None:
    """Register markers used across the suite."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "critical_path: Core functionality tests")


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Keep engine environment overrides from leaking between tests."""
    for name in (
        "RECURRENCE_ENGINE_TEST_TIME",
        "RECURRENCE_ENGINE_DEBUG",
        "RECURRENCE_ENGINE_LOG_LEVEL",
        "RECURRENCE_ENGINE_CACHE_TTL_SECONDS",
        "RECURRENCE_ENGINE_CACHE_MAX_ENTRIES",
        "RECURRENCE_ENGINE_MAX_OCCURRENCES",
        "RECURRENCE_ENGINE_MAX_ITERATIONS",
        "RECURRENCE_ENGINE_INCLUSIVE_END",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Deterministic settings independent of the host environment."""
    return EngineSettings(
        cache_ttl_seconds=300,
        cache_max_entries=100,
        max_occurrences=500,
        max_iterations=1000,
        inclusive_end=True,
    )


@pytest.fixture
def make_template() -> Callable[..., EventTemplate]:
    """Factory for templates: 30-minute events owned by user-1 by default."""

    def _make(
        start: datetime,
        recurrence: Optional[Any] = None,
        duration: timedelta = timedelta(minutes=30),
        event_id: str = "evt-1",
        tz_name: str = "UTC",
        **overrides: Any,
    ) -> EventTemplate:
        return EventTemplate(
            id=event_id,
            user_id=overrides.pop("user_id", "user-1"),
            title=overrides.pop("title", "Standup"),
            start_time=start,
            end_time=start + duration,
            timezone=tz_name,
            recurrence=recurrence,
            **overrides,
        )

    return _make


@pytest.fixture
def make_record() -> Callable[..., dict[str, Any]]:
    """Factory for raw store rows in the persisted column layout."""

    def _make(
        event_id: str,
        start: datetime,
        recurrence: Optional[Any] = None,
        duration: timedelta = timedelta(minutes=30),
        **overrides: Any,
    ) -> dict[str, Any]:
        record = {
            "id": event_id,
            "user_id": "user-1",
            "title": f"Event {event_id}",
            "description": None,
            "location": None,
            "start_time": start.isoformat(),
            "end_time": (start + duration).isoformat(),
            "all_day": False,
            "timezone": "UTC",
            "recurrence_type": recurrence.type if recurrence is not None else "none",
            "recurrence_config": rule_to_config(recurrence) if recurrence is not None else None,
            "is_recurring_parent": recurrence is not None,
            "parent_event_id": None,
            "status": "active",
            "deleted_at": None,
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def year_2024() -> EventWindow:
    return EventWindow(start=utc(2024, 1, 1), end=utc(2024, 12, 31))


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def holiday_store() -> InMemoryHolidayStore:
    return InMemoryHolidayStore(
        [
            {"id": "h-1", "title": "New Year's Day", "holiday_date": "2024-01-01", "is_recurring": True},
            {"id": "h-2", "title": "Spring Holiday", "holiday_date": "2024-04-01", "is_active": False},
            {"id": "h-3", "title": "Christmas Day", "holiday_date": "2024-12-25", "is_recurring": True},
        ]
    )


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()
