"""Clock and time zone helpers for the recurrence engine."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache
from typing import Any

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

UTC = datetime.timezone.utc

# Overrides the wall clock for deterministic tests and replays
TEST_TIME_ENV_VAR = "RECURRENCE_ENGINE_TEST_TIME"


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via RECURRENCE_ENGINE_TEST_TIME environment
    variable. Format: ISO 8601 datetime string (e.g., "2024-01-15T09:00:00Z").
    """
    test_time = os.environ.get(TEST_TIME_ENV_VAR)
    if test_time:
        try:
            return ensure_utc(date_parser.isoparse(test_time))
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV_VAR, test_time, e)

    return datetime.datetime.now(UTC)


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    """Convert an aware datetime to UTC; naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def coerce_datetime(value: Any) -> datetime.datetime:
    """Parse a stored timestamp (datetime, date or ISO-8601 string) into aware UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime.datetime):
        return ensure_utc(value)
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time.min, tzinfo=UTC)
    if isinstance(value, str):
        return ensure_utc(date_parser.isoparse(value.strip()))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


@lru_cache(maxsize=128)
def resolve_zone(tz_name: str | None) -> datetime.tzinfo:
    """Resolve an IANA zone name, falling back to UTC for unknown names."""
    if not tz_name:
        return UTC
    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, falling back to UTC", tz_name)
        return UTC

