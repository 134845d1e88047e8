"""Translation between stored ``recurrence_config`` blobs and recurrence rules.

The CRUD layer persists recurrence as a loose mapping next to a
``recurrence_type`` column. Two key layouts exist in stored rows: the current
one (``interval``, ``repeatUnit``, ``daysOfWeek``, ``endType``, ``endDate``,
``occurrences``) and the one written by the older custom-recurrence modal
(``repeatEvery``, ``repeatOn``, ``end: {type, date, occurrences}``). Both are
accepted here; only the current layout is written back.
"""

from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from ..core.exceptions import InvalidRuleError
from ..core.timezone_utils import coerce_datetime, resolve_zone
from .models import (
    AnnualRule,
    CustomRule,
    DailyRule,
    EndAfterCount,
    EndOnDate,
    EventTemplate,
    MonthlyRule,
    NeverEnd,
    RecurrenceRule,
    WeekdaysRule,
    WeeklyRule,
)

logger = logging.getLogger(__name__)

_rule_adapter: TypeAdapter[Any] = TypeAdapter(RecurrenceRule)

RECURRENCE_TYPES = ("none", "daily", "weekly", "monthly", "annually", "weekdays", "custom")

_DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

_DEFAULT_UNITS = {"weekly": "week", "monthly": "month", "annually": "year"}


def _first(blob: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = blob.get(key)
        if value is not None:
            return value
    return None


def _parse_end_date(value: Any, tz_name: Optional[str]) -> datetime:
    """Date-only values mean "through the end of that day" in the event's zone."""
    if isinstance(value, str) and len(value.strip()) == 10:
        day = coerce_datetime(value).date()
        local_end = datetime.combine(day, time.max, tzinfo=resolve_zone(tz_name))
        return coerce_datetime(local_end)
    return coerce_datetime(value)


def _parse_end_policy(blob: dict[str, Any], tz_name: Optional[str]) -> Any:
    legacy_end = blob.get("end") if isinstance(blob.get("end"), dict) else {}

    end_type = _first(blob, "endType", "end_type") or legacy_end.get("type") or "never"
    end_date = _first(blob, "endDate", "end_date") or legacy_end.get("date")
    occurrences = _first(blob, "occurrences") or legacy_end.get("occurrences")

    if end_type == "never":
        return NeverEnd()
    if end_type == "on":
        if end_date is None:
            raise InvalidRuleError("endType 'on' requires an endDate")
        try:
            return EndOnDate(end_date=_parse_end_date(end_date, tz_name))
        except (ValueError, OverflowError) as e:
            raise InvalidRuleError(f"Invalid endDate {end_date!r}") from e
    if end_type == "after":
        try:
            return EndAfterCount(occurrences=int(occurrences))
        except (TypeError, ValueError) as e:
            raise InvalidRuleError(f"endType 'after' requires a positive count, got {occurrences!r}") from e
    raise InvalidRuleError(f"Unknown endType {end_type!r}")


def parse_recurrence_config(
    recurrence_type: Optional[str],
    blob: Optional[dict[str, Any]],
    tz_name: Optional[str] = None,
) -> Optional[Any]:
    """Build a recurrence rule from a stored type column and config blob.

    Args:
        recurrence_type: Stored ``recurrence_type`` (falls back to ``blob["type"]``)
        blob: Stored ``recurrence_config`` mapping, may be None
        tz_name: Event zone, used to interpret date-only end dates

    Returns:
        A rule instance, or None for non-recurring events

    Raises:
        InvalidRuleError: If the configuration cannot be represented
    """
    blob = dict(blob or {})
    rtype = (recurrence_type or blob.get("type") or "none").lower()
    if rtype not in RECURRENCE_TYPES:
        raise InvalidRuleError(f"Unknown recurrence type {rtype!r}")
    if rtype == "none":
        return None

    interval = _first(blob, "interval", "repeatEvery")
    if interval is None:
        interval = 1
    data: dict[str, Any] = {"type": rtype, "end": _parse_end_policy(blob, tz_name)}

    if rtype in ("daily", "weekly", "monthly", "custom"):
        data["interval"] = interval
    if rtype == "custom":
        data["repeat_unit"] = _first(blob, "repeatUnit", "repeat_unit") or "day"
        days = _first(blob, "daysOfWeek", "days_of_week", "repeatOn")
        # The create path stores [] for "no weekday set"
        if days:
            data["days_of_week"] = days

    try:
        return _rule_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidRuleError(f"Invalid {rtype} recurrence: {e.errors()[0]['msg']}") from e


def validate_recurrence_config(recurrence_type: Optional[str], blob: Optional[dict[str, Any]]) -> bool:
    """Check a stored configuration the way the CRUD boundary does.

    Stricter than ``parse_recurrence_config`` about custom weekday sets: an
    explicitly empty ``daysOfWeek`` is rejected here.
    """
    blob = blob or {}
    if (recurrence_type or blob.get("type")) == "custom" and blob.get("daysOfWeek") == []:
        return False
    try:
        parse_recurrence_config(recurrence_type, blob)
    except InvalidRuleError:
        return False
    return True


def rule_to_config(rule: Any) -> dict[str, Any]:
    """Serialize a rule into the current stored blob layout."""
    end = rule.end
    config: dict[str, Any] = {
        "type": rule.type,
        "interval": getattr(rule, "interval", 1),
        "repeatUnit": _DEFAULT_UNITS.get(rule.type, "day"),
        "daysOfWeek": [],
        "endType": end.end_type,
        "endDate": end.end_date.isoformat() if isinstance(end, EndOnDate) else None,
        "occurrences": end.occurrences if isinstance(end, EndAfterCount) else None,
    }
    if isinstance(rule, CustomRule):
        config["repeatUnit"] = rule.repeat_unit.value
        config["daysOfWeek"] = list(rule.days_of_week or ())
    return config


def with_end_policy(rule: Any, end: Any) -> Any:
    """Return a copy of ``rule`` carrying a different termination policy."""
    return rule.model_copy(update={"end": end})


def describe_rule(rule: Optional[Any], tz_name: Optional[str] = None) -> str:
    """Human-readable summary, e.g. "Every 2 weeks until Mar 1, 2024".

    End dates are rendered in ``tz_name`` (UTC when omitted).
    """
    if rule is None:
        return "Does not repeat"

    interval = getattr(rule, "interval", 1)
    if isinstance(rule, DailyRule):
        desc = "Daily" if interval == 1 else f"Every {interval} days"
    elif isinstance(rule, WeeklyRule):
        desc = "Weekly" if interval == 1 else f"Every {interval} weeks"
    elif isinstance(rule, MonthlyRule):
        desc = "Monthly" if interval == 1 else f"Every {interval} months"
    elif isinstance(rule, AnnualRule):
        desc = "Annually"
    elif isinstance(rule, WeekdaysRule):
        desc = "Every weekday (Monday to Friday)"
    elif isinstance(rule, CustomRule) and rule.days_of_week:
        desc = "Weekly on " + ", ".join(_DAY_NAMES[d] for d in rule.days_of_week)
    else:
        desc = "Custom"

    end = rule.end
    if isinstance(end, EndOnDate):
        until = end.end_date.astimezone(resolve_zone(tz_name))
        desc += f" until {until.strftime('%b')} {until.day}, {until.year}"
    elif isinstance(end, EndAfterCount):
        desc += f", {end.occurrences} times"
    return desc


def template_from_record(record: dict[str, Any]) -> EventTemplate:
    """Build an ``EventTemplate`` from a raw store row.

    A recurring row whose configuration cannot be parsed is kept readable by
    substituting a plain daily rule; reads never fail on a bad blob.
    """
    tz_name = record.get("timezone") or "UTC"
    rule = None
    if record.get("is_recurring_parent", True):
        try:
            rule = parse_recurrence_config(
                record.get("recurrence_type"), record.get("recurrence_config"), tz_name
            )
        except InvalidRuleError as e:
            logger.warning(
                "Event %s has an invalid recurrence config (%s); expanding as daily",
                record.get("id"),
                e,
            )
            rule = DailyRule()

    return EventTemplate(
        id=str(record["id"]),
        user_id=str(record["user_id"]),
        title=record.get("title") or "",
        description=record.get("description"),
        location=record.get("location"),
        start_time=record["start_time"],
        end_time=record["end_time"],
        timezone=tz_name,
        all_day=bool(record.get("all_day", False)),
        recurrence=rule,
        parent_event_id=record.get("parent_event_id"),
        status=record.get("status") or "active",
        deleted_at=record.get("deleted_at"),
    )
