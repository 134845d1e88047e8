"""Expansion of recurring event templates into concrete occurrences.

Stepping is done on the wall-clock time in the template's own zone and each
result is converted back to UTC, so a 09:00 local meeting stays at 09:00 local
across DST changes. Fixed-period rules are computed from the series anchor
(``anchor + n * step``) which keeps month-end clamping from drifting: a
monthly series anchored on Jan 31 yields Jan 31, Feb 29, Mar 31, ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any

from dateutil.relativedelta import relativedelta

from ..core.config_manager import get_config_value
from ..core.timezone_utils import UTC, resolve_zone
from .models import (
    AnnualRule,
    CustomRule,
    DailyRule,
    EndAfterCount,
    EndOnDate,
    EventTemplate,
    EventWindow,
    MonthlyRule,
    Occurrence,
    WeekdaysRule,
    WeeklyRule,
)

logger = logging.getLogger(__name__)

# Python weekday(): Monday=0 .. Sunday=6. Stored day sets use Sunday=0.
_SATURDAY = 5
_SUNDAY = 6


def sunday_based_weekday(local: datetime) -> int:
    """Day of week with 0=Sunday ... 6=Saturday."""
    return (local.weekday() + 1) % 7


@dataclass(frozen=True)
class GeneratorConfig:
    """Hard bounds on a single generation call."""

    max_occurrences: int = 500
    max_iterations: int = 1000

    @classmethod
    def from_settings(cls, settings: Any) -> GeneratorConfig:
        """Extract generator bounds from a settings object.

        Args:
            settings: Dict or object with ``max_occurrences`` / ``max_iterations``

        Returns:
            GeneratorConfig with values from settings or defaults
        """
        return cls(
            max_occurrences=get_config_value(settings, "max_occurrences", 500),
            max_iterations=get_config_value(settings, "max_iterations", 1000),
        )


class InstanceGenerator:
    """Pure expansion of a template over a window.

    Holds only immutable configuration, so a single instance is safe to share
    across concurrent requests.
    """

    def __init__(self, config: GeneratorConfig | None = None):
        self.config = config or GeneratorConfig()

    def generate(self, template: EventTemplate, window: EventWindow) -> list[Occurrence]:
        """Expand ``template`` into the occurrences starting inside ``window``.

        Walks forward from the template's own start. Stops at the window end,
        at either cap, or when the termination policy is exhausted. Never
        raises for a rule it cannot step; it falls back to a one-day step.

        Args:
            template: Recurring parent (non-recurring templates yield nothing)
            window: Half-open ``[start, end)`` window

        Returns:
            Occurrences ordered by start time
        """
        rule = template.recurrence
        if rule is None:
            return []

        zone = resolve_zone(template.timezone)
        anchor = template.start_time.astimezone(zone).replace(tzinfo=None)
        duration = template.duration
        end_policy = rule.end

        occurrences: list[Occurrence] = []
        current_local = anchor
        current = template.start_time
        step = 0
        stop_reason = "window_end"

        while True:
            if current >= window.end:
                break
            if len(occurrences) >= self.config.max_occurrences:
                stop_reason = "occurrence_cap"
                break
            if step >= self.config.max_iterations:
                stop_reason = "iteration_cap"
                break
            if isinstance(end_policy, EndOnDate) and current > end_policy.end_date:
                stop_reason = "end_date"
                break
            if isinstance(end_policy, EndAfterCount) and step >= end_policy.occurrences:
                stop_reason = "end_count"
                break

            if current >= window.start:
                occurrences.append(self._make_occurrence(template, current, duration, step))

            current_local = self._next_local(rule, anchor, current_local, step, template.id)
            current = _to_utc(current_local, zone)
            step += 1

        if stop_reason in ("occurrence_cap", "iteration_cap"):
            logger.debug(
                "Expansion of %s stopped by %s after %d steps (%d emitted)",
                template.id,
                stop_reason,
                step,
                len(occurrences),
            )

        return occurrences

    def _next_local(
        self,
        rule: Any,
        anchor: datetime,
        current: datetime,
        step: int,
        template_id: str,
    ) -> datetime:
        try:
            return _step(rule, anchor, current, step)
        except (OverflowError, ValueError, TypeError, AttributeError):
            logger.warning(
                "Could not step recurrence for %s at step %d; using a one-day step",
                template_id,
                step,
                exc_info=True,
            )
            return current + timedelta(days=1)

    @staticmethod
    def _make_occurrence(
        template: EventTemplate, start: datetime, duration: timedelta, index: int
    ) -> Occurrence:
        return Occurrence(
            id=f"{template.id}_instance_{index}",
            parent_event_id=template.id,
            user_id=template.user_id,
            title=template.title,
            description=template.description,
            location=template.location,
            start_time=start,
            end_time=start + duration,
            timezone=template.timezone,
            all_day=template.all_day,
            instance_index=index,
        )


def _to_utc(local_naive: datetime, zone: tzinfo) -> datetime:
    return local_naive.replace(tzinfo=zone).astimezone(UTC)


def _step(rule: Any, anchor: datetime, current: datetime, step: int) -> datetime:
    """Next naive local start after ``current`` (the ``step``-th of the series)."""
    n = step + 1

    if isinstance(rule, DailyRule):
        return anchor + relativedelta(days=rule.interval * n)
    if isinstance(rule, WeeklyRule):
        return anchor + relativedelta(weeks=rule.interval * n)
    if isinstance(rule, MonthlyRule):
        return anchor + relativedelta(months=rule.interval * n)
    if isinstance(rule, AnnualRule):
        return anchor + relativedelta(years=n)
    if isinstance(rule, WeekdaysRule):
        nxt = current + timedelta(days=1)
        while nxt.weekday() in (_SATURDAY, _SUNDAY):
            nxt += timedelta(days=1)
        return nxt
    if isinstance(rule, CustomRule):
        if rule.days_of_week:
            return _next_matching_weekday(current, rule.days_of_week)
        # repeat_unit is stored but does not drive stepping
        return anchor + relativedelta(days=rule.interval * n)

    return current + timedelta(days=1)


def _next_matching_weekday(current: datetime, days_of_week: tuple[int, ...]) -> datetime:
    for offset in range(1, 8):
        candidate = current + timedelta(days=offset)
        if sunday_based_weekday(candidate) in days_of_week:
            return candidate
    return current + timedelta(weeks=1)


def generate(
    template: EventTemplate, window: EventWindow, config: GeneratorConfig | None = None
) -> list[Occurrence]:
    """Convenience wrapper around ``InstanceGenerator(config).generate``."""
    return InstanceGenerator(config).generate(template, window)
