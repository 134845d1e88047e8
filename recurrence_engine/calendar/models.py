"""Data models for recurring calendar events."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from ..core.timezone_utils import coerce_datetime


class EventStatus(str, Enum):
    """Lifecycle status of a stored event row."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RepeatUnit(str, Enum):
    """Repeat unit stored with custom recurrence rules."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class DeleteScope(str, Enum):
    """How far a delete reaches into a recurring series."""

    SINGLE = "single"
    THIS_AND_FUTURE = "thisAndFuture"
    ALL = "all"


# Termination policies


class NeverEnd(BaseModel):
    """Series repeats until a generation cap is hit."""

    model_config = ConfigDict(frozen=True)

    end_type: Literal["never"] = "never"


class EndOnDate(BaseModel):
    """Series stops once the next step would pass ``end_date``."""

    model_config = ConfigDict(frozen=True)

    end_type: Literal["on"] = "on"
    end_date: datetime

    @field_validator("end_date", mode="before")
    @classmethod
    def _coerce_end_date(cls, value: Any) -> datetime:
        return coerce_datetime(value)


class EndAfterCount(BaseModel):
    """Series stops after ``occurrences`` steps counted from its first start."""

    model_config = ConfigDict(frozen=True)

    end_type: Literal["after"] = "after"
    occurrences: int = Field(..., ge=1)


EndPolicy = Annotated[Union[NeverEnd, EndOnDate, EndAfterCount], Field(discriminator="end_type")]


# Recurrence rule variants


class _RuleBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    end: EndPolicy = Field(default_factory=NeverEnd)


class DailyRule(_RuleBase):
    type: Literal["daily"] = "daily"
    interval: int = Field(default=1, ge=1)


class WeeklyRule(_RuleBase):
    type: Literal["weekly"] = "weekly"
    interval: int = Field(default=1, ge=1)


class MonthlyRule(_RuleBase):
    """Calendar-month stepping; day-of-month overflow clamps to the month's last day."""

    type: Literal["monthly"] = "monthly"
    interval: int = Field(default=1, ge=1)


class AnnualRule(_RuleBase):
    type: Literal["annually"] = "annually"


class WeekdaysRule(_RuleBase):
    """Monday through Friday."""

    type: Literal["weekdays"] = "weekdays"


class CustomRule(_RuleBase):
    """Day-interval stepping or a search over ``days_of_week``.

    ``days_of_week`` uses 0=Sunday ... 6=Saturday. When present the
    weekday search drives stepping and ``interval`` is not consulted.
    ``repeat_unit`` is kept for the stored blob only.
    """

    type: Literal["custom"] = "custom"
    interval: int = Field(default=1, ge=1)
    repeat_unit: RepeatUnit = RepeatUnit.DAY
    days_of_week: Optional[tuple[int, ...]] = None

    @field_validator("days_of_week")
    @classmethod
    def _validate_days(cls, value: Optional[tuple[int, ...]]) -> Optional[tuple[int, ...]]:
        if value is None:
            return None
        if not value:
            raise ValueError("days_of_week must not be empty when provided")
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week values must be within 0..6")
        return tuple(sorted(set(value)))


RecurrenceRule = Annotated[
    Union[DailyRule, WeeklyRule, MonthlyRule, AnnualRule, WeekdaysRule, CustomRule],
    Field(discriminator="type"),
]


class EventWindow(BaseModel):
    """Half-open ``[start, end)`` query window."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> datetime:
        return coerce_datetime(value)

    @model_validator(mode="after")
    def _check_order(self) -> EventWindow:
        if self.end <= self.start:
            raise ValueError("window end must be after window start")
        return self

    @classmethod
    def from_iso(cls, start: str, end: str) -> EventWindow:
        """Build a window from ISO-8601 query parameters."""
        return cls(start=start, end=end)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


class EventTemplate(BaseModel):
    """A stored event row, recurring parent or standalone."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(..., description="Event ID")
    user_id: str = Field(..., description="Owning user")
    title: str = Field(..., description="Event title")
    description: Optional[str] = None
    location: Optional[str] = None

    start_time: datetime = Field(..., description="First occurrence start (UTC)")
    end_time: datetime = Field(..., description="First occurrence end (UTC)")
    timezone: str = Field(default="UTC", description="IANA zone used for calendar arithmetic")
    all_day: bool = False

    recurrence: Optional[RecurrenceRule] = None
    parent_event_id: Optional[str] = None
    status: EventStatus = EventStatus.ACTIVE
    deleted_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _coerce_times(cls, value: Any) -> datetime:
        return coerce_datetime(value)

    @field_validator("deleted_at", mode="before")
    @classmethod
    def _coerce_deleted_at(cls, value: Any) -> Optional[datetime]:
        return None if value is None else coerce_datetime(value)

    @model_validator(mode="after")
    def _check_times(self) -> EventTemplate:
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self

    @property
    def is_recurring_parent(self) -> bool:
        return self.recurrence is not None

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE.value and self.deleted_at is None

    @field_serializer("start_time", "end_time")
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()


class Occurrence(BaseModel):
    """A derived repetition of a recurring parent. Never persisted."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Derived instance ID: {parent}_instance_{index}")
    parent_event_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None

    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"
    all_day: bool = False

    instance_index: int = Field(..., ge=0, description="0-based position in the series")
    is_instance: bool = True

    @field_serializer("start_time", "end_time")
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()


class Holiday(BaseModel):
    """Public holiday row."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: Optional[str] = None
    holiday_date: date
    is_recurring: bool = False
    countries: Optional[list[str]] = None
    is_active: bool = True


class RangeQueryResult(BaseModel):
    """Merged, time-sorted events plus holidays for a query window."""

    events: list[Union[Occurrence, EventTemplate]] = Field(default_factory=list)
    holidays: list[Holiday] = Field(default_factory=list)


class EventCreate(BaseModel):
    """Fields accepted when creating a stored event."""

    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"
    all_day: bool = False
    recurrence: Optional[RecurrenceRule] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _coerce_times(cls, value: Any) -> datetime:
        return coerce_datetime(value)


class EventUpdate(BaseModel):
    """Partial update; only explicitly set fields are written."""

    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    timezone: Optional[str] = None
    all_day: Optional[bool] = None
    status: Optional[EventStatus] = None
    recurrence: Optional[RecurrenceRule] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _coerce_times(cls, value: Any) -> Optional[datetime]:
        return None if value is None else coerce_datetime(value)
