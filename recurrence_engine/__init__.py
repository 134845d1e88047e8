"""recurrence_engine - recurring calendar event expansion and series mutation.

Turns stored recurring-event rows into concrete occurrences for arbitrary
query windows, caches the results per (event, window), and keeps that cache
coherent with single, this-and-future and whole-series mutations.

Typical wiring at host startup:

    deps = DependencyContainer.build_dependencies(event_store, holiday_store, audit_sink)
    result = await deps.range_query.get_events_in_range(user_id, window)
"""

__version__ = "0.1.0"

from .calendar.instance_generator import GeneratorConfig, InstanceGenerator, generate
from .calendar.models import (
    AnnualRule,
    CustomRule,
    DailyRule,
    DeleteScope,
    EndAfterCount,
    EndOnDate,
    EventCreate,
    EventTemplate,
    EventUpdate,
    EventWindow,
    Holiday,
    MonthlyRule,
    NeverEnd,
    Occurrence,
    RangeQueryResult,
    WeekdaysRule,
    WeeklyRule,
)
from .calendar.recurrence_config import (
    describe_rule,
    parse_recurrence_config,
    rule_to_config,
    template_from_record,
    validate_recurrence_config,
)
from .core.config_manager import ConfigManager, EngineSettings
from .core.dependencies import DependencyContainer, EngineDependencies
from .core.exceptions import (
    AuditError,
    CacheUnavailableError,
    EventNotFoundError,
    InvalidRuleError,
    PersistenceError,
    RecurrenceEngineError,
)
from .core.logging_config import configure_engine_logging, request_context
from .domain.instance_cache import InstanceCache, NullInstanceCache
from .domain.range_query import RangeQueryCoordinator
from .domain.series_mutation import SeriesMutationCoordinator

__all__ = [
    "AnnualRule",
    "AuditError",
    "CacheUnavailableError",
    "ConfigManager",
    "CustomRule",
    "DailyRule",
    "DeleteScope",
    "DependencyContainer",
    "EndAfterCount",
    "EndOnDate",
    "EngineDependencies",
    "EngineSettings",
    "EventCreate",
    "EventNotFoundError",
    "EventTemplate",
    "EventUpdate",
    "EventWindow",
    "GeneratorConfig",
    "Holiday",
    "InstanceCache",
    "InstanceGenerator",
    "InvalidRuleError",
    "MonthlyRule",
    "NeverEnd",
    "NullInstanceCache",
    "Occurrence",
    "PersistenceError",
    "RangeQueryCoordinator",
    "RangeQueryResult",
    "RecurrenceEngineError",
    "SeriesMutationCoordinator",
    "WeekdaysRule",
    "WeeklyRule",
    "configure_engine_logging",
    "describe_rule",
    "generate",
    "parse_recurrence_config",
    "request_context",
    "rule_to_config",
    "template_from_record",
    "validate_recurrence_config",
]
