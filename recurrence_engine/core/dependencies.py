"""Dependency container wiring the engine's components together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..calendar.instance_generator import GeneratorConfig, InstanceGenerator
from ..domain.instance_cache import InstanceCache, NullInstanceCache
from ..domain.range_query import RangeQueryCoordinator
from ..domain.series_mutation import SeriesMutationCoordinator
from .config_manager import ConfigManager, EngineSettings
from .protocols import AuditSink, EventStore, HolidayStore


@dataclass
class EngineDependencies:
    """Process-scoped engine components.

    Created once at startup and handed to request handlers; the cache is the
    only shared mutable state.
    """

    settings: EngineSettings
    generator: InstanceGenerator
    instance_cache: InstanceCache
    range_query: RangeQueryCoordinator
    series_mutation: SeriesMutationCoordinator


class DependencyContainer:
    """Factory for building engine dependencies."""

    @staticmethod
    def build_dependencies(
        event_store: EventStore,
        holiday_store: HolidayStore,
        audit_sink: Optional[AuditSink] = None,
        settings: Optional[EngineSettings] = None,
    ) -> EngineDependencies:
        """Build all engine dependencies.

        Args:
            event_store: Persistence collaborator
            holiday_store: Holiday collaborator
            audit_sink: Optional audit collaborator
            settings: Engine settings (loaded from the environment when omitted)

        Returns:
            EngineDependencies with a shared cache wired into both coordinators
        """
        settings = settings or ConfigManager().load_settings()

        generator = InstanceGenerator(GeneratorConfig.from_settings(settings))
        if settings.cache_ttl_seconds > 0:
            instance_cache: InstanceCache = InstanceCache(
                ttl_seconds=settings.cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
                generator=generator,
            )
        else:
            instance_cache = NullInstanceCache(generator=generator)

        return EngineDependencies(
            settings=settings,
            generator=generator,
            instance_cache=instance_cache,
            range_query=RangeQueryCoordinator(
                event_store,
                holiday_store,
                instance_cache,
                inclusive_end=settings.inclusive_end,
            ),
            series_mutation=SeriesMutationCoordinator(event_store, instance_cache, audit_sink),
        )
