"""Exception hierarchy for the recurrence engine.

Generation and cache failures are recovered inside the engine; only the
mutation path and the primary event read surface these to callers.
"""


class RecurrenceEngineError(Exception):
    """Base exception for all recurrence engine errors."""


class InvalidRuleError(RecurrenceEngineError):
    """A stored recurrence configuration cannot be represented.

    Raised when:
    - The recurrence type is unknown
    - Interval is below 1
    - An ``on`` termination has no end date
    - An ``after`` termination has no positive occurrence count
    - A custom weekday set is empty or contains values outside 0..6

    Expected to be rejected at the CRUD validation boundary. The read path
    degrades instead of propagating it.
    """


class EventNotFoundError(RecurrenceEngineError):
    """Mutation target does not exist or is not owned by the caller."""

    def __init__(self, event_id: str, user_id: str | None = None):
        self.event_id = event_id
        self.user_id = user_id
        super().__init__(f"Event {event_id!r} not found")


class PersistenceError(RecurrenceEngineError):
    """The storage collaborator failed to read or write a record.

    Mutation failures carrying this error leave the instance cache untouched.
    """


class CacheUnavailableError(RecurrenceEngineError):
    """An externalized cache backend failed.

    Never escapes ``get_or_generate``: callers treat it as a miss.
    """


class AuditError(RecurrenceEngineError):
    """Recording an audit entry failed. Logged, never propagated."""
