"""
Error taxonomy for the scheduling engine.

Business outcomes (conflicts, under-generation) are returned by the pure
generator and reconciler as values. The exceptions below are raised by the
Django-bound service layer or for malformed input.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class ConfigurationError(SchedulingError):
    """Branch working calendar is empty or its operating hours are malformed."""


class ConflictError(SchedulingError):
    """
    One or more slots are already taken by another client's active session.

    Carries the conflicts so callers can offer the alternative start times.
    """

    def __init__(self, conflicts, message=None):
        self.conflicts = list(conflicts)
        if message is None:
            message = (
                f"{len(self.conflicts)} requested slot(s) are not available "
                "for this vehicle"
            )
        super().__init__(message)


class PersistenceError(SchedulingError):
    """The session store failed while writing a reconciled plan."""


class UnderGenerationWarning(UserWarning):
    """Fewer sessions were scheduled than requested within the lookahead horizon."""
