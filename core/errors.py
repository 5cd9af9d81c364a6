class HabitCoreError(Exception):
    """Base class for scheduling/completion failures surfaced to callers."""

    retryable = False


class InvalidRecurrence(HabitCoreError, ValueError):
    """Schedule descriptor or alarm rule text rejected at write time."""


class InvalidTimezone(HabitCoreError, ValueError):
    pass


class NotFound(HabitCoreError, LookupError):
    pass


class NotOwned(NotFound):
    pass


class TransientFailure(HabitCoreError):
    """Infrastructure failure. Retrying the whole operation is safe."""

    retryable = True


class LockServiceUnavailable(TransientFailure):
    pass


class OperationTimedOut(TransientFailure):
    pass
