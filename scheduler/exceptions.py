"""Exceptions raised by the scheduling layer."""


class SchedulerError(Exception):
    """Base class for scheduling errors."""


class JobPersistenceError(SchedulerError):
    """The durable store could not save a job. The only hard enqueue-time error."""


class UnknownJobError(SchedulerError):
    """No handler is registered under the requested job name."""


class RegistryConfigurationError(SchedulerError):
    """The handler registry does not cover every job name the system emits."""
