"""Typed failures surfaced by the upres pipeline."""


class UpresError(Exception):
    """Base class for all upres failures."""


class InvalidConfiguration(UpresError, ValueError):
    """Configuration values are inconsistent or out of range."""


class NotInitialized(UpresError, RuntimeError):
    """An operation was invoked before `Pipeline.init()`."""


class EngineFailure(UpresError, RuntimeError):
    """The inference engine failed while processing a batch."""


class Cancelled(UpresError):
    """Cooperative cancellation was observed at a pass boundary."""


class CodecFailure(UpresError, OSError):
    """Image decode or encode failed."""
