"""Error taxonomy shared by the store, executors, and agent event lifecycle."""


class SilentTrayError(Exception):
    """Base class for every error this package raises on purpose."""


class ValidationError(SilentTrayError, ValueError):
    """A payload or input is missing fields or carries malformed values."""


class NotFoundError(SilentTrayError, LookupError):
    """A referenced entity (agent event, note, task, workspace...) does not exist."""


class ForeignKeyError(SilentTrayError):
    """The store rejected a write because a referenced row does not exist."""


class InvalidStateError(SilentTrayError):
    """An agent event is not in the status the operation requires."""


class UnsupportedActionError(SilentTrayError):
    """No executor is registered for an (agent, action) pair."""
