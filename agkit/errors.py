"""Base exceptions shared across agkit modules."""


class AgkitError(Exception):
    """Base exception for agkit operations."""

    pass


class UsageError(AgkitError):
    """Raised when a command is invoked without the arguments it needs."""

    pass
