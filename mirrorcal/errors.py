"""Exceptions raised by mirrorcal."""


class MirrorCalError(Exception):
    """Base exception for calendar mirroring errors."""


class ConfigurationError(MirrorCalError):
    """Raised when the configuration is invalid or incomplete."""


class SyncRunFatal(MirrorCalError):
    """Raised when a pair run has to be aborted without advancing its cursor."""
