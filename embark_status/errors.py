"""
Error taxonomy for talking to the Status app and persisting network ids.

This is a leaf module with no internal dependencies.
"""

from typing import Optional


class StatusError(Exception):
    """Base class for every error raised by this package."""


class RemoteUnreachable(StatusError):
    """Connection refused or timed out. Always retryable."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class RemoteRejected(StatusError):
    """The Status app answered but declined the operation.

    ``unknown_network`` is set when the app no longer recognises the network
    id it was asked to connect to (a stale cached id).
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 unknown_network: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.unknown_network = unknown_network


class MalformedResponse(RemoteRejected):
    """Success-shaped response missing a required field."""


class StorageError(StatusError):
    """Local persistence failure. Logged, never fatal."""
