"""Exception types raised by the sighting pipeline."""
from __future__ import annotations


class NearbyLogError(Exception):
    """Base class for nearbylog errors."""


class InvalidRecordError(NearbyLogError, ValueError):
    """A device record without a usable address."""


class MalformedEventWarning(UserWarning):
    """A live notification that could not be turned into a record.

    Never raised; instances are logged and kept on the source for inspection.
    """

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message)
        self.payload = payload


class SinkWriteFailure(NearbyLogError):
    """Wraps an exception raised by a log sink."""

    def __init__(self, line: str, cause: BaseException) -> None:
        super().__init__(f"sink write failed: {cause}")
        self.line = line
        self.cause = cause


class PreconditionError(NearbyLogError):
    """A session could not start because a collaborator refused or failed."""


class AuthorizationError(PreconditionError):
    """Radio access has not been authorized."""


class SessionStateError(NearbyLogError, RuntimeError):
    """Illegal session state transition."""


class RadioUnavailableError(NearbyLogError):
    """The local radio adapter could not be queried."""


__all__ = [
    "NearbyLogError",
    "InvalidRecordError",
    "MalformedEventWarning",
    "SinkWriteFailure",
    "PreconditionError",
    "AuthorizationError",
    "SessionStateError",
    "RadioUnavailableError",
]
