"""Caller-facing errors and their mapping onto protocol failures."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from acp.exceptions import RequestError


class ProtocolUsageError(Exception):
    """A request the caller should not have made; no session state was changed."""

    def __init__(self, message: str, **data: object) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_request_error(self) -> RequestError:
        return RequestError.invalid_params({"message": self.message, **self.data})


class InvalidArgument(ProtocolUsageError):
    pass


class UnknownSession(ProtocolUsageError):
    def __init__(self, session_id: str, message: str = "Unknown session id.") -> None:
        super().__init__(message, sessionId=session_id)


class SessionBusy(ProtocolUsageError):
    """The session is running a prompt and cannot be replaced right now."""

    def __init__(self, session_id: str) -> None:
        super().__init__("Session is busy.", sessionId=session_id)


@contextmanager
def as_request_errors() -> Iterator[None]:
    """Re-raise ProtocolUsageError as an invalid-params RequestError."""
    try:
        yield
    except ProtocolUsageError as exc:
        raise exc.to_request_error() from exc
