"""Exception hierarchy for the tick feed client."""

from typing import Optional

from .protocol.messages import CloseNotification


class TickFeedError(Exception):
    """Base class for all tick feed errors."""


class EncodeError(TickFeedError):
    """Request could not be encoded for the wire."""


class DecodeError(TickFeedError):
    """Incoming frame has a malformed structure."""


class ConnectError(TickFeedError):
    """Dial or websocket handshake failed."""


class SendError(TickFeedError):
    """Frame could not be sent because the connection is not open."""


class RequestTimeout(TickFeedError, TimeoutError):
    """No response matched a request within its timeout."""

    def __init__(self, request_id: int, timeout: float):
        super().__init__(f"No response for request id={request_id} within {timeout:.1f}s")
        self.request_id = request_id
        self.timeout = timeout


class SessionClosed(TickFeedError):
    """The connection closed while a response was being awaited."""

    def __init__(self, notification: CloseNotification):
        super().__init__(
            f"Connection closed: {notification.reason} (reconnect: {notification.reconnect})"
        )
        self.notification = notification


class ProtocolError(TickFeedError):
    """A response arrived but did not have the expected shape."""


class FatalSessionError(TickFeedError):
    """The session terminated because of an unrecoverable failure."""

    def __init__(self, reason: str, cause: Optional[BaseException] = None):
        message = f"{reason}: {cause}" if cause is not None else reason
        super().__init__(message)
        self.reason = reason
        self.cause = cause


class InvalidTransition(TickFeedError, RuntimeError):
    """A state change not allowed by the session lifecycle was attempted."""
