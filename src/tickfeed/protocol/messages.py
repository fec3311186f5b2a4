"""Typed messages exchanged with the streaming service."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence


# Method codes understood by the service; heartbeats always carry the same id
SUBSCRIBE_METHOD = 1
HEARTBEAT_METHOD = 7
HEARTBEAT_REQUEST_ID = 3

TRANSPORT_CLOSED_REASON = "transport closed"


class SessionState(Enum):
    """Connection lifecycle phases."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    CLOSING = "closing"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Request:
    """Outgoing request. A method of None is omitted on the wire."""
    id: int
    method: Optional[int] = None
    params: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Response:
    """Incoming message carrying the id of the request it answers."""
    id: int
    result: Any = None
    error: Any = None


@dataclass(frozen=True)
class CloseNotification:
    """Why the connection closed and whether a new one may be opened."""
    reason: str
    reconnect: bool

    @classmethod
    def transport_closed(cls) -> "CloseNotification":
        return cls(reason=TRANSPORT_CLOSED_REASON, reconnect=False)


@dataclass(frozen=True)
class CloseSignal:
    """Transport-level close event; reason is the raw close frame text."""
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class RawFrame:
    """Uncorrelated JSON object, e.g. a channel push."""
    payload: Dict[str, Any]


@dataclass(frozen=True)
class AuthResult:
    """Authentication acknowledgement."""
    client: str
    version: str
    expires: bool
    ttl: int

    @classmethod
    def from_result(cls, result: Any) -> "AuthResult":
        if not isinstance(result, dict):
            raise ValueError(f"auth result must be an object, got {type(result).__name__}")
        return cls(
            client=str(result.get("client", "")),
            version=str(result.get("version", "")),
            expires=bool(result.get("expires", False)),
            ttl=int(result.get("ttl") or 0),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class TickRecord:
    """
    One trade tick.

    The volume is kept as the decimal text sent by the service so that no
    precision is lost before presentation.
    """
    timestamp: int
    price: float
    volume: str

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "TickRecord":
        """
        Build a record from a ``[timestamp, _, price, volume, ...]`` row.

        Raises:
            ValueError: If the row is too short or a field has the wrong type
        """
        if not isinstance(row, (list, tuple)):
            raise ValueError(f"tick row must be an array, got {type(row).__name__}")
        if len(row) < 4:
            raise ValueError(f"tick row has {len(row)} elements, expected at least 4")

        timestamp, _, price, volume = row[:4]
        if not _is_number(timestamp):
            raise ValueError(f"timestamp must be numeric, got {timestamp!r}")
        if not _is_number(price):
            raise ValueError(f"price must be numeric, got {price!r}")
        if not isinstance(volume, str):
            raise ValueError(f"volume must be decimal text, got {volume!r}")

        return cls(timestamp=int(timestamp), price=float(price), volume=volume)
