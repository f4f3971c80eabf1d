"""
Transport events.

The paho-mqtt callbacks are translated into these immutable events and
queued, so the connection state is only ever mutated on the thread that
calls ``ConnectionManager.dispatch()``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class ConnectionState(str, Enum):
    """Observable connection state. There is no CONNECTING state."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERRORED = "errored"


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Reconnecting:
    reason: str = ""


@dataclass(frozen=True)
class Closed:
    reason: str = ""


@dataclass(frozen=True)
class TransportFailure:
    message: str


@dataclass(frozen=True)
class Message:
    topic: str
    payload: bytes


TransportEvent = Union[Connected, Reconnecting, Closed, TransportFailure, Message]
