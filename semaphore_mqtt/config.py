"""
Broker connection configuration.

Defines the connection parameters for the bridge's single broker connection,
the publish options, and the identity rule that decides whether a
configuration change requires a reconnect.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ConfigError(ValueError):
    """Raised when a configuration value fails validation."""
    pass


class Scheme(str, Enum):
    """Broker transport scheme (WebSocket, plain or TLS)."""

    WS = "ws"
    WSS = "wss"

    @property
    def secure(self) -> bool:
        return self is Scheme.WSS


@dataclass(frozen=True)
class Credentials:
    """Basic auth credentials for the broker."""

    username: str
    password: Optional[str] = None

    def __post_init__(self):
        if not self.username:
            raise ConfigError("credentials require a non-empty username")

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password=***)"


@dataclass(frozen=True)
class PublishOptions:
    """MQTT publish options. Not part of the connection identity."""

    qos: int = 0
    retain: bool = False

    def __post_init__(self):
        if self.qos not in {0, 1, 2}:
            raise ConfigError(f"MQTT QoS must be 0, 1, or 2, got {self.qos}")


def _normalize_path(path: Optional[str]) -> str:
    path = (path or "").strip()
    if path and not path.startswith("/"):
        path = "/" + path
    return path


def _trim(value: Optional[str]) -> str:
    return (value or "").strip()


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Broker connection parameters.

    Topics and the transform expression are trimmed and the WebSocket path
    is normalized to start with '/' at construction time. An empty subscribe
    topic means no subscription; an empty publish topic disables publishing.

    Example:
        >>> cfg = ConnectionConfig(host="localhost", port=9001,
        ...                        subscribe_topic=" lights/state ",
        ...                        publish_topic="lights/set")
        >>> cfg.subscribe_topic
        'lights/state'
    """

    host: str
    port: int = 9001
    scheme: Scheme = Scheme.WS
    path: str = ""
    subscribe_topic: str = ""
    publish_topic: str = ""
    credentials: Optional[Credentials] = None
    transform: Optional[str] = None
    client_id: str = ""
    keepalive: int = 60
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 30

    def __post_init__(self):
        host = _trim(self.host)
        if not host:
            raise ConfigError("host cannot be empty")
        object.__setattr__(self, "host", host)

        try:
            object.__setattr__(self, "scheme", Scheme(self.scheme))
        except ValueError:
            raise ConfigError(
                f"Invalid scheme: {self.scheme!r}. "
                f"Must be one of {[s.value for s in Scheme]}"
            )

        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigError(f"port must be an integer, got {self.port!r}")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"port must be in [1, 65535], got {self.port}")

        if self.keepalive <= 0:
            raise ConfigError(f"keepalive must be positive, got {self.keepalive}")
        if not 0 < self.reconnect_min_delay <= self.reconnect_max_delay:
            raise ConfigError(
                "reconnect delays must satisfy 0 < min <= max, got "
                f"{self.reconnect_min_delay}..{self.reconnect_max_delay}"
            )

        object.__setattr__(self, "path", _normalize_path(self.path))
        object.__setattr__(self, "subscribe_topic", _trim(self.subscribe_topic))
        object.__setattr__(self, "publish_topic", _trim(self.publish_topic))
        object.__setattr__(self, "transform", _trim(self.transform) or None)

    @property
    def url(self) -> str:
        """Broker URL for logs, e.g. ``ws://localhost:9001/mqtt``."""
        return f"{self.scheme.value}://{self.host}:{self.port}{self.path}"

    def identity(self) -> Tuple:
        """
        Fields that affect the underlying connection.

        Two configs with equal identity share a connection; the publish
        topic and publish options are deliberately excluded.
        """
        return (
            self.scheme,
            self.host,
            self.port,
            self.path,
            self.credentials,
            self.subscribe_topic,
            self.transform,
            self.client_id,
            self.keepalive,
            self.reconnect_min_delay,
            self.reconnect_max_delay,
        )

    def same_connection(self, other: "ConnectionConfig") -> bool:
        return self.identity() == other.identity()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionConfig":
        """
        Build from a plain mapping (YAML ``mqtt:`` section).

        Accepts ``auth: {username, password}`` for credentials.
        """
        data = dict(data)
        auth = data.pop("auth", None)
        credentials = None
        if auth:
            if not isinstance(auth, dict):
                raise ConfigError("auth must be a mapping with username/password")
            if auth.get("username"):
                credentials = Credentials(
                    username=str(auth["username"]),
                    password=auth.get("password") or None,
                )

        if "host" not in data:
            raise ConfigError("mqtt.host is required")

        try:
            return cls(credentials=credentials, **data)
        except TypeError as e:
            raise ConfigError(f"Invalid mqtt configuration: {e}")
