"""
ConnectionManager - single broker connection lifecycle
======================================================

Bounded Context: MQTT connection management

Responsibilities:
  - Open/close exactly one paho-mqtt client per configuration
  - Subscribe to the configured topic on every (re)connect
  - Translate paho callbacks into typed transport events
  - Apply connection state transitions on the caller's thread

Threading:
  - paho runs its own network thread (loop_start/loop_stop)
  - Callbacks only enqueue (handle, event) pairs on a bounded queue
  - dispatch() drains the queue on the owner's thread; events whose handle
    is not the active one are dropped, so a closed handle can never mutate
    current state

Reconnection:
  Delegated to paho's own retry loop (reconnect_delay_set). This module
  only reflects what the transport reports.
"""

import itertools
import queue
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from .config import ConnectionConfig
from .events import (
    Closed,
    Connected,
    ConnectionState,
    Message,
    Reconnecting,
    TransportEvent,
    TransportFailure,
)
from .logging import LogEvent, StructuredLogger, create_logger

DEFAULT_WS_PATH = "/mqtt"


class ConnectionInitError(Exception):
    """Raised when the transport client cannot be created or started."""
    pass


ClientFactory = Callable[[ConnectionConfig], Any]


def create_client(config: ConnectionConfig) -> mqtt.Client:
    """
    Build a paho-mqtt client for a WebSocket broker endpoint.

    Args:
        config: Connection parameters

    Returns:
        Configured (not yet connected) client
    """
    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=config.client_id,
        transport="websockets",
        protocol=mqtt.MQTTv311,
    )
    client.ws_set_options(path=config.path or DEFAULT_WS_PATH)

    if config.scheme.secure:
        client.tls_set()

    if config.credentials:
        client.username_pw_set(
            config.credentials.username, config.credentials.password
        )

    client.reconnect_delay_set(
        min_delay=config.reconnect_min_delay,
        max_delay=config.reconnect_max_delay,
    )
    return client


def _is_failure(reason_code: Any) -> bool:
    is_failure = getattr(reason_code, "is_failure", None)
    if is_failure is None:
        return reason_code != 0
    return bool(is_failure)


class ConnectionHandle:
    """
    One opened connection. Identity is what matters: events are tagged with
    the handle that produced them.
    """

    def __init__(self, handle_id: int, config: ConnectionConfig):
        self.handle_id = handle_id
        self.config = config
        self.client: Any = None
        self.closed = False

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"ConnectionHandle(#{self.handle_id}, {self.config.url}, {state})"


class ConnectionManager:
    """
    Owns the bridge's single broker connection.

    Example:
        manager = ConnectionManager(on_message=handle_frame)
        manager.open(config)
        while running:
            manager.dispatch(timeout=0.1)
        manager.close(manager.active)
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        client_factory: Optional[ClientFactory] = None,
        on_connected: Optional[Callable[[], None]] = None,
        on_reconnecting: Optional[Callable[[], None]] = None,
        on_closed: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_message: Optional[Callable[[str, bytes], None]] = None,
        max_pending: int = 1024,
    ):
        """
        Args:
            logger: Structured logger (default: component "connection")
            client_factory: Builds the transport client from a config
            on_connected / on_reconnecting / on_closed / on_error / on_message:
                Callbacks invoked from dispatch(), in transport order
            max_pending: Bound of the transport event queue
        """
        self.logger = logger or create_logger("connection")
        self._client_factory = client_factory or create_client

        self.on_connected = on_connected
        self.on_reconnecting = on_reconnecting
        self.on_closed = on_closed
        self.on_error = on_error
        self.on_message = on_message

        self._events: "queue.Queue" = queue.Queue(maxsize=max_pending)
        self._ids = itertools.count(1)
        self._active: Optional[ConnectionHandle] = None

        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[str] = None

    @property
    def active(self) -> Optional[ConnectionHandle]:
        return self._active

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    # ===== Lifecycle =====

    def open(self, config: ConnectionConfig) -> ConnectionHandle:
        """
        Open a connection for ``config``, closing the current one first.

        Non-blocking: the outcome is observed through later dispatch() calls.

        Raises:
            ConnectionInitError: If the transport client fails to initialize
        """
        if self._active is not None:
            self.close(self._active)

        handle = ConnectionHandle(next(self._ids), config)
        try:
            client = self._client_factory(config)
            self._bind(handle, client)
            handle.client = client
            client.connect_async(config.host, config.port, keepalive=config.keepalive)
            client.loop_start()
        except Exception as e:
            handle.closed = True
            self.state = ConnectionState.ERRORED
            self.last_error = str(e) or type(e).__name__
            self.logger.error(
                event=LogEvent.MQTT_INIT_ERROR,
                message="Failed to initialize MQTT client",
                exc_info=e,
                metadata={'broker': config.url},
            )
            raise ConnectionInitError(self.last_error) from e

        self._active = handle
        self.logger.info(
            event=LogEvent.MQTT_CONNECTING,
            message="Connection opened",
            metadata={
                'handle': handle.handle_id,
                'broker': config.url,
                'subscribe_topic': config.subscribe_topic or None,
            },
        )
        return handle

    def close(self, handle: Optional[ConnectionHandle]) -> None:
        """
        Tear down ``handle``. Synchronous: once this returns, no event from
        the handle is observed, including events already queued.
        """
        if handle is None or handle.closed:
            return

        handle.closed = True
        if handle.client is not None:
            try:
                handle.client.disconnect()
                handle.client.loop_stop()
            except Exception as e:
                self.logger.warning(
                    event=LogEvent.MQTT_DISCONNECTED,
                    message=f"Error during disconnect: {e}",
                    metadata={'handle': handle.handle_id},
                )

        if handle is self._active:
            self._active = None
            self.state = ConnectionState.DISCONNECTED

        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Connection closed",
            metadata={'handle': handle.handle_id, 'broker': handle.config.url},
        )

    def reset(self) -> None:
        """Close the active handle and return to DISCONNECTED, clearing any error."""
        self.close(self._active)
        self.state = ConnectionState.DISCONNECTED
        self.last_error = None

    def send(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> bool:
        """
        Publish through the active client.

        Returns:
            True if the transport accepted the message, False otherwise
        """
        handle = self._active
        if handle is None or handle.closed:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Cannot publish: no active connection",
            )
            return False

        try:
            result = handle.client.publish(topic, payload, qos=qos, retain=retain)
        except (ValueError, TypeError) as e:
            self.logger.error(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Error publishing message",
                exc_info=e,
                metadata={'topic': topic},
            )
            return False

        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message=f"Publish failed (rc={result.rc})",
                metadata={'topic': topic},
            )
            return False

        self.logger.info(
            event=LogEvent.MQTT_PUBLISH_SUCCESS,
            message="Published message",
            metadata={'topic': topic, 'qos': qos, 'retain': retain},
        )
        return True

    # ===== Event application (owner thread) =====

    def dispatch(self, timeout: float = 0.0) -> int:
        """
        Apply pending transport events.

        Args:
            timeout: Seconds to wait for the first event (0 = don't wait)

        Returns:
            Number of events applied (stale events are not counted)
        """
        try:
            if timeout > 0:
                item = self._events.get(timeout=timeout)
            else:
                item = self._events.get_nowait()
        except queue.Empty:
            return 0

        applied = 0
        while True:
            if self._apply(*item):
                applied += 1
            try:
                item = self._events.get_nowait()
            except queue.Empty:
                return applied

    def _apply(self, handle: ConnectionHandle, event: TransportEvent) -> bool:
        if handle is not self._active or handle.closed:
            self.logger.debug(
                event=LogEvent.MQTT_EVENT_DROPPED,
                message="Dropped event from stale handle",
                metadata={'handle': handle.handle_id, 'event': type(event).__name__},
            )
            return False

        if isinstance(event, Message):
            self.logger.debug(
                event=LogEvent.MQTT_MESSAGE_RECEIVED,
                message="Frame received",
                metadata={'topic': event.topic, 'bytes': len(event.payload)},
            )
            if self.on_message:
                self.on_message(event.topic, event.payload)

        elif isinstance(event, Connected):
            self.state = ConnectionState.CONNECTED
            self.last_error = None
            self.logger.info(
                event=LogEvent.MQTT_CONNECTED,
                message="Connected to MQTT broker",
                metadata={'handle': handle.handle_id, 'broker': handle.config.url},
            )
            if self.on_connected:
                self.on_connected()

        elif isinstance(event, (Reconnecting, Closed)):
            if self.state is ConnectionState.CONNECTED:
                self.state = ConnectionState.DISCONNECTED
            if isinstance(event, Reconnecting):
                self.logger.warning(
                    event=LogEvent.MQTT_RECONNECTING,
                    message="Connection lost, transport is reconnecting",
                    metadata={'handle': handle.handle_id, 'reason': event.reason},
                )
                if self.on_reconnecting:
                    self.on_reconnecting()
            else:
                self.logger.info(
                    event=LogEvent.MQTT_DISCONNECTED,
                    message="Broker closed the connection",
                    metadata={'handle': handle.handle_id, 'reason': event.reason},
                )
                if self.on_closed:
                    self.on_closed()

        elif isinstance(event, TransportFailure):
            self.state = ConnectionState.ERRORED
            self.last_error = event.message
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=event.message,
                metadata={'handle': handle.handle_id, 'broker': handle.config.url},
            )
            if self.on_error:
                self.on_error(event.message)

        return True

    # ===== paho callbacks (MQTT network thread) =====

    def _bind(self, handle: ConnectionHandle, client: Any) -> None:
        def on_connect(client, userdata, flags, reason_code, properties=None):
            if _is_failure(reason_code):
                self._enqueue(handle, TransportFailure(f"Connection refused: {reason_code}"))
                return
            topic = handle.config.subscribe_topic
            if topic and not handle.closed:
                client.subscribe(topic)
                self.logger.info(
                    event=LogEvent.MQTT_SUBSCRIBED,
                    message=f"Subscribed to: {topic}",
                    metadata={'handle': handle.handle_id},
                )
            self._enqueue(handle, Connected())

        def on_connect_fail(client, userdata):
            self._enqueue(handle, TransportFailure("Failed to connect to broker"))

        def on_disconnect(client, userdata, flags, reason_code, properties=None):
            if _is_failure(reason_code):
                self._enqueue(handle, Reconnecting(str(reason_code)))
            else:
                self._enqueue(handle, Closed(str(reason_code)))

        def on_message(client, userdata, msg):
            self._enqueue(handle, Message(msg.topic, bytes(msg.payload)))

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_disconnect = on_disconnect
        client.on_message = on_message

    def _enqueue(self, handle: ConnectionHandle, event: TransportEvent) -> None:
        if handle.closed:
            return
        try:
            self._events.put_nowait((handle, event))
        except queue.Full:
            self.logger.warning(
                event=LogEvent.MQTT_EVENT_DROPPED,
                message="Transport event queue full, dropping event",
                metadata={'handle': handle.handle_id, 'event': type(event).__name__},
            )
