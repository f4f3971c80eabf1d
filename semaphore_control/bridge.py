"""
ControlBridge - staged publish/subscribe control
================================================

Bounded Context: Composition root for one panel control

Responsibilities:
  - Own the single broker connection (via ConnectionManager)
  - Route incoming frames through MessageProcessor and EchoDetector
  - Hold the staged value (PublishStaging), independent of traffic
  - Publish the staged value only on explicit request
  - Reconnect when a connection-affecting configuration field changes

Observable state (what a UI renders):
  connection_state, last_error, last_sent, last_received, echoed,
  staged, last_rejection

Threading:
  Single-threaded. Transport events are applied only inside dispatch(),
  on the caller's thread. No locks.

Example:
    bridge = ControlBridge(PanelConfig.from_yaml("panel.yaml"))
    bridge.start()
    bridge.wait_for(lambda b: b.connection_state is ConnectionState.CONNECTED, 5.0)
    bridge.set_staged(Boolean(True))
    bridge.publish()
    bridge.wait_for(lambda b: b.echoed, 2.0)
    bridge.stop()
"""

import json
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from semaphore_mqtt.connection import ClientFactory, ConnectionInitError, ConnectionManager
from semaphore_mqtt.diagnostics import DiagnosticsSink, NullDiagnostics, build_diagnostics, emit
from semaphore_mqtt.events import ConnectionState
from semaphore_mqtt.logging import LogEvent, StructuredLogger, create_logger

from .config import PanelConfig
from .echo import EchoDetector, PublishRecord
from .processor import LastReceived, MessageProcessor, TransformEvaluator
from .staging import PublishStaging, StagedValue, StagingError


class PublishOutcome(str, Enum):
    """Result of a publish request."""

    SENT = "sent"
    NOT_CONNECTED = "not_connected"
    NO_PUBLISH_TOPIC = "no_publish_topic"
    RECEIVE_ONLY = "receive_only"
    SEND_FAILED = "send_failed"

    @property
    def ok(self) -> bool:
        return self is PublishOutcome.SENT


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


class ControlBridge:
    """
    Staged publish/subscribe bridge for one control.

    Attributes:
        config: Active PanelConfig
        staging: Staged value state machine
        processor: Incoming frame processor
        connection: Broker connection manager
        last_sent: Last successful publish (None until first publish)
        last_rejection: Reason the most recent publish was refused, if it was
    """

    def __init__(
        self,
        config: PanelConfig,
        logger: Optional[StructuredLogger] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
        evaluator: Optional[TransformEvaluator] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """
        Args:
            config: Panel configuration
            logger: Structured logger (default: component "bridge")
            diagnostics: Diagnostics sink (default: built from config.diagnostics)
            evaluator: Transform evaluator (default: JSONata)
            client_factory: Transport client factory (default: paho-mqtt)
        """
        self.config = config
        self.logger = logger or create_logger("bridge")
        # Sinks built from config.diagnostics are owned (closed on stop,
        # rebuilt on change); an injected sink is left to its caller.
        self._owns_diagnostics = diagnostics is None
        self.diagnostics = (
            diagnostics if diagnostics is not None else build_diagnostics(config.diagnostics)
        )

        self.staging = PublishStaging(config.mode, config.control)
        self.echo = EchoDetector()
        self.processor = MessageProcessor(
            expression=config.connection.transform,
            evaluator=evaluator,
            echo_probe=self._probe_echo,
            diagnostics=self.diagnostics,
        )
        self.connection = ConnectionManager(
            client_factory=client_factory,
            on_connected=self._on_connected,
            on_reconnecting=self._on_reconnecting,
            on_closed=self._on_closed,
            on_error=self._on_error,
            on_message=self._on_message,
        )

        self.last_sent: Optional[PublishRecord] = None
        self.last_rejection: Optional[PublishOutcome] = None
        # Echo comparison key; reset for every new connection.
        self._echo_key: Optional[PublishRecord] = None
        self._started = False
        self._diagnostics_closed = False

    # ===== Observable state =====

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def last_error(self) -> Optional[str]:
        return self.connection.last_error

    @property
    def last_received(self) -> Optional[LastReceived]:
        return self.processor.last_received

    @property
    def echoed(self) -> bool:
        return self.echo.echoed

    @property
    def staged(self) -> StagedValue:
        return self.staging.value

    @property
    def can_publish(self) -> bool:
        return self._precondition_failure() is None

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict view of the observable state."""
        return {
            'connection_state': self.connection_state.value,
            'last_error': self.last_error,
            'mode': self.staging.mode.value,
            'staged': self.staging.encode(),
            'last_sent': self.last_sent.to_dict() if self.last_sent else None,
            'last_received': self.last_received.to_dict() if self.last_received else None,
            'echoed': self.echoed,
            'last_rejection': self.last_rejection.value if self.last_rejection else None,
        }

    # ===== Lifecycle =====

    def start(self) -> None:
        """Open the broker connection. Non-blocking."""
        if self._started:
            self.logger.warning(
                event=LogEvent.BRIDGE_STARTED,
                message="Bridge already started",
            )
            return
        self._started = True
        if self._owns_diagnostics and self._diagnostics_closed:
            self._use_diagnostics(build_diagnostics(self.config.diagnostics))
        self._open()
        self.logger.info(
            event=LogEvent.BRIDGE_STARTED,
            message="Bridge started",
            metadata={
                'broker': self.config.connection.url,
                'mode': self.config.mode.value,
                'receive_only': self.config.receive_only,
            },
        )

    def stop(self) -> None:
        """Close the broker connection and owned diagnostics. Safe to call multiple times."""
        if not self._started:
            if self._owns_diagnostics:
                self._close_diagnostics()
            return
        self._started = False
        self.connection.reset()
        self.logger.info(
            event=LogEvent.BRIDGE_STOPPED,
            message="Bridge stopped",
            metadata={'processed': self.processor.message_count},
        )
        if self._owns_diagnostics:
            self._close_diagnostics()

    def reconfigure(self, config: PanelConfig) -> bool:
        """
        Apply a new configuration.

        A change to any connection-identity field tears down the current
        connection (state goes to DISCONNECTED, error cleared) before a new
        one is opened. LastReceived and echo status are kept. A change of
        control mode or its defaults reseeds the staged value.

        Returns:
            True if the connection was replaced
        """
        previous = self.config
        self.config = config
        self.processor.expression = config.connection.transform

        if self.staging.configure(config.mode, config.control):
            self.logger.info(
                event=LogEvent.BRIDGE_STAGED,
                message="Staged value reseeded",
                metadata={'mode': config.mode.value, 'staged': self.staging.encode()},
            )

        if (
            self._owns_diagnostics
            and not self._diagnostics_closed
            and previous.diagnostics != config.diagnostics
        ):
            self._close_diagnostics()
            self._use_diagnostics(build_diagnostics(config.diagnostics))

        reconnect = not previous.connection.same_connection(config.connection)
        if reconnect and self._started:
            self.connection.reset()
            self._open()

        self.logger.info(
            event=LogEvent.BRIDGE_RECONFIGURED,
            message="Configuration applied",
            metadata={'reconnect': reconnect, 'broker': config.connection.url},
        )
        return reconnect and self._started

    def _use_diagnostics(self, sink: DiagnosticsSink) -> None:
        self.diagnostics = sink
        self.processor.diagnostics = sink
        self._diagnostics_closed = False

    def _close_diagnostics(self) -> None:
        """Flush and close the owned sink. Events until the next start() are discarded."""
        if self._diagnostics_closed:
            return
        try:
            self.diagnostics.close()
        except Exception as e:
            self.logger.debug(
                event=LogEvent.DIAGNOSTICS_ERROR,
                message=f"Diagnostics sink failed to close: {e}",
            )
        self._use_diagnostics(NullDiagnostics())
        self._diagnostics_closed = True

    def _emit(self, kind: str, payload: Any = None) -> None:
        emit(self.diagnostics, kind, payload, self.logger)

    def _open(self) -> None:
        self._echo_key = None
        try:
            self.connection.open(self.config.connection)
        except ConnectionInitError as e:
            self._emit(
                "init_error",
                {'broker': self.config.connection.url, 'message': str(e)},
            )

    # ===== User actions =====

    def set_staged(self, value: StagedValue) -> bool:
        """
        Edit the staged value. Never publishes.

        Returns:
            False if the value does not fit the active mode (no change)
        """
        try:
            self.staging.edit(value)
        except StagingError as e:
            self.logger.warning(
                event=LogEvent.BRIDGE_STAGE_REJECTED,
                message=str(e),
                metadata={'mode': self.staging.mode.value},
            )
            return False

        self.logger.debug(
            event=LogEvent.BRIDGE_STAGED,
            message="Staged value edited",
            metadata={'staged': self.staging.encode()},
        )
        return True

    def publish(self) -> PublishOutcome:
        """
        Publish the staged value.

        Refused (nothing sent, last_sent unchanged) unless connected, a
        publish topic is configured, and the bridge is not receive-only.
        """
        failure = self._precondition_failure()
        if failure is not None:
            return self._reject(failure, "publish_rejected")

        topic = self.config.connection.publish_topic
        payload = self.staging.encode()
        options = self.config.publish
        if not self.connection.send(topic, payload, qos=options.qos, retain=options.retain):
            return self._reject(PublishOutcome.SEND_FAILED, "publish_failed")

        record = PublishRecord.now(topic, payload)
        self.last_sent = record
        self._echo_key = record
        self.last_rejection = None
        self.echo.reset()

        self.logger.info(
            event=LogEvent.BRIDGE_PUBLISH,
            message="Published staged value",
            metadata={'topic': topic, 'payload': payload, 'qos': options.qos},
        )
        self._emit(
            "publish",
            {'topic': topic, 'payload': payload, 'qos': options.qos, 'retain': options.retain},
        )
        return PublishOutcome.SENT

    def _precondition_failure(self) -> Optional[PublishOutcome]:
        if self.connection.state is not ConnectionState.CONNECTED:
            return PublishOutcome.NOT_CONNECTED
        if not self.config.connection.publish_topic:
            return PublishOutcome.NO_PUBLISH_TOPIC
        if self.config.receive_only:
            return PublishOutcome.RECEIVE_ONLY
        return None

    def _reject(self, outcome: PublishOutcome, kind: str) -> PublishOutcome:
        self.last_rejection = outcome
        self.logger.warning(
            event=LogEvent.BRIDGE_PUBLISH_REJECTED,
            message=f"Publish refused: {outcome.value}",
            metadata={'topic': self.config.connection.publish_topic or None},
        )
        self._emit(kind, {'reason': outcome.value})
        return outcome

    # ===== Event loop =====

    def dispatch(self, timeout: float = 0.0) -> int:
        """Apply pending transport events (see ConnectionManager.dispatch)."""
        return self.connection.dispatch(timeout)

    def wait_for(
        self,
        predicate: Callable[["ControlBridge"], bool],
        timeout: float,
        poll_interval: float = 0.1,
    ) -> bool:
        """
        Dispatch events until ``predicate(self)`` holds or ``timeout`` expires.

        Returns:
            True if the predicate was satisfied
        """
        deadline = time.monotonic() + timeout
        while not predicate(self):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.dispatch(timeout=min(poll_interval, remaining))
        return True

    # ===== Transport callbacks (owner thread, from dispatch) =====

    def _on_connected(self) -> None:
        self._emit("connect", {'broker': self.config.connection.url})

    def _on_reconnecting(self) -> None:
        self._emit("reconnect", {'broker': self.config.connection.url})

    def _on_closed(self) -> None:
        self._emit("close", {'broker': self.config.connection.url})

    def _on_error(self, message: str) -> None:
        self._emit("error", {'broker': self.config.connection.url, 'message': message})

    def _on_message(self, topic: str, payload: bytes) -> None:
        received = self.processor.process(topic, payload)
        self._emit("message", {'topic': topic, 'payload': received.raw_payload})

        if self.config.follow_incoming:
            if self.staging.follow(_as_text(received.transformed_value)):
                self.logger.debug(
                    event=LogEvent.BRIDGE_STAGED,
                    message="Staged value followed incoming message",
                    metadata={'staged': self.staging.encode()},
                )

    def _probe_echo(self, topic: str, raw: str) -> None:
        publish_topic = self.config.connection.publish_topic
        if self.echo.observe(topic, raw, publish_topic, self._echo_key):
            self.logger.info(
                event=LogEvent.BRIDGE_ECHO,
                message="Published value echoed back",
                metadata={'topic': topic, 'payload': raw},
            )
            self._emit("echo", {'topic': topic, 'payload': raw})
