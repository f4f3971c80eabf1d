"""
MessageProcessor - decode and transform incoming frames
=======================================================

Bounded Context: Message consumption

Message Flow:
    1. Decode payload bytes to text (UTF-8, invalid bytes replaced)
    2. If a transform expression is configured: JSON-parse and evaluate
    3. On any transform failure: keep the raw text (never raised)
    4. Record LastReceived
    5. Hand (topic, raw) to the echo probe, whatever the transform outcome

Transforms use JSONata expressions by default (jsonata-python). Any object
with an ``evaluate(expression, data)`` method can be plugged in instead.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import jsonata

from semaphore_mqtt.diagnostics import DiagnosticsSink, NullDiagnostics, emit
from semaphore_mqtt.logging import LogEvent, StructuredLogger, create_logger


class TransformError(Exception):
    """Payload could not be parsed or the expression failed to evaluate."""
    pass


class TransformEvaluator(Protocol):
    def evaluate(self, expression: str, data: Any) -> Any:
        ...


class JsonataEvaluator:
    """
    JSONata evaluator with a small compiled-expression cache.

    Example:
        >>> JsonataEvaluator().evaluate("a.b", {"a": {"b": 2}})
        2
    """

    def __init__(self, cache_size: int = 32):
        self.cache_size = cache_size
        self._compiled: Dict[str, Any] = {}

    def evaluate(self, expression: str, data: Any) -> Any:
        compiled = self._compiled.get(expression)
        if compiled is None:
            compiled = jsonata.Jsonata(expression)
            if len(self._compiled) >= self.cache_size:
                self._compiled.pop(next(iter(self._compiled)))
            self._compiled[expression] = compiled
        return compiled.evaluate(data)


@dataclass(frozen=True)
class LastReceived:
    """Most recent frame on a subscribed topic."""

    topic: str
    raw_payload: str
    transformed_value: Any
    transformed: bool = False

    def to_dict(self) -> dict:
        return {
            'topic': self.topic,
            'raw_payload': self.raw_payload,
            'transformed_value': self.transformed_value,
            'transformed': self.transformed,
        }


def decode_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return bytes(payload).decode("utf-8", "replace")


class MessageProcessor:
    """
    Decodes frames, applies the optional transform, tracks LastReceived.

    Attributes:
        expression: Transform expression (None = passthrough)
        last_received: Most recent processed frame (None until first frame)
    """

    def __init__(
        self,
        expression: Optional[str] = None,
        evaluator: Optional[TransformEvaluator] = None,
        echo_probe: Optional[Callable[[str, str], Any]] = None,
        logger: Optional[StructuredLogger] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
    ):
        """
        Args:
            expression: Transform expression, or None
            evaluator: Expression evaluator (default: JsonataEvaluator)
            echo_probe: Called with (topic, raw) for every frame
            logger: Structured logger
            diagnostics: Sink for transform_error events
        """
        self.expression = expression or None
        self.evaluator = evaluator or JsonataEvaluator()
        self.echo_probe = echo_probe
        self.logger = logger or create_logger("processor")
        self.diagnostics = diagnostics or NullDiagnostics()
        self.last_received: Optional[LastReceived] = None
        self.message_count = 0

    def process(self, topic: str, payload: Any) -> LastReceived:
        """Process one frame. Never raises on transform problems."""
        raw = decode_payload(payload)

        value: Any = raw
        transformed = False
        if self.expression:
            try:
                value = self.transform(raw)
                transformed = True
            except TransformError as e:
                self.logger.warning(
                    event=LogEvent.TRANSFORM_FAILED,
                    message="Transform skipped, using raw payload",
                    metadata={'topic': topic, 'expression': self.expression, 'error': str(e)},
                )
                emit(
                    self.diagnostics,
                    "transform_error",
                    {'topic': topic, 'expression': self.expression, 'error': str(e)},
                    self.logger,
                )

        received = LastReceived(
            topic=topic,
            raw_payload=raw,
            transformed_value=value,
            transformed=transformed,
        )
        self.last_received = received
        self.message_count += 1

        if self.echo_probe:
            self.echo_probe(topic, raw)
        return received

    def transform(self, raw: str) -> Any:
        """
        Apply the expression to JSON-parsed ``raw``.

        An undefined result (None) becomes "".

        Raises:
            TransformError: On parse or evaluation failure
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TransformError(f"Payload is not JSON: {e}") from e

        try:
            result = self.evaluator.evaluate(self.expression, data)
        except Exception as e:
            raise TransformError(f"Expression failed: {e}") from e

        return "" if result is None else result
