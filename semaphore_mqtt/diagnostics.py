"""
Diagnostics sinks
=================

Bounded Context: Observability (fire-and-forget event export)

A diagnostics sink accepts ``log(kind, payload)`` events from the bridge.
Delivery is best-effort: sinks never block the caller and never raise.

Sinks:
  - NullDiagnostics: discards everything
  - ConsoleDiagnostics: emits through the structured logger
  - HttpDiagnostics: POSTs ``{timestamp, kind, payload}`` JSON to an
    endpoint from a background worker thread (bounded queue)
  - MultiDiagnostics: fan-out to several sinks
"""

import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import requests

from .config import ConfigError
from .logging import LogEvent, StructuredLogger, create_logger


class DiagnosticsSink(Protocol):
    def log(self, kind: str, payload: Any = None) -> None:
        ...

    def close(self) -> None:
        ...


def diagnostics_record(kind: str, payload: Any = None) -> Dict[str, Any]:
    return {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'kind': kind,
        'payload': payload,
    }


class NullDiagnostics:
    def log(self, kind: str, payload: Any = None) -> None:
        pass

    def close(self) -> None:
        pass


class ConsoleDiagnostics:
    """Emit diagnostics events as structured log lines."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or create_logger("diagnostics")

    def log(self, kind: str, payload: Any = None) -> None:
        self.logger.info(
            event=LogEvent.DIAGNOSTICS_EVENT,
            message=kind,
            metadata={'payload': payload} if payload is not None else None,
        )

    def close(self) -> None:
        pass


class HttpDiagnostics:
    """
    Deliver diagnostics events to an HTTP endpoint.

    Events are queued and POSTed by a daemon worker thread, so log() never
    waits on the network. When the queue is full the event is dropped.
    Delivery failures are logged at DEBUG level and otherwise ignored.

    Example:
        >>> sink = HttpDiagnostics("http://localhost:8080/diagnostics")
        >>> sink.log("publish", {"topic": "lights/set", "payload": "on"})
        >>> sink.close()
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 2.0,
        max_pending: int = 256,
        session: Optional[requests.Session] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.logger = logger or create_logger("diagnostics")
        self._session = session or requests.Session()
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_pending)
        self._stop_event = threading.Event()
        self._dropped = 0
        self._worker = threading.Thread(
            target=self._deliver_loop,
            name="DiagnosticsHttpThread",
            daemon=True,
        )
        self._worker.start()

    def log(self, kind: str, payload: Any = None) -> None:
        try:
            self._queue.put_nowait(diagnostics_record(kind, payload))
        except queue.Full:
            self._dropped += 1

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued events were attempted. Returns False on timeout."""
        waiter = threading.Thread(target=self._queue.join, daemon=True)
        waiter.start()
        waiter.join(timeout)
        return not waiter.is_alive()

    def close(self, timeout: float = 2.0) -> None:
        """Deliver what is queued (bounded by ``timeout``), then stop the worker."""
        if self._stop_event.is_set():
            return
        self.flush(timeout)
        self._stop_event.set()
        self._worker.join(timeout=timeout)
        self._session.close()

    @property
    def dropped(self) -> int:
        return self._dropped

    def _deliver_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._post(record)
            finally:
                self._queue.task_done()

    def _post(self, record: Dict[str, Any]) -> None:
        try:
            response = self._session.post(
                self.endpoint, json=record, timeout=self.timeout
            )
            response.raise_for_status()
        except (requests.RequestException, TypeError, ValueError) as e:
            self.logger.debug(
                event=LogEvent.DIAGNOSTICS_ERROR,
                message=f"Diagnostics delivery failed: {e}",
                metadata={'endpoint': self.endpoint, 'kind': record.get('kind')},
            )


class MultiDiagnostics:
    """Fan out to several sinks; one failing sink never affects the others."""

    def __init__(self, sinks: List[DiagnosticsSink]):
        self.sinks = list(sinks)

    def log(self, kind: str, payload: Any = None) -> None:
        for sink in self.sinks:
            try:
                sink.log(kind, payload)
            except Exception:
                continue

    def close(self) -> None:
        for sink in self.sinks:
            try:
                sink.close()
            except Exception:
                continue


def emit(
    sink: DiagnosticsSink,
    kind: str,
    payload: Any = None,
    logger: Optional[StructuredLogger] = None,
) -> None:
    """Log ``kind`` to ``sink``; a failing sink is reported at DEBUG and ignored."""
    try:
        sink.log(kind, payload)
    except Exception as e:
        if logger is not None:
            logger.debug(
                event=LogEvent.DIAGNOSTICS_ERROR,
                message=f"Diagnostics sink failed: {e}",
                metadata={'kind': kind, 'sink': type(sink).__name__},
            )


@dataclass(frozen=True)
class DiagnosticsConfig:
    """Diagnostics delivery configuration."""

    console: bool = False
    endpoint: Optional[str] = None
    timeout: float = 2.0

    def __post_init__(self):
        if self.endpoint is not None and not self.endpoint.startswith(("http://", "https://")):
            raise ConfigError(
                f"diagnostics endpoint must be an http(s) URL, got {self.endpoint!r}"
            )
        if self.timeout <= 0:
            raise ConfigError(f"diagnostics timeout must be positive, got {self.timeout}")


def build_diagnostics(config: DiagnosticsConfig) -> DiagnosticsSink:
    """Create the sink described by ``config``."""
    sinks: List[DiagnosticsSink] = []
    if config.console:
        sinks.append(ConsoleDiagnostics())
    if config.endpoint:
        sinks.append(HttpDiagnostics(config.endpoint, timeout=config.timeout))

    if not sinks:
        return NullDiagnostics()
    if len(sinks) == 1:
        return sinks[0]
    return MultiDiagnostics(sinks)
