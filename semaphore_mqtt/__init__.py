"""
Semaphore MQTT Transport Package
================================

Bounded Context: Broker connectivity for the staged control bridge

This package owns everything on the broker side of the bridge: connection
parameters, the single-connection lifecycle, typed transport events,
structured logging and diagnostics export.

Architecture:
- config: Frozen, validated connection parameters and publish options
- events: Typed transport events and the observable ConnectionState
- connection: ConnectionManager (paho-mqtt client + bounded event queue)
- diagnostics: Fire-and-forget diagnostics sinks (console, HTTP)
- logging/: Structured JSON logging for observability

Public API
----------
Configuration:
    ConnectionConfig, Credentials, PublishOptions, Scheme, ConfigError

Connection:
    ConnectionManager, ConnectionHandle, ConnectionInitError, ConnectionState

Diagnostics:
    DiagnosticsSink, DiagnosticsConfig, build_diagnostics, emit,
    NullDiagnostics, ConsoleDiagnostics, HttpDiagnostics, MultiDiagnostics

Logging:
    LogEvent, StructuredLogger, create_logger

Example:
    >>> from semaphore_mqtt import ConnectionConfig, ConnectionManager
    >>> manager = ConnectionManager(on_message=lambda t, p: print(t, p))
    >>> manager.open(ConnectionConfig(host="localhost", port=9001,
    ...                               subscribe_topic="lights/state"))
    >>> manager.dispatch(timeout=1.0)
"""

from .config import ConfigError, ConnectionConfig, Credentials, PublishOptions, Scheme
from .connection import ConnectionHandle, ConnectionInitError, ConnectionManager, create_client
from .events import ConnectionState
from .diagnostics import (
    ConsoleDiagnostics,
    DiagnosticsConfig,
    DiagnosticsSink,
    HttpDiagnostics,
    MultiDiagnostics,
    NullDiagnostics,
    build_diagnostics,
    emit,
)
from .logging import LogEvent, StructuredLogger, create_logger

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "ConfigError",
    "ConnectionConfig",
    "Credentials",
    "PublishOptions",
    "Scheme",
    # Connection
    "ConnectionHandle",
    "ConnectionInitError",
    "ConnectionManager",
    "ConnectionState",
    "create_client",
    # Diagnostics
    "ConsoleDiagnostics",
    "DiagnosticsConfig",
    "DiagnosticsSink",
    "HttpDiagnostics",
    "MultiDiagnostics",
    "NullDiagnostics",
    "build_diagnostics",
    "emit",
    # Logging
    "LogEvent",
    "StructuredLogger",
    "create_logger",
]
