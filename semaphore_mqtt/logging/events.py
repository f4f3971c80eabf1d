"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

Typed event names for the bridge's structured logs.

Event Naming Convention:
    <component>.<category>.<action>

    component: mqtt, bridge, transform, error
    category: connected, publish, staged
    action: success, rejected, failed

Example Log Query (CloudWatch Insights):
    fields @timestamp, event, message, metadata.topic
    | filter event = "bridge.publish.rejected"
    | stats count() by bin(5m)
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - mqtt.*: Broker connection lifecycle and traffic
    - bridge.*: Staging, publishing and echo decisions
    - transform.*: Payload transform evaluation
    - error.*: Error conditions
    """

    # ========== MQTT Events ==========
    MQTT_CONNECTING = "mqtt.connecting"
    """Connection handle opened, transport loop started."""

    MQTT_CONNECTED = "mqtt.connected"
    """MQTT broker connection established."""

    MQTT_DISCONNECTED = "mqtt.disconnected"
    """MQTT broker connection closed."""

    MQTT_RECONNECTING = "mqtt.reconnecting"
    """Connection lost, transport is retrying."""

    MQTT_SUBSCRIBED = "mqtt.subscribed"
    """Subscription request sent for the subscribe topic."""

    MQTT_MESSAGE_RECEIVED = "mqtt.message.received"
    """Frame received on a subscribed topic."""

    MQTT_EVENT_DROPPED = "mqtt.event.dropped"
    """Transport event discarded (stale handle or full queue)."""

    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    """Message handed to the transport."""

    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"
    """Transport refused the message."""

    # ========== Bridge Events ==========
    BRIDGE_STARTED = "bridge.started"
    """Bridge opened its first connection."""

    BRIDGE_STOPPED = "bridge.stopped"
    """Bridge closed its connection."""

    BRIDGE_RECONFIGURED = "bridge.reconfigured"
    """Configuration applied (with or without reconnect)."""

    BRIDGE_STAGED = "bridge.staged"
    """Staged value edited or reseeded."""

    BRIDGE_STAGE_REJECTED = "bridge.staged.rejected"
    """Staged value edit refused (wrong variant or out of range)."""

    BRIDGE_PUBLISH = "bridge.publish.success"
    """Staged value published."""

    BRIDGE_PUBLISH_REJECTED = "bridge.publish.rejected"
    """Publish request refused by a precondition."""

    BRIDGE_ECHO = "bridge.echo"
    """Published payload echoed back on the publish topic."""

    # ========== Transform Events ==========
    TRANSFORM_FAILED = "transform.failed"
    """Transform skipped, raw payload used instead."""

    # ========== Diagnostics Events ==========
    DIAGNOSTICS_EVENT = "diagnostics.event"
    """Diagnostics event mirrored to the console sink."""

    # ========== Error Events ==========
    CONFIG_ERROR = "error.config"
    """Configuration failed validation."""

    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    """Transport reported a connection failure."""

    MQTT_INIT_ERROR = "error.mqtt_init"
    """Transport client could not be initialized."""

    DIAGNOSTICS_ERROR = "error.diagnostics"
    """Diagnostics delivery failed (swallowed)."""


# Event categories for filtering
MQTT_EVENTS = {
    LogEvent.MQTT_CONNECTING,
    LogEvent.MQTT_CONNECTED,
    LogEvent.MQTT_DISCONNECTED,
    LogEvent.MQTT_RECONNECTING,
    LogEvent.MQTT_SUBSCRIBED,
    LogEvent.MQTT_MESSAGE_RECEIVED,
    LogEvent.MQTT_EVENT_DROPPED,
    LogEvent.MQTT_PUBLISH_SUCCESS,
    LogEvent.MQTT_PUBLISH_FAILED,
}

BRIDGE_EVENTS = {
    LogEvent.BRIDGE_STARTED,
    LogEvent.BRIDGE_STOPPED,
    LogEvent.BRIDGE_RECONFIGURED,
    LogEvent.BRIDGE_STAGED,
    LogEvent.BRIDGE_STAGE_REJECTED,
    LogEvent.BRIDGE_PUBLISH,
    LogEvent.BRIDGE_PUBLISH_REJECTED,
    LogEvent.BRIDGE_ECHO,
}

ERROR_EVENTS = {
    LogEvent.CONFIG_ERROR,
    LogEvent.MQTT_CONNECTION_ERROR,
    LogEvent.MQTT_INIT_ERROR,
    LogEvent.DIAGNOSTICS_ERROR,
}
