"""
Configuration schema for the control bridge.

Combines the broker connection, the control mode and its defaults, publish
options, and diagnostics delivery into one immutable PanelConfig loaded
from YAML.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from semaphore_mqtt.config import ConfigError, ConnectionConfig, PublishOptions
from semaphore_mqtt.diagnostics import DiagnosticsConfig

from .staging import ControlMode, ControlModel


@dataclass(frozen=True)
class PanelConfig:
    """
    Main configuration for a ControlBridge.

    Immutable after construction (frozen dataclass). Changing any field
    means building a new PanelConfig and calling ControlBridge.reconfigure().
    """

    connection: ConnectionConfig
    mode: ControlMode = ControlMode.TEXT
    control: ControlModel = field(default_factory=ControlModel)
    publish: PublishOptions = field(default_factory=PublishOptions)
    receive_only: bool = False
    follow_incoming: bool = False
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)

    def __post_init__(self):
        try:
            object.__setattr__(self, "mode", ControlMode(self.mode))
        except ValueError:
            raise ConfigError(
                f"Invalid control mode: {self.mode!r}. "
                f"Must be one of {[m.value for m in ControlMode]}"
            )

    def with_broker(self, host: Optional[str] = None, port: Optional[int] = None) -> "PanelConfig":
        """Copy with the broker host and/or port overridden (CLI flags)."""
        changes: Dict[str, Any] = {}
        if host:
            changes["host"] = host
        if port:
            changes["port"] = port
        if not changes:
            return self
        return replace(self, connection=replace(self.connection, **changes))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PanelConfig":
        """
        Build from a parsed YAML document.

        Raises:
            ConfigError: If a section is missing or invalid
        """
        if not isinstance(data, dict):
            raise ConfigError("configuration root must be a mapping")
        if "mqtt" not in data:
            raise ConfigError("missing required 'mqtt' section")

        connection = ConnectionConfig.from_dict(data["mqtt"] or {})

        control_data = dict(data.get("control") or {})
        mode = control_data.pop("mode", ControlMode.TEXT)

        try:
            control = ControlModel(**control_data)
            publish = PublishOptions(**(data.get("publish") or {}))
            diagnostics = DiagnosticsConfig(**(data.get("diagnostics") or {}))
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}")

        return cls(
            connection=connection,
            mode=mode,
            control=control,
            publish=publish,
            receive_only=bool(data.get("receive_only", False)),
            follow_incoming=bool(data.get("follow_incoming", False)),
            diagnostics=diagnostics,
        )

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "PanelConfig":
        """
        Load configuration from YAML file.

        Example YAML:
            mqtt:
              scheme: "ws"              # ws | wss
              host: "localhost"
              port: 9001
              path: "/mqtt"
              subscribe_topic: "lights/kitchen/state"
              publish_topic: "lights/kitchen/set"
              transform: "state"        # JSONata, optional
              auth:
                username: "panel"
                password: "secret"

            publish:
              qos: 0
              retain: false

            control:
              mode: "Switch"            # Text | Slider | Switch | Button
              label: "Kitchen"
              on_value: "ON"
              off_value: "OFF"

            receive_only: false

            diagnostics:
              console: true
              endpoint: "http://localhost:8080/diagnostics"
        """
        with open(yaml_path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {yaml_path}: {e}")

        return cls.from_dict(data)
