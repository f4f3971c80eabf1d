"""
PanelConfig loading, diagnostics sinks and CLI tests.

Usage:
    pytest test_config_cli.py
"""

import json
import logging
import os
import textwrap
import time
from pathlib import Path

import pytest
import requests

from conftest import FakeClient
from run_bridge import BridgeApp
from semaphore_cli import cli
from semaphore_control import ControlBridge, ControlMode, PanelConfig, Text
from semaphore_mqtt import (
    ConfigError,
    ConsoleDiagnostics,
    DiagnosticsConfig,
    HttpDiagnostics,
    LogEvent,
    MultiDiagnostics,
    NullDiagnostics,
    Scheme,
    build_diagnostics,
    create_logger,
    emit,
)


PANEL_YAML = textwrap.dedent("""
    mqtt:
      scheme: wss
      host: broker.local
      port: 8884
      path: mqtt
      subscribe_topic: " lights/kitchen/state "
      publish_topic: lights/kitchen/set
      transform: state
      auth:
        username: panel
        password: secret

    publish:
      qos: 1
      retain: true

    control:
      mode: Switch
      label: Kitchen
      on_value: "ON"
      off_value: "OFF"

    receive_only: false
""")


def write_config(tmp_path, text):
    path = tmp_path / "panel.yaml"
    path.write_text(text)
    return path


# ─────────────────────────────────────────────────────────────────────────────
# PanelConfig
# ─────────────────────────────────────────────────────────────────────────────

def test_from_yaml_loads_all_sections(tmp_path):
    config = PanelConfig.from_yaml(write_config(tmp_path, PANEL_YAML))

    assert config.connection.scheme is Scheme.WSS
    assert config.connection.path == "/mqtt"
    assert config.connection.subscribe_topic == "lights/kitchen/state"
    assert config.connection.transform == "state"
    assert config.connection.credentials.username == "panel"
    assert config.publish.qos == 1 and config.publish.retain
    assert config.mode is ControlMode.SWITCH
    assert config.control.on_value == "ON"
    assert config.control.label == "Kitchen"
    assert config.diagnostics == DiagnosticsConfig()


def test_from_dict_defaults():
    config = PanelConfig.from_dict({"mqtt": {"host": "localhost"}})

    assert config.connection.port == 9001
    assert config.mode is ControlMode.TEXT
    assert not config.receive_only
    assert not config.follow_incoming


@pytest.mark.parametrize("data", [
    {},
    [],
    {"mqtt": {"host": "localhost"}, "control": {"mode": "Dial"}},
    {"mqtt": {"host": "localhost"}, "control": {"colour": "red"}},
    {"mqtt": {"host": "localhost"}, "publish": {"qos": 5}},
    {"mqtt": {"host": "localhost", "port": 0}},
    {"mqtt": {"host": "localhost"}, "diagnostics": {"endpoint": "ftp://x"}},
])
def test_invalid_config_raises_config_error(data):
    with pytest.raises(ConfigError):
        PanelConfig.from_dict(data)


def test_invalid_yaml(tmp_path):
    with pytest.raises(ConfigError):
        PanelConfig.from_yaml(write_config(tmp_path, "mqtt: [unclosed"))


def test_with_broker_overrides(tmp_path):
    config = PanelConfig.from_yaml(write_config(tmp_path, PANEL_YAML))
    overridden = config.with_broker(host="127.0.0.1", port=9001)

    assert overridden.connection.host == "127.0.0.1"
    assert overridden.connection.port == 9001
    assert overridden.connection.publish_topic == config.connection.publish_topic
    assert config.with_broker() is config


# ─────────────────────────────────────────────────────────────────────────────
# Diagnostics
# ─────────────────────────────────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, status=204):
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class FakeSession:
    def __init__(self, error=None, status=204):
        self.error = error
        self.status = status
        self.posts = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.error:
            raise self.error
        return FakeResponse(self.status)

    def close(self):
        self.closed = True


def test_http_diagnostics_posts_records():
    session = FakeSession()
    sink = HttpDiagnostics("http://diag.local/events", timeout=1.5, session=session)
    sink.log("publish", {"topic": "t/out"})

    assert sink.flush(timeout=5.0)
    sink.close()

    url, body, timeout = session.posts[0]
    assert url == "http://diag.local/events"
    assert timeout == 1.5
    assert body["kind"] == "publish"
    assert body["payload"] == {"topic": "t/out"}
    assert "timestamp" in body
    assert session.closed


@pytest.mark.parametrize("session", [
    FakeSession(error=requests.ConnectionError("refused")),
    FakeSession(status=500),
])
def test_http_diagnostics_swallows_failures(session):
    sink = HttpDiagnostics("http://diag.local/events", session=session)
    sink.log("error", {"message": "boom"})
    sink.log("error", {"message": "again"})

    assert sink.flush(timeout=5.0)
    sink.close()
    assert len(session.posts) == 2


def test_multi_diagnostics_isolates_failing_sink():
    class Broken:
        def log(self, kind, payload=None):
            raise RuntimeError("sink down")

    received = []

    class Recorder:
        def log(self, kind, payload=None):
            received.append(kind)

    MultiDiagnostics([Broken(), Recorder()]).log("connect")
    assert received == ["connect"]


def test_build_diagnostics():
    assert isinstance(build_diagnostics(DiagnosticsConfig()), NullDiagnostics)
    assert isinstance(build_diagnostics(DiagnosticsConfig(console=True)), ConsoleDiagnostics)


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

class LoopbackClient(FakeClient):
    """Connects as soon as the loop starts and echoes every publish."""

    def loop_start(self):
        super().loop_start()
        self.fire_connect()

    def publish(self, topic, payload, qos=0, retain=False):
        result = super().publish(topic, payload, qos, retain)
        self.fire_message(topic, payload)
        return result


@pytest.fixture
def loopback(monkeypatch):
    clients = []

    def factory(config):
        client = LoopbackClient(config)
        clients.append(client)
        return client

    monkeypatch.setattr(
        cli,
        "ControlBridge",
        lambda config: ControlBridge(config, client_factory=factory, diagnostics=NullDiagnostics()),
    )
    return clients


def test_cli_check(tmp_path, capsys):
    path = write_config(tmp_path, PANEL_YAML)

    assert cli.main(["check", str(path)]) == 0

    out = capsys.readouterr().out
    assert "wss://broker.local:8884/mqtt" in out
    assert "Configuration valid" in out


def test_cli_send_waits_for_echo(tmp_path, capsys, loopback):
    path = write_config(tmp_path, PANEL_YAML.replace("transform: state", ""))

    code = cli.main(["--port", "9443", "send", str(path), "ON", "--wait-echo", "1", "--timeout", "1"])

    assert code == 0
    client = loopback[0]
    assert client.connect_args[:2] == ("broker.local", 9443)
    assert client.published == [("lights/kitchen/set", "ON", 1, True)]
    assert client.disconnected
    assert "Echo received" in capsys.readouterr().out


def test_cli_send_rejects_bad_value(tmp_path, capsys, loopback):
    path = write_config(tmp_path, PANEL_YAML)

    assert cli.main(["send", str(path), "maybe"]) == 2
    assert loopback == []


def test_cli_send_receive_only(tmp_path, capsys, loopback):
    path = write_config(tmp_path, PANEL_YAML.replace("receive_only: false", "receive_only: true"))

    assert cli.main(["send", str(path), "OFF", "--timeout", "1"]) == 1
    assert loopback[0].published == []
    assert "receive_only" in capsys.readouterr().err


def test_cli_missing_config(capsys):
    assert cli.main(["check", "/nonexistent/panel.yaml"]) == 2
    assert "Error" in capsys.readouterr().err


def test_http_diagnostics_close_delivers_pending():
    session = FakeSession()
    sink = HttpDiagnostics("http://diag.local/events", session=session)
    sink.log("publish", {"topic": "t/out"})

    sink.close()
    sink.close()

    assert [body["kind"] for _, body, _ in session.posts] == ["publish"]
    assert session.closed


def test_multi_diagnostics_closes_every_sink():
    closed = []

    class Broken:
        def close(self):
            raise RuntimeError("already gone")

    class Tracked:
        def close(self):
            closed.append(True)

    MultiDiagnostics([Broken(), Tracked()]).close()
    assert closed == [True]


def test_emit_swallows_sink_failure():
    class Broken:
        def log(self, kind, payload=None):
            raise ConnectionError("sink down")

    emit(Broken(), "publish", {"topic": "t/out"})


# ─────────────────────────────────────────────────────────────────────────────
# Service reload
# ─────────────────────────────────────────────────────────────────────────────

def test_service_ignores_invalid_reload(tmp_path, caplog):
    path = write_config(tmp_path, PANEL_YAML)
    app = BridgeApp(path, log_file=None)
    app.setup()
    original = app.bridge.config

    path.write_text("mqtt: [unclosed")
    later = time.time() + 10
    os.utime(path, (later, later))

    with caplog.at_level(logging.WARNING, logger="semaphore.service"):
        app._maybe_reload()

    assert app.bridge.config is original
    assert any("error.config" in record.getMessage() for record in caplog.records)
    app.bridge.stop()


def test_service_applies_valid_reload(tmp_path):
    path = write_config(tmp_path, PANEL_YAML)
    app = BridgeApp(path, log_file=None)
    app.setup()

    path.write_text(PANEL_YAML.replace("mode: Switch", "mode: Text"))
    later = time.time() + 10
    os.utime(path, (later, later))
    app._maybe_reload()

    assert app.bridge.config.mode is ControlMode.TEXT
    assert app.bridge.staged == Text("")
    app.bridge.stop()


# ─────────────────────────────────────────────────────────────────────────────
# Structured logging
# ─────────────────────────────────────────────────────────────────────────────

def test_structured_logger_renders_json(caplog):
    logger = create_logger("panel-test")

    with caplog.at_level(logging.INFO, logger="semaphore.panel-test"):
        logger.debug(event=LogEvent.MQTT_MESSAGE_RECEIVED, message="hidden")
        logger.info(
            event=LogEvent.BRIDGE_PUBLISH,
            message="Published staged value",
            metadata={'topic': 't/out', 'path': Path("/tmp/x")},
        )

    assert len(caplog.records) == 1
    entry = json.loads(caplog.records[0].getMessage())
    assert entry["event"] == LogEvent.BRIDGE_PUBLISH.value
    assert entry["level"] == "INFO"
    assert entry["component"] == "panel-test"
    assert entry["metadata"] == {'topic': 't/out', 'path': "/tmp/x"}
