"""
Shared fixtures: a fake paho client so bridge tests run without a broker.

FakeClient mimics the parts of paho.mqtt.client.Client the connection
manager uses, and exposes fire_* helpers that invoke the bound callbacks
the way paho's network thread would.
"""

from types import SimpleNamespace

import pytest

from semaphore_control import ControlMode, ControlModel, PanelConfig
from semaphore_mqtt import ConnectionConfig


class FakeClient:
    def __init__(self, config):
        self.config = config
        self.on_connect = None
        self.on_connect_fail = None
        self.on_disconnect = None
        self.on_message = None
        self.connect_args = None
        self.loop_running = False
        self.disconnected = False
        self.subscriptions = []
        self.published = []
        self.publish_rc = 0

    # paho API
    def connect_async(self, host, port, keepalive=60):
        self.connect_args = (host, port, keepalive)

    def loop_start(self):
        self.loop_running = True

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.disconnected = True
        if self.on_disconnect:
            self.on_disconnect(self, None, None, 0, None)

    def subscribe(self, topic, qos=0):
        self.subscriptions.append(topic)

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self.publish_rc)

    # test helpers
    def fire_connect(self, reason_code=0):
        self.on_connect(self, None, {}, reason_code, None)

    def fire_connect_fail(self):
        self.on_connect_fail(self, None)

    def fire_disconnect(self, reason_code=7):
        self.on_disconnect(self, None, None, reason_code, None)

    def fire_message(self, topic, payload):
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload))


class FakeBroker:
    """client_factory that records every client it builds."""

    def __init__(self):
        self.clients = []
        self.fail_with = None

    def __call__(self, config):
        if self.fail_with is not None:
            raise self.fail_with
        client = FakeClient(config)
        self.clients.append(client)
        return client

    @property
    def latest(self):
        return self.clients[-1]


class RecordingDiagnostics:
    def __init__(self):
        self.events = []

    def log(self, kind, payload=None):
        self.events.append((kind, payload))

    def kinds(self):
        return [kind for kind, _ in self.events]


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def diagnostics():
    return RecordingDiagnostics()


def build_panel_config(
    mode=ControlMode.TEXT,
    control=None,
    receive_only=False,
    **connection,
):
    connection.setdefault("host", "localhost")
    connection.setdefault("port", 9001)
    connection.setdefault("subscribe_topic", "t/in")
    connection.setdefault("publish_topic", "t/out")
    return PanelConfig(
        connection=ConnectionConfig(**connection),
        mode=mode,
        control=control or ControlModel(),
        receive_only=receive_only,
    )


@pytest.fixture
def make_config():
    return build_panel_config
