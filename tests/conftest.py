"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from typing import Any

import pytest

from signalk_mqtt_export.config import AppConfig, ExportConfig, MqttConfig
from signalk_mqtt_export.mqtt_client import ConnectionState, DispatchResult


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "concurrency: mark test as exercising threads"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class FakeDispatcher:
    """Records publishes instead of talking to a broker."""

    def __init__(self, connected_on_connect: bool = True) -> None:
        self.connected_on_connect = connected_on_connect
        self.connected = False
        self.published: list[DispatchResult] = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    def connect(self) -> None:
        self.connect_calls += 1
        self.connected = self.connected_on_connect

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def wait_connected(self, timeout: float) -> bool:
        return self.connected

    def publish(self, topic, payload, qos=0, retain=False, rule_id=None) -> DispatchResult:
        if not self.connected:
            return DispatchResult(topic, payload, rule_id, False, "MQTT not connected")
        result = DispatchResult(topic, payload, rule_id, True, mid=len(self.published) + 1)
        self.published.append(result)
        return result

    def status(self) -> dict[str, Any]:
        state = ConnectionState.CONNECTED if self.connected else ConnectionState.DISCONNECTED
        return {
            "connected": self.connected,
            "state": state.value,
            "brokerUrl": "mqtt://broker.test:1883",
            "clientId": "test-client",
            "lastError": None,
        }


def make_rule(**overrides: Any) -> dict[str, Any]:
    rule = {
        "id": "rule-1",
        "name": "Rule 1",
        "context": "vessels.self",
        "path": "*",
        "source": "",
        "enabled": True,
        "period": 1000,
        "qos": 0,
        "retain": False,
        "payloadFormat": "full",
        "sendOnChange": False,
    }
    rule.update(overrides)
    return rule


def make_delta(
    path: str,
    value: Any,
    context: str = "vessels.self",
    source: str = "gps0",
) -> dict[str, Any]:
    return {
        "context": context,
        "updates": [
            {
                "source": {"label": source, "type": "NMEA0183"},
                "$source": source,
                "timestamp": "2024-06-01T12:00:00.000Z",
                "values": [{"path": path, "value": value}],
            }
        ],
    }


@pytest.fixture
def app_config():
    return AppConfig(
        mqtt=MqttConfig(broker_url="mqtt://broker.test:1883", client_id="test-client"),
        export=ExportConfig(enabled=True, rules_file="unused.json", self_id="vessels.self"),
    )


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher()
