from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
import ssl
import threading
from typing import Any
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from signalk_mqtt_export.config import MqttConfig
from signalk_mqtt_export.exceptions import ConfigurationError
from signalk_mqtt_export.logging_utils import TRACE_LEVEL

_DEFAULT_PORTS = {
    "mqtt": 1883,
    "tcp": 1883,
    "mqtts": 8883,
    "ssl": 8883,
    "tls": 8883,
    "ws": 80,
    "wss": 443,
}
_TLS_SCHEMES = {"mqtts", "ssl", "tls", "wss"}
_WEBSOCKET_SCHEMES = {"ws", "wss"}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class BrokerAddress:
    host: str
    port: int
    tls: bool
    transport: str
    path: str


@dataclass(frozen=True)
class DispatchResult:
    topic: str
    payload: str
    rule_id: str | None
    success: bool
    error: str | None = None
    mid: int | None = None


def parse_broker_url(url: str) -> BrokerAddress:
    parts = urlsplit(url if "://" in url else f"mqtt://{url}")
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ConfigurationError(f"Unsupported broker URL scheme: {scheme}")
    if not parts.hostname:
        raise ConfigurationError(f"Broker URL has no host: {url}")
    try:
        port = parts.port or _DEFAULT_PORTS[scheme]
    except ValueError as exc:
        raise ConfigurationError(f"Invalid broker port in {url}") from exc
    return BrokerAddress(
        host=parts.hostname,
        port=port,
        tls=scheme in _TLS_SCHEMES,
        transport="websockets" if scheme in _WEBSOCKET_SCHEMES else "tcp",
        path=parts.path or "/mqtt",
    )


def _is_failure(reason_code: Any) -> bool:
    failure = getattr(reason_code, "is_failure", None)
    if failure is None:
        return reason_code != 0
    return bool(failure)


class MqttDispatcher:
    """Publishes rendered messages to the broker through a paho client.

    Publishing never blocks on the network and never raises: every attempt
    comes back as a DispatchResult. Nothing is queued while disconnected.
    """

    def __init__(self, config: MqttConfig) -> None:
        self.config = config
        self.address = parse_broker_url(config.broker_url)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._connected_event = threading.Event()
        self._state = ConnectionState.DISCONNECTED
        self._closing = False
        self._pending: dict[int, str] = {}
        self.delivered_count = 0
        self.last_error: str | None = None
        self.client = self._build_client()

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
            transport=self.address.transport,
        )
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_publish = self._on_publish

        if self.config.username and self.config.password:
            client.username_pw_set(self.config.username, self.config.password)
        if self.address.tls:
            client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
        if self.address.transport == "websockets":
            client.ws_set_options(path=self.address.path)

        client.reconnect_delay_set(min_delay=5, max_delay=120)
        return client

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._state is ConnectionState.CONNECTED

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            self._state = state
        if state is ConnectionState.CONNECTED:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if _is_failure(reason_code):
            self.last_error = f"Connection refused: {reason_code}"
            self._set_state(ConnectionState.ERROR)
            self.logger.error(
                "Failed to connect to MQTT broker %s: %s", self.config.broker_url, reason_code
            )
            return
        self.last_error = None
        self._set_state(ConnectionState.CONNECTED)
        self.logger.info("Connected to MQTT broker %s", self.config.broker_url)

    def _on_connect_fail(self, client, userdata) -> None:
        self.last_error = "Broker unreachable"
        self._set_state(ConnectionState.ERROR)
        self.logger.error("MQTT broker %s is unreachable", self.config.broker_url)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None) -> None:
        with self._lock:
            closing = self._closing
            abandoned = len(self._pending)
            self._pending.clear()
        if abandoned:
            self.logger.warning("%s publishes were unconfirmed at disconnect", abandoned)
        if closing or not _is_failure(reason_code):
            self._set_state(ConnectionState.DISCONNECTED)
            self.logger.info("Disconnected from MQTT broker (clean)")
            return
        self.last_error = f"Connection lost: {reason_code}"
        self._set_state(ConnectionState.RECONNECTING)
        self.logger.warning(
            "Unexpectedly disconnected from MQTT broker: %s. Reconnecting.", reason_code
        )

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None) -> None:
        with self._lock:
            topic = self._pending.pop(mid, None)
            if topic is not None:
                self.delivered_count += 1
        if topic is None:
            return
        if reason_code is not None and _is_failure(reason_code):
            self.logger.warning("Broker rejected message %s on %s: %s", mid, topic, reason_code)
        else:
            self.logger.log(TRACE_LEVEL, "Broker confirmed message %s on %s", mid, topic)

    def connect(self) -> None:
        self.logger.info("Connecting to MQTT broker %s", self.config.broker_url)
        with self._lock:
            self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        self.client.connect_async(
            self.address.host,
            self.address.port,
            keepalive=self.config.keepalive,
        )
        # Background network thread, also drives automatic reconnection
        self.client.loop_start()

    def wait_connected(self, timeout: float) -> bool:
        return self._connected_event.wait(timeout)

    def disconnect(self) -> None:
        with self._lock:
            self._closing = True
        try:
            self.client.disconnect()
        finally:
            self.client.loop_stop()
        self._set_state(ConnectionState.DISCONNECTED)
        self.logger.info("Disconnected from MQTT broker")

    def publish(
        self,
        topic: str,
        payload: str,
        qos: int = 0,
        retain: bool = False,
        rule_id: str | None = None,
    ) -> DispatchResult:
        if not self.connected:
            return DispatchResult(topic, payload, rule_id, False, "MQTT not connected")
        try:
            info = self.client.publish(topic, payload=payload, qos=qos, retain=retain)
        except Exception as exc:
            self.logger.error("MQTT publish to %s failed: %s", topic, exc)
            return DispatchResult(topic, payload, rule_id, False, str(exc))
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            error = mqtt.error_string(info.rc)
            self.logger.error("MQTT publish to %s failed: %s", topic, error)
            return DispatchResult(topic, payload, rule_id, False, error, info.mid)
        if qos > 0:
            with self._lock:
                self._pending[info.mid] = topic
        self.logger.debug(
            "Published to MQTT: %s = %s%s",
            topic,
            payload[:100],
            "..." if len(payload) > 100 else "",
        )
        return DispatchResult(topic, payload, rule_id, True, mid=info.mid)

    def status(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "state": self.state.value,
            "brokerUrl": self.config.broker_url,
            "clientId": self.config.client_id,
            "lastError": self.last_error,
        }


class DryRunDispatcher:
    """Logs messages instead of publishing them."""

    def __init__(self, config: MqttConfig) -> None:
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self._connected else ConnectionState.DISCONNECTED

    def connect(self) -> None:
        self.logger.info("Dry run enabled; skipping MQTT connection.")
        self._connected = True

    def wait_connected(self, timeout: float) -> bool:
        return self._connected

    def disconnect(self) -> None:
        self._connected = False

    def publish(
        self,
        topic: str,
        payload: str,
        qos: int = 0,
        retain: bool = False,
        rule_id: str | None = None,
    ) -> DispatchResult:
        if not self._connected:
            return DispatchResult(topic, payload, rule_id, False, "MQTT not connected")
        self.logger.info("[dry-run] %s (qos=%s, retain=%s) %s", topic, qos, retain, payload)
        return DispatchResult(topic, payload, rule_id, True)

    def status(self) -> dict[str, Any]:
        return {
            "connected": self._connected,
            "state": self.state.value,
            "brokerUrl": self.config.broker_url,
            "clientId": self.config.client_id,
            "lastError": None,
        }
