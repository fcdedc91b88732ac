from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import configparser

from signalk_mqtt_export.exceptions import ConfigurationError

DEFAULT_BROKER_URL = "mqtt://localhost:1883"
DEFAULT_CLIENT_ID = "signalk-mqtt-export"
DEFAULT_RULES_FILE = "export-rules.json"
DEFAULT_SELF_ID = "vessels.self"


@dataclass(frozen=True)
class MqttConfig:
    broker_url: str = DEFAULT_BROKER_URL
    client_id: str = DEFAULT_CLIENT_ID
    username: str | None = None
    password: str | None = None
    topic_prefix: str = ""
    keepalive: int = 60


@dataclass(frozen=True)
class ExportConfig:
    enabled: bool = True
    rules_file: str = DEFAULT_RULES_FILE
    self_id: str = DEFAULT_SELF_ID


@dataclass(frozen=True)
class AppConfig:
    mqtt: MqttConfig
    export: ExportConfig


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def default_config() -> AppConfig:
    return AppConfig(mqtt=MqttConfig(), export=ExportConfig())


def load_config(path: str | Path) -> AppConfig:
    parser = configparser.ConfigParser()
    read_files = parser.read(path)
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")

    # Every option falls back to its default so partial files are accepted
    try:
        mqtt = MqttConfig(
            broker_url=_get_optional(parser.get("mqtt", "broker_url", fallback=None))
            or DEFAULT_BROKER_URL,
            client_id=_get_optional(parser.get("mqtt", "client_id", fallback=None))
            or DEFAULT_CLIENT_ID,
            username=_get_optional(parser.get("mqtt", "username", fallback=None)),
            password=_get_optional(parser.get("mqtt", "password", fallback=None)),
            topic_prefix=(parser.get("mqtt", "topic_prefix", fallback="") or "").strip(),
            keepalive=parser.getint("mqtt", "keepalive", fallback=60),
        )
        export = ExportConfig(
            enabled=parser.getboolean("export", "enabled", fallback=True),
            rules_file=_get_optional(parser.get("export", "rules_file", fallback=None))
            or DEFAULT_RULES_FILE,
            self_id=_get_optional(parser.get("export", "self_id", fallback=None))
            or DEFAULT_SELF_ID,
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value in {path}: {exc}") from exc

    if mqtt.keepalive <= 0:
        raise ConfigurationError("mqtt.keepalive must be positive")

    return AppConfig(mqtt=mqtt, export=export)
