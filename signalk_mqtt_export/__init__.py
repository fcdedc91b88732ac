"""Selective Signal K to MQTT export engine."""

from signalk_mqtt_export.admin import AdminApi
from signalk_mqtt_export.config import AppConfig, load_config
from signalk_mqtt_export.engine import EngineState, ExportEngine
from signalk_mqtt_export.mqtt_client import DispatchResult, MqttDispatcher
from signalk_mqtt_export.rules import ExportRule, PayloadFormat, RuleSet, parse_rules

__all__ = [
    "AdminApi",
    "AppConfig",
    "DispatchResult",
    "EngineState",
    "ExportEngine",
    "ExportRule",
    "MqttDispatcher",
    "PayloadFormat",
    "RuleSet",
    "load_config",
    "parse_rules",
]
