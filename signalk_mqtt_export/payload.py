from __future__ import annotations

from typing import Any

from signalk_mqtt_export.rules import PayloadFormat
from signalk_mqtt_export.values import TelemetryValue, dump_json


def format_payload(payload_format: PayloadFormat, envelope: dict[str, Any], value: TelemetryValue) -> str:
    if payload_format is PayloadFormat.VALUE_ONLY:
        return value.plain()
    # the whole delta, so consumers keep the source and timestamp
    return dump_json(envelope)
