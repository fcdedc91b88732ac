"""Typed wrappers for the loosely-typed values carried by telemetry deltas.

Every decoded JSON value is classified into exactly one of four variants so
change detection and payload rendering never have to guess at the shape.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import json
import math
from typing import Any, Union

from signalk_mqtt_export.exceptions import ValueTypeError


def _finite(obj: Any) -> Any:
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    if isinstance(obj, dict):
        return {key: _finite(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_finite(value) for value in obj]
    return obj


def dump_json(obj: Any, *, sort_keys: bool = False) -> str:
    """Compact JSON with no whitespace between tokens.

    NaN and infinities have no JSON spelling and are written as ``null``.
    """
    return json.dumps(
        _finite(obj),
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=sort_keys,
        allow_nan=False,
    )


def _format_float(number: float) -> str:
    """Render a finite float the way ECMAScript Number::toString does."""
    if number == 0:
        return "0"
    sign = "-" if number < 0 else ""
    # repr gives the shortest round-tripping digits
    _, digit_tuple, exponent = Decimal(repr(abs(number))).as_tuple()
    digits = "".join(str(digit) for digit in digit_tuple).rstrip("0")
    exponent += len(digit_tuple) - len(digits)
    k = len(digits)
    n = exponent + k  # position of the decimal point relative to the digits

    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return sign + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * -n + digits
    e = n - 1
    mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
    return f"{sign}{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"


def _format_number(number: int | float) -> str:
    if isinstance(number, int):
        return str(number)
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    return _format_float(number)


@dataclass(frozen=True)
class NumberValue:
    value: int | float

    def canonical(self) -> str:
        return _format_number(self.value)

    def plain(self) -> str:
        return _format_number(self.value)

    def fingerprint(self) -> str:
        return f"n:{_format_number(self.value)}"


@dataclass(frozen=True)
class StringValue:
    value: str

    def canonical(self) -> str:
        return dump_json(self.value)

    def plain(self) -> str:
        return self.value

    def fingerprint(self) -> str:
        return f"s:{self.value}"


@dataclass(frozen=True)
class BoolValue:
    value: bool

    def canonical(self) -> str:
        return "true" if self.value else "false"

    def plain(self) -> str:
        return self.canonical()

    def fingerprint(self) -> str:
        return f"b:{self.canonical()}"


@dataclass(frozen=True)
class StructuredValue:
    """A JSON object, array or null."""

    value: dict[str, Any] | list[Any] | None

    def canonical(self) -> str:
        return dump_json(self.value)

    def plain(self) -> str:
        return self.canonical()

    def fingerprint(self) -> str:
        return f"o:{dump_json(self.value, sort_keys=True)}"


TelemetryValue = Union[NumberValue, StringValue, BoolValue, StructuredValue]


def to_value(raw: Any) -> TelemetryValue:
    # bool is a subclass of int, so it has to be checked first
    if isinstance(raw, bool):
        return BoolValue(raw)
    if isinstance(raw, (int, float)):
        return NumberValue(raw)
    if isinstance(raw, str):
        return StringValue(raw)
    if raw is None or isinstance(raw, (dict, list)):
        return StructuredValue(raw)
    raise ValueTypeError(f"Unsupported telemetry value type: {type(raw).__name__}")
