from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable
import uuid

from signalk_mqtt_export.exceptions import RuleValidationError
from signalk_mqtt_export.schema import validate_rules_document

DEFAULT_CONTEXT = "vessels.self"
DEFAULT_PERIOD_MS = 1000
WILDCARD = "*"


class PayloadFormat(str, Enum):
    FULL = "full"
    VALUE_ONLY = "value-only"


@dataclass(frozen=True)
class ExportRule:
    id: str
    path: str
    name: str = ""
    context: str = DEFAULT_CONTEXT
    source: str = ""
    exclude_keys: str = ""
    enabled: bool = False
    period: int = DEFAULT_PERIOD_MS
    qos: int = 0
    retain: bool = False
    payload_format: PayloadFormat = PayloadFormat.FULL
    send_on_change: bool = True
    topic_template: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExportRule:
        """Build a rule from its wire form, applying defaults for missing keys.

        ``excludeMMSI`` is accepted as a legacy spelling of ``excludeKeys``.
        """
        rule_id = str(data.get("id") or "").strip()
        exclude_keys = data.get("excludeKeys")
        if exclude_keys is None:
            exclude_keys = data.get("excludeMMSI") or ""
        period = data.get("period")
        send_on_change = data.get("sendOnChange")
        return cls(
            id=rule_id,
            name=data.get("name") or rule_id,
            context=data.get("context") or DEFAULT_CONTEXT,
            path=str(data.get("path") or ""),
            source=data.get("source") or "",
            exclude_keys=exclude_keys,
            enabled=bool(data.get("enabled", False)),
            period=DEFAULT_PERIOD_MS if period is None else period,
            qos=int(data.get("qos") or 0),
            retain=bool(data.get("retain", False)),
            payload_format=PayloadFormat(data.get("payloadFormat") or PayloadFormat.FULL.value),
            send_on_change=True if send_on_change is None else bool(send_on_change),
            topic_template=data.get("topicTemplate") or None,
        )

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "context": self.context,
            "path": self.path,
            "source": self.source,
            "excludeKeys": self.exclude_keys,
            "enabled": self.enabled,
            "period": self.period,
            "qos": self.qos,
            "retain": self.retain,
            "payloadFormat": self.payload_format.value,
            "sendOnChange": self.send_on_change,
        }
        if self.topic_template:
            data["topicTemplate"] = self.topic_template
        return data

    @property
    def excluded_keys(self) -> list[str]:
        return [key.strip() for key in self.exclude_keys.split(",") if key.strip()]


@dataclass(frozen=True)
class RuleSet:
    """Ordered, immutable collection of export rules.

    Order is significant: when several rules match the same update the
    earliest one wins.
    """

    rules: tuple[ExportRule, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def enabled(self) -> tuple[ExportRule, ...]:
        return tuple(rule for rule in self.rules if rule.enabled)

    def as_list(self) -> list[dict[str, Any]]:
        return [rule.as_dict() for rule in self.rules]


def _check_invariants(rules: Iterable[ExportRule]) -> list[str]:
    errors: list[str] = []
    seen: set[str] = set()
    for index, rule in enumerate(rules):
        if rule.id in seen:
            errors.append(f"rules/{index}/id: duplicate rule id '{rule.id}'")
        seen.add(rule.id)
        if not rule.path.strip():
            errors.append(f"rules/{index}/path: path must not be empty")
        if rule.qos not in (0, 1, 2):
            errors.append(f"rules/{index}/qos: qos must be 0, 1 or 2")
        if rule.period <= 0:
            errors.append(f"rules/{index}/period: period must be positive")
    return errors


def parse_rules(raw_rules: Any, *, assign_ids: bool = False) -> RuleSet:
    """Validate a list of wire-form rules and return them as a RuleSet.

    With ``assign_ids`` set, rules without an id get a fresh one; this is how
    newly created rules receive their permanent identifier.
    """
    if not isinstance(raw_rules, list):
        raise RuleValidationError(["Rules must be an array"])
    errors = validate_rules_document(raw_rules)
    if errors:
        raise RuleValidationError(errors)

    rules = []
    for data in raw_rules:
        rule = ExportRule.from_dict(data)
        if not rule.id:
            if not assign_ids:
                raise RuleValidationError([f"rule '{rule.name or rule.path}' has no id"])
            new_id = uuid.uuid4().hex
            rule = ExportRule.from_dict({**data, "id": new_id})
        rules.append(rule)

    errors = _check_invariants(rules)
    if errors:
        raise RuleValidationError(errors)
    return RuleSet(tuple(rules))


def default_rules() -> list[dict[str, Any]]:
    own_mmsi = "368396230"
    common = {
        "enabled": True,
        "period": DEFAULT_PERIOD_MS,
        "qos": 0,
        "retain": False,
        "payloadFormat": PayloadFormat.FULL.value,
        "sendOnChange": True,
    }
    return [
        {"id": "all-navigation", "name": "All Navigation Data", "context": "vessels.self",
         "path": "navigation*", "source": "", **common},
        {"id": "derived-data", "name": "Derived Data", "context": "vessels.self",
         "path": WILDCARD, "source": "derived-data", **common},
        {"id": "pypilot", "name": "PyPilot Data", "context": "vessels.self",
         "path": WILDCARD, "source": "pypilot", **common},
        {"id": "anchoralarm", "name": "Anchor Alarm", "context": "vessels.self",
         "path": WILDCARD, "source": "anchoralarm", **common},
        {"id": "all-vessels", "name": "All Vessels (AIS)", "context": "vessels.*",
         "path": WILDCARD, "source": "", "excludeKeys": own_mmsi, **common},
        {"id": "ais-vessels", "name": "AIS Vessels", "context": "vessels.urn:*",
         "path": WILDCARD, "source": "", "excludeKeys": own_mmsi, **common},
    ]
