"""Group enabled export rules into per-context subscription requests."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from signalk_mqtt_export.rules import DEFAULT_CONTEXT, ExportRule


@dataclass(frozen=True)
class SubscriptionRequest:
    path: str
    period: int

    def as_dict(self) -> dict[str, object]:
        return {"path": self.path, "period": self.period}


@dataclass(frozen=True)
class ContextGroup:
    context: str
    rules: tuple[ExportRule, ...]
    requests: tuple[SubscriptionRequest, ...]


@dataclass(frozen=True)
class SubscriptionPlan:
    groups: tuple[ContextGroup, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[ContextGroup]:
        return iter(self.groups)

    def __len__(self) -> int:
        return len(self.groups)

    @property
    def contexts(self) -> list[str]:
        return [group.context for group in self.groups]

    def group(self, context: str) -> ContextGroup | None:
        for group in self.groups:
            if group.context == context:
                return group
        return None


def plan(rules: Iterable[ExportRule]) -> SubscriptionPlan:
    """Build a fresh subscription plan from an ordered sequence of rules.

    Rules keep their stored order inside each group, and contexts appear in
    the order their first rule does. A path requested by several rules of the
    same context is subscribed once, at the shortest requested period.
    """
    by_context: dict[str, list[ExportRule]] = {}
    for rule in rules:
        if not rule.enabled:
            continue
        by_context.setdefault(rule.context or DEFAULT_CONTEXT, []).append(rule)

    groups = []
    for context, context_rules in by_context.items():
        periods: dict[str, int] = {}
        for rule in context_rules:
            current = periods.get(rule.path)
            periods[rule.path] = rule.period if current is None else min(current, rule.period)
        requests = tuple(
            SubscriptionRequest(path=path, period=period) for path, period in periods.items()
        )
        groups.append(ContextGroup(context=context, rules=tuple(context_rules), requests=requests))
    return SubscriptionPlan(tuple(groups))
