"""Telemetry source interface and an in-process delta stream.

The engine only relies on ``TelemetrySource.subscribe``. ``DeltaStreamSource``
implements it for deltas pushed in by the caller, e.g. read from a
newline-delimited JSON stream by the command-line entry point.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
import json
import logging
import threading
from typing import Any, Callable, Iterable, Iterator, Protocol, Sequence, TextIO

from signalk_mqtt_export.matching import path_matches
from signalk_mqtt_export.planner import SubscriptionRequest
from signalk_mqtt_export.rules import DEFAULT_CONTEXT

SELF_CONTEXT = DEFAULT_CONTEXT


@dataclass(frozen=True)
class PathValue:
    path: str
    value: Any


@dataclass(frozen=True)
class Update:
    source_label: str | None
    timestamp: str | None
    values: tuple[PathValue, ...]
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Update:
        source = data.get("source")
        label = data.get("$source")
        if not label and isinstance(source, dict):
            label = source.get("label")
        values = tuple(
            PathValue(path=str(item.get("path", "")), value=item.get("value"))
            for item in data.get("values") or []
            if isinstance(item, dict)
        )
        return cls(source_label=label, timestamp=data.get("timestamp"), values=values, raw=data)


@dataclass(frozen=True)
class Delta:
    context: str | None
    updates: tuple[Update, ...]
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Delta:
        if not isinstance(data, dict):
            raise ValueError("Delta must be a JSON object")
        updates = tuple(
            Update.from_dict(item) for item in data.get("updates") or [] if isinstance(item, dict)
        )
        return cls(context=data.get("context"), updates=updates, raw=data)


DeltaHandler = Callable[[Delta], None]
ErrorHandler = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class TelemetrySource(Protocol):
    def subscribe(
        self,
        context_pattern: str,
        requests: Sequence[SubscriptionRequest],
        on_error: ErrorHandler,
        on_delta: DeltaHandler,
    ) -> Unsubscribe: ...


@dataclass
class _Subscription:
    context_pattern: str
    paths: tuple[str, ...]
    on_error: ErrorHandler
    on_delta: DeltaHandler


class DeltaStreamSource:
    """Fans published deltas out to matching subscriptions.

    Request periods are advisory and not enforced here; every delta is
    delivered as soon as it is published.
    """

    def __init__(self, self_id: str = SELF_CONTEXT) -> None:
        self.self_id = self_id
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._subscriptions: list[_Subscription] = []

    def subscribe(
        self,
        context_pattern: str,
        requests: Sequence[SubscriptionRequest],
        on_error: ErrorHandler,
        on_delta: DeltaHandler,
    ) -> Unsubscribe:
        subscription = _Subscription(
            context_pattern=context_pattern,
            paths=tuple(request.path for request in requests),
            on_error=on_error,
            on_delta=on_delta,
        )
        with self._lock:
            self._subscriptions.append(subscription)
        self.logger.debug(
            "Subscribed to %s for %d paths", context_pattern, len(subscription.paths)
        )

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _context_matches(self, pattern: str, context: str) -> bool:
        if pattern == SELF_CONTEXT:
            return context in (SELF_CONTEXT, self.self_id)
        return fnmatchcase(context, pattern)

    @staticmethod
    def _filter_delta(raw: dict[str, Any], paths: tuple[str, ...]) -> dict[str, Any] | None:
        updates = []
        for update in raw.get("updates") or []:
            if not isinstance(update, dict):
                continue
            values = [
                item
                for item in update.get("values") or []
                if isinstance(item, dict)
                and any(path_matches(path, str(item.get("path", ""))) for path in paths)
            ]
            if values:
                updates.append({**update, "values": values})
        if not updates:
            return None
        return {**raw, "updates": updates}

    def publish(self, raw: dict[str, Any]) -> int:
        """Deliver one delta to every matching subscription; returns the delivery count."""
        context = raw.get("context") or SELF_CONTEXT
        with self._lock:
            subscriptions = list(self._subscriptions)
        delivered = 0
        for subscription in subscriptions:
            if not self._context_matches(subscription.context_pattern, context):
                continue
            filtered = self._filter_delta(raw, subscription.paths)
            if filtered is None:
                continue
            try:
                subscription.on_delta(Delta.from_dict(filtered))
            except Exception as exc:
                subscription.on_error(exc)
            delivered += 1
        return delivered


def read_deltas(stream: TextIO | Iterable[str]) -> Iterator[dict[str, Any]]:
    logger = logging.getLogger("DeltaReader")
    for number, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("Skipping malformed delta on line %d: %s", number, exc)
            continue
        if not isinstance(data, dict):
            logger.warning("Skipping non-object delta on line %d", number)
            continue
        yield data
