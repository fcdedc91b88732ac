from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
import threading
from typing import Any, Protocol, Sequence

from signalk_mqtt_export.change_filter import ChangeFilter
from signalk_mqtt_export.config import AppConfig
from signalk_mqtt_export.logging_utils import TRACE_LEVEL
from signalk_mqtt_export.matching import match_rule
from signalk_mqtt_export.mqtt_client import DispatchResult
from signalk_mqtt_export.payload import format_payload
from signalk_mqtt_export.planner import ContextGroup, SubscriptionPlan, plan
from signalk_mqtt_export.rules import (
    DEFAULT_CONTEXT,
    ExportRule,
    RuleSet,
    default_rules,
    parse_rules,
)
from signalk_mqtt_export.source import Delta, PathValue, TelemetrySource, Unsubscribe, Update
from signalk_mqtt_export.storage import RuleRepository
from signalk_mqtt_export.topics import render_topic
from signalk_mqtt_export.values import dump_json, to_value

TEST_TOPIC_SUFFIX = "signalk-mqtt-export-test"


class EngineState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Dispatcher(Protocol):
    @property
    def connected(self) -> bool: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def wait_connected(self, timeout: float) -> bool: ...

    def publish(
        self,
        topic: str,
        payload: str,
        qos: int = 0,
        retain: bool = False,
        rule_id: str | None = None,
    ) -> DispatchResult: ...

    def status(self) -> dict[str, Any]: ...


@dataclass
class EngineCounters:
    published: int = 0
    failed: int = 0
    suppressed: int = 0
    last_publish_time: datetime | None = None


class ExportEngine:
    """Owns all mutable export state: rules, subscriptions, change map, bus handle.

    The rule set and the subscription plan are immutable values replaced as a
    whole, so an update being matched always sees one complete rule set.
    """

    def __init__(
        self,
        config: AppConfig,
        source: TelemetrySource,
        dispatcher: Dispatcher,
        repository: RuleRepository,
    ) -> None:
        self.config = config
        self.source = source
        self.dispatcher = dispatcher
        self.repository = repository
        self.change_filter = ChangeFilter()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._control_lock = threading.RLock()
        self._stats_lock = threading.Lock()
        self._state = EngineState.STOPPED
        self._rules = RuleSet()
        self._plan = SubscriptionPlan()
        self._unsubscribes: list[Unsubscribe] = []
        self._counters = EngineCounters()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def rules(self) -> RuleSet:
        return self._rules

    @property
    def plan(self) -> SubscriptionPlan:
        return self._plan

    def _load_rules(self) -> RuleSet:
        raw_rules = self.repository.load()
        if raw_rules is None:
            self.logger.info("No saved export rules; using defaults.")
            raw_rules = default_rules()
        return parse_rules(raw_rules, assign_ids=True)

    def start(self) -> None:
        with self._control_lock:
            if self._state is not EngineState.STOPPED:
                self.logger.warning("Engine already %s; ignoring start.", self._state.value)
                return
            self._rules = self._load_rules()
            if not self.config.export.enabled:
                self.logger.info("MQTT export disabled in configuration.")
                return

            self.logger.info("Starting MQTT export engine.")
            self._state = EngineState.STARTING
            try:
                self.dispatcher.connect()
                self._rebuild_subscriptions()
            except Exception:
                self._teardown_subscriptions()
                self._state = EngineState.STOPPED
                raise
            self._state = EngineState.RUNNING
        self.logger.info("MQTT export engine started with %d rules.", len(self._rules))

    def stop(self) -> None:
        with self._control_lock:
            if self._state is EngineState.STOPPED:
                return
            self.logger.info("Stopping MQTT export engine.")
            self._state = EngineState.STOPPING
            try:
                self._teardown_subscriptions()
                self.dispatcher.disconnect()
            finally:
                self.change_filter.clear()
                self._state = EngineState.STOPPED
        self.logger.info("MQTT export engine stopped.")

    def update_rules(self, raw_rules: Any) -> RuleSet:
        """Validate, persist and activate a complete replacement rule set.

        Raises RuleValidationError or PersistenceError; on either, the active
        rule set and its subscriptions are left untouched.
        """
        rule_set = parse_rules(raw_rules, assign_ids=True)
        with self._control_lock:
            self.repository.save(rule_set)
            self._rules = rule_set
            if self._state is EngineState.RUNNING:
                self._rebuild_subscriptions()
        self.logger.info(
            "Export rules updated: %d rules, %d enabled.", len(rule_set), len(rule_set.enabled())
        )
        return rule_set

    def _teardown_subscriptions(self) -> None:
        unsubscribes, self._unsubscribes = self._unsubscribes, []
        for unsubscribe in unsubscribes:
            try:
                unsubscribe()
            except Exception:
                self.logger.warning("Failed to close a telemetry subscription.", exc_info=True)
        self._plan = SubscriptionPlan()

    def _subscribe_group(self, group: ContextGroup) -> Unsubscribe:
        rules = group.rules

        def on_delta(delta: Delta) -> None:
            self.handle_delta(delta, rules)

        def on_error(error: Exception) -> None:
            self.logger.error("Subscription error for %s: %s", group.context, error)

        self.logger.debug(
            "Creating subscription for context %s with %d paths",
            group.context,
            len(group.requests),
        )
        return self.source.subscribe(group.context, group.requests, on_error, on_delta)

    def _rebuild_subscriptions(self) -> None:
        self._teardown_subscriptions()
        new_plan = plan(self._rules)
        unsubscribes = [self._subscribe_group(group) for group in new_plan]
        self._unsubscribes = unsubscribes
        self._plan = new_plan
        self.logger.info(
            "Active subscriptions: %d contexts, %d total rules",
            len(new_plan),
            len(self._rules.enabled()),
        )

    def handle_delta(self, delta: Delta, context_rules: Sequence[ExportRule]) -> list[DispatchResult]:
        if self._state is not EngineState.RUNNING:
            return []
        results = []
        for update in delta.updates:
            for item in update.values:
                try:
                    result = self._export_value(delta, update, item, context_rules)
                except Exception:
                    self.logger.exception(
                        "Failed to export %s from %s", item.path, delta.context or DEFAULT_CONTEXT
                    )
                    self._count(success=False)
                    continue
                if result is not None:
                    results.append(result)
        return results

    def _export_value(
        self,
        delta: Delta,
        update: Update,
        item: PathValue,
        context_rules: Sequence[ExportRule],
    ) -> DispatchResult | None:
        full_context = delta.context or ""
        rule = match_rule(context_rules, item.path, update.source_label, full_context)
        if rule is None:
            self.logger.log(
                TRACE_LEVEL, "No rule for %s %s (%s)", full_context, item.path, update.source_label
            )
            return None

        context = delta.context or DEFAULT_CONTEXT
        value = to_value(item.value)
        topic = render_topic(self.config.mqtt.topic_prefix, rule, context, item.path)
        payload = format_payload(rule.payload_format, delta.raw, value)

        # checked before the change filter so an unsent value is not remembered
        if not self.dispatcher.connected:
            self._count(success=False)
            return DispatchResult(topic, payload, rule.id, False, "MQTT not connected")

        if rule.send_on_change and not self.change_filter.should_send((context, item.path), value):
            with self._stats_lock:
                self._counters.suppressed += 1
            return None

        result = self.dispatcher.publish(topic, payload, rule.qos, rule.retain, rule_id=rule.id)
        self._count(success=result.success)
        if not result.success:
            self.logger.warning("MQTT publish error on %s: %s", topic, result.error)
        return result

    def _count(self, *, success: bool) -> None:
        with self._stats_lock:
            if success:
                self._counters.published += 1
                self._counters.last_publish_time = datetime.now(timezone.utc)
            else:
                self._counters.failed += 1

    def test_publish(self) -> DispatchResult:
        topic = f"{self.config.mqtt.topic_prefix or 'test'}/{TEST_TOPIC_SUFFIX}"
        payload = dump_json(
            {
                "test": True,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "message": "Test message from SignalK MQTT Export Manager",
            }
        )
        return self.dispatcher.publish(topic, payload, 0, False)

    def stats(self) -> dict[str, Any]:
        rules = self._rules
        with self._stats_lock:
            counters = EngineCounters(**vars(self._counters))
        return {
            "state": self._state.value,
            "totalRules": len(rules),
            "enabledRules": len(rules.enabled()),
            "activeSubscriptions": len(self._plan),
            "mqttConnected": self.dispatcher.connected,
            "messagesPublished": counters.published,
            "messagesFailed": counters.failed,
            "messagesSuppressed": counters.suppressed,
            "trackedValues": len(self.change_filter),
            "lastPublishTime": counters.last_publish_time.isoformat()
            if counters.last_publish_time
            else None,
        }
