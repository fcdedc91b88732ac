"""Tests for the administration operations."""
from __future__ import annotations

import json

import pytest

from signalk_mqtt_export.admin import AdminApi
from signalk_mqtt_export.engine import ExportEngine
from signalk_mqtt_export.exceptions import PersistenceError
from signalk_mqtt_export.source import DeltaStreamSource
from signalk_mqtt_export.storage import MemoryRuleRepository

from conftest import FakeDispatcher, make_rule


@pytest.fixture
def repository():
    return MemoryRuleRepository([make_rule(id="a"), make_rule(id="b", context="vessels.*")])


@pytest.fixture
def admin(app_config, fake_dispatcher, repository):
    engine = ExportEngine(app_config, DeltaStreamSource(), fake_dispatcher, repository)
    engine.start()
    return AdminApi(engine)


class TestGetRules:
    def test_shape(self, admin):
        response = admin.get_rules()
        assert response["success"] is True
        assert [rule["id"] for rule in response["rules"]] == ["a", "b"]
        assert response["activeContexts"] == 2
        assert response["busConnected"] is True


class TestPutRules:
    def test_replaces_rule_set(self, admin, repository):
        response = admin.put_rules({"rules": [make_rule(id="c", path="navigation*")]})
        assert response == {"success": True, "message": "Export rules updated and saved"}
        assert [rule["id"] for rule in admin.get_rules()["rules"]] == ["c"]
        assert admin.get_rules()["activeContexts"] == 1
        assert repository.rules[0]["id"] == "c"

    def test_new_rules_get_ids(self, admin):
        rule = make_rule()
        del rule["id"]
        assert admin.put_rules({"rules": [rule]})["success"] is True
        assert admin.get_rules()["rules"][0]["id"]

    @pytest.mark.parametrize("body", [None, [], {"rules": "all"}, {}])
    def test_rules_must_be_array(self, admin, body):
        assert admin.put_rules(body) == {"success": False, "error": "Rules must be an array"}

    def test_invalid_rule_rejected(self, admin):
        response = admin.put_rules({"rules": [make_rule(id="c", qos=4)]})
        assert response["success"] is False
        assert "rules/0/qos" in response["error"]
        assert [rule["id"] for rule in admin.get_rules()["rules"]] == ["a", "b"]

    def test_persistence_failure(self, admin, repository, monkeypatch):
        def fail(rules):
            raise PersistenceError("read-only file system")

        monkeypatch.setattr(repository, "save", fail)
        response = admin.put_rules({"rules": [make_rule(id="c")]})
        assert response == {"success": False, "error": "Failed to save configuration"}
        assert [rule["id"] for rule in admin.get_rules()["rules"]] == ["a", "b"]


class TestBusStatus:
    def test_status(self, admin):
        assert admin.bus_status() == {
            "success": True,
            "connected": True,
            "state": "connected",
            "brokerUrl": "mqtt://broker.test:1883",
            "clientId": "test-client",
            "lastError": None,
        }


class TestTestPublish:
    def test_publishes_diagnostic_message(self, admin, fake_dispatcher):
        response = admin.test_publish()
        assert response == {
            "success": True,
            "message": "Test message published",
            "topic": "test/signalk-mqtt-export-test",
        }
        [result] = fake_dispatcher.published
        payload = json.loads(result.payload)
        assert payload["test"] is True
        assert "timestamp" in payload

    def test_requires_connection(self, app_config):
        dispatcher = FakeDispatcher(connected_on_connect=False)
        engine = ExportEngine(app_config, DeltaStreamSource(), dispatcher, MemoryRuleRepository([]))
        engine.start()
        response = AdminApi(engine).test_publish()
        assert response == {"success": False, "error": "MQTT not connected"}


class TestStats:
    def test_stats(self, admin):
        stats = admin.stats()
        assert stats["success"] is True
        assert stats["state"] == "running"
        assert stats["totalRules"] == 2
        assert stats["messagesPublished"] == 0
