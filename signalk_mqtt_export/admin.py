"""Administration operations, shaped as JSON-ready dicts for an HTTP layer."""
from __future__ import annotations

import logging
from typing import Any

from signalk_mqtt_export.engine import ExportEngine
from signalk_mqtt_export.exceptions import PersistenceError, RuleValidationError


class AdminApi:
    def __init__(self, engine: ExportEngine) -> None:
        self.engine = engine
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_rules(self) -> dict[str, Any]:
        return {
            "success": True,
            "rules": self.engine.rules.as_list(),
            "activeContexts": len(self.engine.plan),
            "busConnected": self.engine.dispatcher.connected,
        }

    def put_rules(self, body: Any) -> dict[str, Any]:
        """Replace the whole rule set.

        Fails without side effects when the body is malformed, a rule is
        invalid, or the new rules cannot be saved.
        """
        rules = body.get("rules") if isinstance(body, dict) else None
        if not isinstance(rules, list):
            return {"success": False, "error": "Rules must be an array"}
        try:
            self.engine.update_rules(rules)
        except RuleValidationError as exc:
            self.logger.warning("Rejected export rules: %s", exc)
            return {"success": False, "error": str(exc), "errors": exc.errors}
        except PersistenceError as exc:
            self.logger.error("Error saving export rules: %s", exc)
            return {"success": False, "error": "Failed to save configuration"}
        return {"success": True, "message": "Export rules updated and saved"}

    def bus_status(self) -> dict[str, Any]:
        return {"success": True, **self.engine.dispatcher.status()}

    def test_publish(self) -> dict[str, Any]:
        result = self.engine.test_publish()
        if not result.success:
            return {"success": False, "error": result.error or "Publish failed"}
        return {"success": True, "message": "Test message published", "topic": result.topic}

    def stats(self) -> dict[str, Any]:
        return {"success": True, **self.engine.stats()}
