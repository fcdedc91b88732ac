from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Protocol

from signalk_mqtt_export.exceptions import PersistenceError
from signalk_mqtt_export.rules import RuleSet

RULES_KEY = "exportRules"


class RuleRepository(Protocol):
    def load(self) -> list[dict[str, Any]] | None: ...

    def save(self, rules: RuleSet) -> None: ...


class JsonRuleRepository:
    """Stores the rule set as ``{"exportRules": [...]}`` in a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.logger = logging.getLogger(self.__class__.__name__)

    def load(self) -> list[dict[str, Any]] | None:
        if not self.path.exists():
            self.logger.info("No rule file at %s", self.path)
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read rules from {self.path}: {exc}") from exc
        if isinstance(data, dict):
            data = data.get(RULES_KEY)
        if not isinstance(data, list):
            raise PersistenceError(f"{self.path} does not contain a rule list")
        return data

    def save(self, rules: RuleSet) -> None:
        document = {RULES_KEY: rules.as_list()}
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(document, handle, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to save rules to {self.path}: {exc}") from exc
        self.logger.debug("Saved %d rules to %s", len(rules), self.path)


class MemoryRuleRepository:
    """Keeps the saved rule list in memory instead of on disk."""

    def __init__(self, rules: list[dict[str, Any]] | None = None) -> None:
        self.rules = rules
        self.save_count = 0

    def load(self) -> list[dict[str, Any]] | None:
        return self.rules

    def save(self, rules: RuleSet) -> None:
        self.rules = rules.as_list()
        self.save_count += 1
