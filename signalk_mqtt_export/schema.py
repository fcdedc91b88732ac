from __future__ import annotations

from functools import lru_cache
from importlib import resources
import json
from typing import Any

from jsonschema import Draft202012Validator


def load_schema() -> dict[str, Any]:
    schema_path = resources.files("signalk_mqtt_export").joinpath(
        "schemas/export-rules.schema.json"
    )
    return json.loads(schema_path.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def get_validator() -> Draft202012Validator:
    schema = load_schema()
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema=schema)


def _error_location(error) -> str:
    parts = ["rules", *(str(part) for part in error.absolute_path)]
    return "/".join(parts)


def validate_rules_document(rules: list[Any]) -> list[str]:
    """Return a sorted list of schema violations, empty when the rules are valid."""
    validator = get_validator()
    errors = sorted(validator.iter_errors(rules), key=lambda e: list(e.absolute_path))
    return [f"{_error_location(error)}: {error.message}" for error in errors]
