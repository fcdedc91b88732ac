"""Exception hierarchy for the MQTT export engine."""
from __future__ import annotations


class ExportError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(ExportError):
    """Raised when the configuration file holds unusable values."""


class RuleValidationError(ExportError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid export rules")


class PersistenceError(ExportError):
    """Raised when the rule set cannot be written to durable storage."""


class ValueTypeError(ExportError):
    """Raised for telemetry values that are not JSON-shaped."""
