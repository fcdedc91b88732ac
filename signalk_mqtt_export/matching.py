"""First-match-wins selection of the export rule for one telemetry value."""
from __future__ import annotations

from typing import Sequence

from signalk_mqtt_export.rules import WILDCARD, ExportRule


def path_matches(pattern: str, path: str) -> bool:
    """Match a rule path against an update path.

    ``*`` matches everything; a trailing ``*`` matches any path starting with
    the text before it, so ``navigation*`` matches ``navigation`` and
    ``navigation.position`` but not ``electrical.navigation``.
    """
    if pattern == WILDCARD or pattern == path:
        return True
    if pattern.endswith(WILDCARD):
        return path.startswith(pattern[:-1])
    return False


def source_matches(rule_source: str | None, source_label: str | None) -> bool:
    if not rule_source or not rule_source.strip():
        return True
    return rule_source == source_label


def is_excluded(rule: ExportRule, full_context: str) -> bool:
    # substring containment, so a bare MMSI excludes "vessels.urn:mrn:imo:mmsi:<mmsi>"
    if not full_context:
        return False
    return any(key in full_context for key in rule.excluded_keys)


def match_rule(
    context_rules: Sequence[ExportRule],
    path: str,
    source_label: str | None,
    full_context: str,
) -> ExportRule | None:
    for rule in context_rules:
        if not rule.enabled:
            continue
        if not path_matches(rule.path, path):
            continue
        if not source_matches(rule.source, source_label):
            continue
        if is_excluded(rule, full_context):
            continue
        return rule
    return None
