from __future__ import annotations

from signalk_mqtt_export.rules import ExportRule

SEPARATOR = "/"


def render_topic(topic_prefix: str, rule: ExportRule, context: str, path: str) -> str:
    """Build the MQTT topic for a matched value.

    Without a template the topic is ``context/path``. A template has its first
    ``{context}`` and first ``{path}`` token replaced. Dots are then turned into
    topic levels, and a non-empty prefix is put in front unchanged.
    """
    if rule.topic_template:
        body = rule.topic_template.replace("{context}", context, 1).replace("{path}", path, 1)
    else:
        body = f"{context}{SEPARATOR}{path}"
    body = body.replace(".", SEPARATOR)
    if topic_prefix:
        return f"{topic_prefix}{SEPARATOR}{body}"
    return body
