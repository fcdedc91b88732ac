"""Tests for export rule matching."""
from __future__ import annotations

import pytest

from signalk_mqtt_export.matching import is_excluded, match_rule, path_matches, source_matches
from signalk_mqtt_export.rules import ExportRule

from conftest import make_rule


def rule(**overrides) -> ExportRule:
    return ExportRule.from_dict(make_rule(**overrides))


class TestPathMatches:
    @pytest.mark.parametrize(
        "path",
        ["navigation.position", "environment.wind.speedApparent", "a"],
    )
    def test_universal_wildcard_matches_any_path(self, path):
        assert path_matches("*", path)

    def test_exact_path(self):
        assert path_matches("navigation.position", "navigation.position")
        assert not path_matches("navigation.position", "navigation.speedOverGround")

    def test_prefix_wildcard(self):
        assert path_matches("navigation*", "navigation.position")
        assert path_matches("navigation*", "navigation")
        assert not path_matches("navigation*", "electrical.navigation")

    def test_wildcard_only_at_end(self):
        assert not path_matches("navigation.*.value", "navigation.position.value")


class TestSourceAndExclusion:
    def test_blank_source_matches_everything(self):
        assert source_matches("", "gps0")
        assert source_matches("   ", None)
        assert source_matches(None, "gps0")

    def test_source_is_exact_and_case_sensitive(self):
        assert source_matches("pypilot", "pypilot")
        assert not source_matches("pypilot", "gps0")
        assert not source_matches("pypilot", "PyPilot")

    def test_exclusion_is_substring_containment(self):
        r = rule(excludeKeys="12345")
        assert is_excluded(r, "vessels.urn:mrn:imo:mmsi:123456789")
        assert not is_excluded(r, "vessels.urn:mrn:imo:mmsi:987654321")

    def test_exclusion_list_is_trimmed(self):
        r = rule(excludeKeys=" 111 , 222 ,")
        assert is_excluded(r, "vessels.urn:mrn:imo:mmsi:222000000")
        assert not is_excluded(r, "vessels.self")

    def test_empty_exclusion_list(self):
        assert not is_excluded(rule(excludeKeys=""), "vessels.urn:mrn:imo:mmsi:1")
        assert not is_excluded(rule(excludeKeys=" , "), "vessels.urn:mrn:imo:mmsi:1")


class TestMatchRule:
    def test_first_matching_rule_wins(self):
        first = rule(id="first", path="navigation*", qos=1)
        second = rule(id="second", path="*", qos=2)
        matched = match_rule([first, second], "navigation.position", "gps0", "vessels.self")
        assert matched is first

        matched = match_rule([second, first], "navigation.position", "gps0", "vessels.self")
        assert matched is second

    def test_falls_through_to_later_rule(self):
        narrow = rule(id="narrow", path="environment*")
        broad = rule(id="broad", path="*")
        matched = match_rule([narrow, broad], "navigation.position", "gps0", "vessels.self")
        assert matched is broad

    def test_disabled_rule_is_skipped(self):
        disabled = rule(id="off", enabled=False)
        enabled = rule(id="on")
        assert match_rule([disabled, enabled], "a.b", "gps0", "vessels.self") is enabled
        assert match_rule([disabled], "a.b", "gps0", "vessels.self") is None

    def test_source_filter_rejects_other_sources(self):
        pilot = rule(id="pilot", source="pypilot")
        assert match_rule([pilot], "steering.rudderAngle", "gps0", "vessels.self") is None
        assert match_rule([pilot], "steering.rudderAngle", "pypilot", "vessels.self") is pilot

    def test_exclusion_rejects_even_when_path_and_source_match(self):
        ais = rule(id="ais", context="vessels.*", excludeKeys="12345")
        context = "vessels.urn:mrn:imo:mmsi:000123450"
        assert match_rule([ais], "navigation.position", "ais", context) is None

    def test_no_rules(self):
        assert match_rule([], "navigation.position", "gps0", "vessels.self") is None
