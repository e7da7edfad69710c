"""Tests for the ordered country resolution rules."""

import pytest

from fusion_engine.country_resolution import (
    IDENTITY_RULES, LOCATION_RULES, STRIKE_RULES, keyword_matches,
)


class TestResolutionOrder:

    def test_keyword_beats_coordinates(self, resolver):
        # Coordinates fall inside Russia, the title names Kyiv
        assert resolver.resolve(text="Protest in Kyiv", lat=55.0, lon=50.0) == "UA"

    def test_exact_name_from_dataset(self, resolver):
        assert resolver.resolve(text="Lesotho") == "LS"

    @pytest.mark.parametrize("raw, expected", [
        ("PL", "PL"),
        ("sdn", "SD"),
        ("UKR", "UA"),
    ])
    def test_code_rule(self, resolver, raw, expected):
        assert resolver.resolve(text=raw, code=raw) == expected

    @pytest.mark.parametrize("raw", ["NA", "XX", "QQ", "zz"])
    def test_code_rule_rejects_unknown_and_placeholder_codes(self, resolver, raw):
        assert resolver.resolve(code=raw) is None

    def test_code_rule_accepts_dataset_codes(self, resolver):
        assert resolver.resolve(code="ls") == "LS"

    def test_geometry_rule(self, resolver):
        assert resolver.resolve(lat=48.0, lon=30.0) == "UA"

    def test_bounds_fallback_without_polygon(self, resolver):
        assert resolver.resolve(lat=35.0, lon=100.0) == "CN"

    def test_strike_rules_use_strike_boxes(self, resolver):
        assert resolver.resolve(lat=26.0, lon=50.5, rules=STRIKE_RULES) == "BH"
        assert resolver.resolve(lat=30.0, lon=52.0, rules=STRIKE_RULES) == "IR"

    def test_location_rules_ignore_text(self, resolver):
        assert resolver.resolve(text="Ukraine", lat=55.0, lon=50.0, rules=LOCATION_RULES) == "RU"

    def test_identity_rules_ignore_coordinates(self, resolver):
        assert resolver.resolve(lat=48.0, lon=30.0, rules=IDENTITY_RULES) is None

    def test_unresolvable(self, resolver):
        assert resolver.resolve(text="Atlantis") is None


class TestTextAttribution:

    def test_keyword_matches_whole_words_only(self):
        assert keyword_matches("Parisian cafes") == []
        assert keyword_matches("Rally in Paris") == ["FR"]

    def test_resolve_all_in_text(self, resolver):
        assert resolver.resolve_all_in_text("Tensions rise between Ukraine and Russia") == ["RU", "UA"]

    def test_resolve_all_adds_scanned_names(self, resolver):
        assert resolver.resolve_all_in_text("Floods in Lesotho and France") == ["FR", "LS"]


@pytest.mark.parametrize("code, expected", [
    ("UA", "Ukraine"),
    ("LS", "Lesotho"),
    ("QQ", "QQ"),
])
def test_display_name(resolver, code, expected):
    assert resolver.display_name(code) == expected
