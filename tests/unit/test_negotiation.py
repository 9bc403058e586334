"""
Unit tests for Accept header negotiation.
"""

import pytest

from httpkit.encoding.negotiation import MediaRange, negotiate_content_type, parse_accept


JSON = "application/json"
XML = "application/xml"
HTML = "text/html"
TEXT = "text/plain"


class TestParseAccept:

    def test_single_range(self):
        assert parse_accept("application/json") == [MediaRange("application", "json", 1.0)]

    def test_quality_values(self):
        ranges = parse_accept("text/html;q=0.9, application/*;q=0.8, */*;q=0.1")

        assert [(r.value, r.q) for r in ranges] == [
            ("text/html", 0.9),
            ("application/*", 0.8),
            ("*/*", 0.1),
        ]

    def test_other_params_ignored(self):
        ranges = parse_accept("text/html;level=1;q=0.5")

        assert ranges == [MediaRange("text", "html", 0.5)]

    @pytest.mark.parametrize("header", [
        "json",
        "/json",
        "application/",
        "*/json",
        "text/html;q=abc",
        "text/html;q=1.5",
        "text/html;q",
    ])
    def test_malformed_range_dropped(self, header):
        assert parse_accept(header) == []

    def test_malformed_range_keeps_rest(self):
        ranges = parse_accept("garbage, application/json;q=0.5,,")

        assert ranges == [MediaRange("application", "json", 0.5)]

    def test_empty(self):
        assert parse_accept(None) == []
        assert parse_accept("") == []


class TestNegotiateContentType:

    @pytest.mark.parametrize("accept", [None, "", "   "])
    def test_missing_header_gives_default(self, accept):
        assert negotiate_content_type(accept, [XML, JSON], JSON) == JSON

    def test_exact_match(self):
        assert negotiate_content_type("application/xml", [JSON, XML], JSON) == XML

    def test_higher_q_wins(self):
        accept = "application/json;q=0.5, application/xml;q=0.9"

        assert negotiate_content_type(accept, [JSON, XML], JSON) == XML

    def test_specificity_breaks_ties(self):
        accept = "*/*, application/xml"

        assert negotiate_content_type(accept, [JSON, XML], JSON) == XML

    def test_type_wildcard_beats_full_wildcard(self):
        accept = "*/*, text/*"

        assert negotiate_content_type(accept, [JSON, TEXT], JSON) == TEXT

    def test_offer_order_breaks_remaining_ties(self):
        assert negotiate_content_type("*/*", [XML, JSON], JSON) == XML
        assert negotiate_content_type("application/*", [JSON, XML], XML) == JSON

    def test_q_zero_excludes(self):
        accept = "application/xml;q=0, */*;q=0.1"

        assert negotiate_content_type(accept, [XML, JSON], JSON) == JSON

    def test_nothing_acceptable_gives_default(self):
        assert negotiate_content_type("image/png", [JSON, XML], JSON) == JSON

    def test_case_insensitive(self):
        assert negotiate_content_type("Application/XML", [JSON, XML], JSON) == XML

    def test_result_is_offer_or_default(self):
        result = negotiate_content_type("text/*", [JSON], "application/json")

        assert result == JSON
