"""
Unit tests for row/document helpers and timestamp conversion.
"""

from datetime import date, datetime, timezone

import pytest

from dbaas.mergedoc.query.dialect import ClickHouseDialect
from dbaas.mergedoc.store.transform import (
    deep_merge,
    extract_title,
    parse_data,
    row_to_document,
    split_document,
    strip_sensitive_fields,
)
from dbaas.mergedoc.timestamps import to_iso, to_millis

JAN_1_2024 = 1704067200000


class TestTimestamps:
    """Tests for to_millis / to_iso."""

    @pytest.mark.parametrize(
        "value",
        [
            JAN_1_2024,
            float(JAN_1_2024),
            "1704067200000",
            "2024-01-01T00:00:00Z",
            "2024-01-01T01:00:00+01:00",
            "2024-01-01 00:00:00.000",
            datetime(2024, 1, 1, tzinfo=timezone.utc),
            datetime(2024, 1, 1),
            date(2024, 1, 1),
        ],
    )
    def test_to_millis(self, value):
        assert to_millis(value) == JAN_1_2024

    @pytest.mark.parametrize("value", [None, "", "soon", True, object()])
    def test_to_millis_rejects(self, value):
        assert to_millis(value) is None

    def test_to_iso(self):
        assert to_iso(JAN_1_2024 + 5) == "2024-01-01T00:00:00.005Z"
        assert to_iso(None) is None

    def test_clickhouse_insert_format_round_trips(self):
        rendered = ClickHouseDialect().timestamp_value(JAN_1_2024 + 42)
        assert rendered == "2024-01-01 00:00:00.042"
        assert to_millis(rendered) == JAN_1_2024 + 42


class TestDocuments:
    """Tests for payload helpers."""

    def test_parse_data(self):
        assert parse_data('{"a": 1}') == {"a": 1}
        assert parse_data({"a": 1}) == {"a": 1}
        assert parse_data(None) == {}
        assert parse_data("") == {}
        assert parse_data("[1, 2]") == {}

    def test_row_to_document(self):
        row = {
            "id": "d1",
            "data": '{"title": "Hi"}',
            "createdAt": JAN_1_2024,
            "updatedAt": "2024-01-01T00:00:01.000Z",
        }
        assert row_to_document(row) == {
            "id": "d1",
            "title": "Hi",
            "createdAt": "2024-01-01T00:00:00.000Z",
            "updatedAt": "2024-01-01T00:00:01.000Z",
        }

    def test_split_document(self):
        payload, created, updated = split_document(
            {"id": "x", "title": "t", "createdAt": 1, "updatedAt": 2}
        )
        assert payload == {"title": "t"}
        assert (created, updated) == (1, 2)

    def test_strip_sensitive_fields(self):
        data = {"email": "a@b.c", "password": "p", "confirm-password": "p"}
        assert strip_sensitive_fields(data) == {"email": "a@b.c"}

    def test_deep_merge(self):
        base = {"meta": {"a": 1, "b": {"c": 2}}, "tags": ["x"], "keep": True}
        patch = {"meta": {"b": {"d": 3}}, "tags": ["y"]}
        assert deep_merge(base, patch) == {
            "meta": {"a": 1, "b": {"c": 2, "d": 3}},
            "tags": ["y"],
            "keep": True,
        }
        assert base["meta"]["b"] == {"c": 2}


class TestTitle:
    """Tests for extract_title."""

    def test_title_field_wins(self):
        assert extract_title({"heading": "H", "title": "T"}, "heading", "id1") == "H"

    def test_title_field_stringified(self):
        assert extract_title({"number": 7}, "number", "id1") == "7"

    def test_fallback_order(self):
        assert extract_title({"name": "N", "email": "e"}, None, "id1") == "N"
        assert extract_title({"slug": "s"}, "missing", "id1") == "s"

    def test_non_string_fallbacks_skipped(self):
        assert extract_title({"title": 5, "label": "L"}, None, "id1") == "L"

    def test_defaults_to_id(self):
        assert extract_title({}, None, "id1") == "id1"
