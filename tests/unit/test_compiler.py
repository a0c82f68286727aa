"""
Unit tests for the filter compiler.

Tests cover:
- SQL rendering for every operator (ClickHouse and SQLite dialects)
- Parameter binding and typing
- Identifier handling (columns, payload paths, rejected fields)
- Scoping predicates and the latest-row projection
"""

import math
from datetime import datetime, timezone

import pytest

from dbaas.mergedoc.query.compiler import ALWAYS_FALSE, ALWAYS_TRUE, QueryCompiler, combine_where
from dbaas.mergedoc.query.dialect import SQLiteDialect, get_dialect
from dbaas.mergedoc.query.fields import EVENT_FIELDS
from dbaas.mergedoc.store.projection import document_projection, edge_projection


class TestClickHouseCompilation:
    """Tests for QueryCompiler with the default ClickHouse dialect."""

    @pytest.fixture
    def qb(self):
        return QueryCompiler()

    def test_equals_payload(self, qb):
        assert qb.compile({"title": {"equals": "Hello"}}) == "data.title = {p0:String}"
        assert qb.get_params() == {"p0": "Hello"}

    def test_equals_null(self, qb):
        assert qb.compile({"title": {"equals": None}}) == "data.title IS NULL"
        assert qb.get_params() == {}

    def test_not_equals_payload_matches_missing(self, qb):
        sql = qb.compile({"status": {"not_equals": "draft"}})
        assert sql == "(data.status IS NULL OR data.status != {p0:String})"

    def test_not_equals_column(self, qb):
        assert qb.compile({"id": {"not_equals": "abc"}}) == "id != {p0:String}"

    def test_not_equals_null(self, qb):
        assert qb.compile({"status": {"not_equals": None}}) == "data.status IS NOT NULL"

    def test_in(self, qb):
        sql = qb.compile({"views": {"in": [1, 2]}})
        assert sql == "data.views IN ({p0:Int64}, {p1:Int64})"
        assert qb.get_params() == {"p0": 1, "p1": 2}

    def test_empty_in_matches_nothing(self, qb):
        assert qb.compile({"views": {"in": []}}) == ALWAYS_FALSE

    def test_empty_not_in_matches_everything(self, qb):
        assert qb.compile({"views": {"not_in": []}}) == ALWAYS_TRUE

    def test_unknown_operator_matches_everything(self, qb):
        assert qb.compile({"views": {"between": [1, 2]}}) == ALWAYS_TRUE

    def test_bool_binds_before_int(self, qb):
        assert qb.compile({"published": {"equals": True}}) == "data.published = {p0:UInt8}"
        assert qb.get_params() == {"p0": 1}

    def test_float_and_non_finite(self, qb):
        assert qb.compile({"score": {"greater_than": 1.5}}) == "data.score > {p0:Float64}"
        assert qb.compile({"score": {"equals": math.nan}}) == "data.score = NULL"
        assert qb.get_params()["p1"] is None

    def test_timestamp_column_range(self, qb):
        sql = qb.compile({"createdAt": {"greater_than": "2024-01-01T00:00:00Z"}})
        assert sql == "createdAt > fromUnixTimestamp64Milli({p0:Int64})"
        assert qb.get_params() == {"p0": 1704067200000}

    def test_timestamp_column_garbage_fails_open(self, qb):
        assert qb.compile({"updatedAt": {"less_than": "yesterday"}}) == ALWAYS_TRUE

    def test_datetime_value(self, qb):
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
        sql = qb.compile({"publishedOn": {"less_than": moment}})
        assert sql == "data.publishedOn < fromUnixTimestamp64Milli({p0:Int64})"
        assert qb.get_params() == {"p0": 1704067200000}

    def test_like_and_contains(self, qb):
        assert qb.compile({"title": {"like": "hel"}}) == "data.title ILIKE concat('%', {p0:String}, '%')"
        assert (
            qb.compile({"title": {"contains": "LL"}})
            == "position(lower(toString(data.title)), lower({p1:String})) > 0"
        )

    def test_exists(self, qb):
        assert qb.compile({"slug": {"exists": True}}) == "data.slug IS NOT NULL"
        assert qb.compile({"slug": {"exists": False}}) == "data.slug IS NULL"

    def test_all(self, qb):
        sql = qb.compile({"tags": {"all": ["a", "b"]}})
        assert sql == "(has(data.tags, {p0:String}) AND has(data.tags, {p1:String}))"

    def test_or(self, qb):
        sql = qb.compile({"or": [{"a": {"equals": 1}}, {"b": {"equals": 2}}]})
        assert sql == "(data.a = {p0:Int64} OR data.b = {p1:Int64})"

    def test_implicit_and(self, qb):
        sql = qb.compile({"a": {"equals": 1}, "b": {"in": []}})
        assert sql == "(data.a = {p0:Int64} AND 1=0)"

    def test_nested_path(self, qb):
        assert qb.compile({"meta": {"author": {"equals": "x"}}}) == "data.meta.author = {p0:String}"

    def test_version_prefix_reads_payload(self, qb):
        assert qb.compile({"version.title": {"equals": "x"}}) == "data.title = {p0:String}"

    def test_injection_in_field_name_is_stripped(self, qb):
        sql = qb.compile({"title') OR 1=1 --": {"equals": "x"}})
        assert sql == "data.titleOR11 = {p0:String}"

    def test_unaddressable_field_fails_open(self, qb):
        assert qb.compile({"'; --": {"equals": "x"}}) == ALWAYS_TRUE

    @pytest.mark.parametrize("field", ["..", "a..b", ".title", "title.", "tags[", "tags]", "tags[x]", "version."])
    def test_malformed_paths_fail_open(self, qb, field):
        assert qb.compile({field: {"equals": 1}}) == ALWAYS_TRUE
        assert qb.get_params() == {}

    def test_indexed_path(self, qb):
        assert qb.compile({"tags[0].name": {"equals": "x"}}) == "data.tags[0].name = {p0:String}"

    def test_timestamp_column_equality(self, qb):
        sql = qb.compile({"createdAt": {"equals": "2024-01-01T00:00:00.000Z"}})
        assert sql == "createdAt = fromUnixTimestamp64Milli({p0:Int64})"
        assert qb.get_params() == {"p0": 1704067200000}

    def test_timestamp_column_membership(self, qb):
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
        sql = qb.compile({"updatedAt": {"not_in": [moment, "2024-01-01T00:00:00.001Z"]}})
        assert sql == (
            "updatedAt NOT IN (fromUnixTimestamp64Milli({p0:Int64}), "
            "fromUnixTimestamp64Milli({p1:Int64}))"
        )
        assert qb.get_params() == {"p0": 1704067200000, "p1": 1704067200001}

    def test_timestamp_column_bad_operand_fails_open(self, qb):
        assert qb.compile({"deletedAt": {"not_equals": "soon"}}) == ALWAYS_TRUE
        assert qb.compile({"v": {"in": [1, "never"]}}) == ALWAYS_TRUE
        assert qb.get_params() == {}

    def test_near(self, qb):
        sql = qb.compile({"loc": {"near": [10, 20, 1000]}})
        distance = (
            "greatCircleDistance(CAST(data.loc, 'Array(Float64)')[1], "
            "CAST(data.loc, 'Array(Float64)')[2], {p0:Float64}, {p1:Float64})"
        )
        assert sql == f"{distance} <= {{p2:Float64}}"
        assert qb.get_params() == {"p0": 10.0, "p1": 20.0, "p2": 1000.0}

    def test_near_without_distances(self, qb):
        assert qb.compile({"loc": {"near": [10, 20]}}) == "data.loc IS NOT NULL"

    def test_within(self, qb):
        ring = [[0, 0], [1, 0], [1, 1]]
        sql = qb.compile({"loc": {"within": {"type": "Polygon", "coordinates": [ring]}}})
        assert sql.startswith("pointInPolygon((CAST(data.loc, 'Array(Float64)')[1], ")
        assert "[({p0:Float64}, {p1:Float64}), ({p2:Float64}, {p3:Float64})" in sql

    def test_intersects_point(self, qb):
        sql = qb.compile({"loc": {"intersects": {"type": "Point", "coordinates": [3, 4]}}})
        assert sql == (
            "(CAST(data.loc, 'Array(Float64)')[1] = {p0:Float64} "
            "AND CAST(data.loc, 'Array(Float64)')[2] = {p1:Float64})"
        )

    def test_compile_nothing(self, qb):
        assert qb.compile(None) == ""
        assert qb.compile({}) == ""


class TestScoping:
    """Tests for base predicates and parameter naming."""

    def test_build_base_where(self):
        qb = QueryCompiler()
        base = qb.build_base_where("site", "posts")
        extra = qb.compile({"title": {"equals": "Hello"}})

        assert combine_where(base, extra) == (
            "ns = {ns:String} AND type = {type:String} AND (data.title = {p0:String})"
        )
        assert qb.get_params() == {"ns": "site", "type": "posts", "p0": "Hello"}

    def test_combine_where_without_extra(self):
        assert combine_where("ns = 1", "") == "ns = 1"

    def test_params_are_copied(self):
        qb = QueryCompiler()
        qb.add_param("x")
        params = qb.get_params()
        params["p0"] = "changed"
        assert qb.get_params() == {"p0": "x"}

    def test_event_fields_have_no_payload(self):
        qb = QueryCompiler(fields=EVENT_FIELDS)
        assert qb.compile({"type": {"equals": "login"}}) == "type = {p0:String}"
        assert qb.compile({"whatever": {"equals": 1}}) == ALWAYS_TRUE


class TestSQLiteCompilation:
    """Tests for the SQLite dialect."""

    @pytest.fixture
    def qb(self):
        return QueryCompiler(SQLiteDialect())

    def test_placeholders_and_paths(self, qb):
        assert qb.compile({"title": {"equals": "x"}}) == "json_extract(data, '$.title') = :p0"

    def test_timestamp_range(self, qb):
        assert qb.compile({"createdAt": {"greater_than": 5}}) == "createdAt > :p0"

    def test_timestamp_equality_binds_millis(self, qb):
        assert qb.compile({"createdAt": {"equals": "2024-01-01T00:00:00Z"}}) == "createdAt = :p0"
        assert qb.get_params() == {"p0": 1704067200000}

    def test_empty_path_segment_fails_open(self, qb):
        assert qb.compile({"a..b": {"equals": 1}}) == ALWAYS_TRUE

    def test_like(self, qb):
        assert qb.compile({"title": {"like": "x"}}) == "json_extract(data, '$.title') LIKE '%' || :p0 || '%'"

    def test_all(self, qb):
        sql = qb.compile({"tags": {"all": ["a"]}})
        assert sql == (
            "(EXISTS (SELECT 1 FROM json_each(json_extract(data, '$.tags')) "
            "WHERE json_each.value = :p0))"
        )

    def test_within_binds_ring_as_json(self, qb):
        ring = [[0, 0], [1, 0], [1, 1]]
        sql = qb.compile({"loc": {"within": {"type": "Polygon", "coordinates": [ring]}}})
        assert sql == "mergedoc_point_in_polygon(json_extract(data, '$.loc'), :p0)"
        assert qb.get_params() == {"p0": "[[0.0, 0.0], [1.0, 0.0], [1.0, 1.0]]"}

    def test_get_dialect(self):
        assert get_dialect("sqlite").name == "sqlite"
        with pytest.raises(ValueError):
            get_dialect("postgres")


class TestLatestProjection:
    """Tests for the rank-and-filter SQL shape."""

    def test_select_shape(self):
        projection = document_projection("docs")
        sql = projection.select("ns = {ns:String}", "data.a = {p0:Int64}", suffix="LIMIT 1")

        assert sql.startswith("SELECT ns, type, id, v, title, data, createdAt")
        assert "row_number() OVER (PARTITION BY ns, type, id ORDER BY v DESC) AS _rn" in sql
        assert "FROM docs WHERE ns = {ns:String}) AS ranked" in sql
        assert sql.endswith(
            "WHERE _rn = 1 AND deletedAt IS NULL AND (data.a = {p0:Int64}) LIMIT 1"
        )
        assert "FINAL" not in sql

    def test_caller_filter_applied_after_ranking(self):
        projection = document_projection("docs")
        sql = projection.select("ns = {ns:String}", "data.a = {p0:Int64}")
        inner, outer = sql.split(") AS ranked")
        assert "data.a" not in inner
        assert "data.a" in outer

    def test_include_tombstones(self):
        sql = document_projection("docs").select("1=1", live_only=False)
        assert sql.endswith("WHERE _rn = 1")

    def test_count(self):
        sql = edge_projection("docs_relationships").count("ns = 'x'", expression="DISTINCT fromId")
        assert sql.startswith("SELECT count(DISTINCT fromId) AS total FROM (SELECT ns, fromType")
        assert "PARTITION BY ns, fromType, fromId, fromField, toType, toId, position, locale" in sql
