"""
Tests for the scope query adapter: filter rendering and pagination across tables.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from curator.core.errors import UnsupportedError
from curator.schemas.filters import parse_filter_group
from curator.services.query_adapter import (
    QueryAdapter,
    build_connection,
    decode_cursor,
    encode_cursor,
    group_expression,
)


def chained_query(rows, count):
    """Query mock where every builder call returns the query itself."""
    query = MagicMock()
    for method in ("select", "or_", "lt", "ilike", "order", "range"):
        getattr(query, method).return_value = query
    response = MagicMock()
    response.data = rows
    response.count = count
    query.execute.return_value = response
    return query


class TestGroupExpression:

    def test_single_leaf(self):
        group = parse_filter_group({"filters": [{"key": "name", "values": ["apt28"]}]})

        assert group_expression(group) == "name.eq.apt28"

    def test_entity_type_matches_ancestry(self):
        group = parse_filter_group({"filters": [{"key": "entity_type", "values": ["Container"]}]})

        assert group_expression(group) == "or(entity_type.eq.Container,parent_types.cs.{Container})"

    def test_nested_groups(self):
        group = parse_filter_group({
            "mode": "and",
            "filters": [{"key": "name", "values": ["a", "b"]}],
            "filterGroups": [{"mode": "or", "filters": [
                {"key": "confidence", "values": [50], "operator": "gte"},
                {"key": "description", "values": [], "operator": "nil"},
            ]}],
        })

        assert group_expression(group) == (
            "and(or(name.eq.a,name.eq.b),or(confidence.gte.50,description.is.null))"
        )

    def test_values_with_reserved_characters_are_quoted(self):
        group = parse_filter_group({"filters": [{"key": "name", "values": ["a,b"]}]})

        assert group_expression(group) == 'name.eq."a,b"'

    def test_empty_group(self):
        assert group_expression(parse_filter_group({"filters": []})) is None


class TestCursors:

    def test_round_trip(self):
        assert decode_cursor(encode_cursor(250)) == 250
        assert decode_cursor(None) == 0

    def test_invalid_cursor(self):
        with pytest.raises(UnsupportedError):
            decode_cursor("not-a-cursor")

    def test_build_connection_page_info(self):
        connection = build_connection([{"id": "a"}, {"id": "b"}], 0, 5)

        assert connection.page_info.has_next_page is True
        assert connection.page_info.global_count == 5
        assert decode_cursor(connection.page_info.end_cursor) == 2


class TestPaginate:

    @pytest.mark.asyncio
    async def test_sums_counts_and_fills_page_across_tables(self, admin_principal):
        objects = chained_query([{"id": "o1"}, {"id": "o2"}], 2)
        relationships = chained_query([{"id": "r1"}, {"id": "r2"}, {"id": "r3"}], 40)
        tables = {"knowledge_objects": objects, "knowledge_relationships": relationships}
        before = datetime(2024, 1, 1, tzinfo=timezone.utc)

        with patch("curator.services.query_adapter.db_service") as mock_db:
            mock_db.client.table.side_effect = lambda name: tables[name]
            connection = await QueryAdapter().paginate(admin_principal, first=4, before=before)

        assert [e.node["id"] for e in connection.edges] == ["o1", "o2", "r1", "r2"]
        assert connection.page_info.global_count == 42
        objects.lt.assert_called_once_with("updated_at", before.isoformat())
        relationships.range.assert_called_once_with(0, 1)

    @pytest.mark.asyncio
    async def test_filters_applied_as_or_expression(self, admin_principal):
        objects = chained_query([], 0)
        group = parse_filter_group({"filters": [{"key": "entity_type", "values": ["Report"]}]})

        with patch("curator.services.query_adapter.db_service") as mock_db:
            mock_db.client.table.return_value = objects
            await QueryAdapter().paginate(admin_principal, tables=["knowledge_objects"], filters=group)

        objects.or_.assert_called_once_with("or(entity_type.eq.Report,parent_types.cs.{Report})")

    @pytest.mark.asyncio
    async def test_count(self, admin_principal):
        objects = chained_query([{"id": "o1"}], 17)

        with patch("curator.services.query_adapter.db_service") as mock_db:
            mock_db.client.table.return_value = objects
            count = await QueryAdapter().count(admin_principal, tables=["knowledge_objects"], search="apt")

        assert count == 17
        objects.ilike.assert_called_once_with("name", "%apt%")
