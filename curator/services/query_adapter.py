"""
Scope Query Adapter

Translates a filter group into a PostgREST query against the knowledge
tables and returns a uniform paginated connection (edges + page info).
The file storage listing (files / workbenches) returns the same shape, so
callers never care which backend answered.
"""
import base64
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from curator.core.errors import UnsupportedError
from curator.schemas.filters import Filter, FilterGroup, FilterMode, FilterOperator
from curator.schemas.principal import Principal
from curator.services.database import db_service, READ_KNOWLEDGE_TABLES

logger = logging.getLogger(__name__)

# Filter keys that map to a differently named column
_COLUMN_ALIASES = {
    "entity_types": "entity_type",
    "ids": "internal_id",
}

_LEAF_OPERATORS = {
    FilterOperator.EQ: "eq",
    FilterOperator.NOT_EQ: "neq",
    FilterOperator.LT: "lt",
    FilterOperator.LTE: "lte",
    FilterOperator.GT: "gt",
    FilterOperator.GTE: "gte",
}


class PageInfo(BaseModel):
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None
    has_next_page: bool = False
    global_count: int = 0


class Edge(BaseModel):
    node: Dict[str, Any]
    cursor: str


class Connection(BaseModel):
    edges: List[Edge] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo)


def encode_cursor(offset: int) -> str:
    return base64.b64encode(str(offset).encode()).decode()


def decode_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        return int(base64.b64decode(cursor.encode()).decode())
    except ValueError:
        raise UnsupportedError(f"Invalid cursor {cursor}")


def build_connection(nodes: List[Dict[str, Any]], offset: int, global_count: int) -> Connection:
    edges = [Edge(node=node, cursor=encode_cursor(offset + i + 1)) for i, node in enumerate(nodes)]
    return Connection(
        edges=edges,
        page_info=PageInfo(
            start_cursor=edges[0].cursor if edges else None,
            end_cursor=edges[-1].cursor if edges else None,
            has_next_page=offset + len(edges) < global_count,
            global_count=global_count,
        ),
    )


def _format_value(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    text = str(value)
    if any(c in text for c in ',.:()"'):
        escaped = text.replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _leaf_expressions(f: Filter) -> List[str]:
    """PostgREST expressions for one leaf filter, one per key."""
    expressions = []
    for key in f.key:
        column = _COLUMN_ALIASES.get(key, key)
        if f.operator == FilterOperator.NIL:
            expressions.append(f"{column}.is.null")
            continue
        if f.operator == FilterOperator.NOT_NIL:
            expressions.append(f"{column}.not.is.null")
            continue
        parts = []
        for value in f.values:
            formatted = _format_value(value)
            if f.operator == FilterOperator.STARTS_WITH:
                parts.append(f"{column}.like.{formatted}*")
            elif f.operator == FilterOperator.CONTAINS:
                parts.append(f"{column}.ilike.*{formatted}*")
            elif column == "entity_type" and f.operator == FilterOperator.EQ:
                # Abstract types match through the stored ancestry
                parts.append(f"or(entity_type.eq.{formatted},parent_types.cs.{{{formatted}}})")
            else:
                parts.append(f"{column}.{_LEAF_OPERATORS[f.operator]}.{formatted}")
        if not parts:
            continue
        if len(parts) == 1:
            expressions.append(parts[0])
        else:
            joiner = "and" if f.mode == FilterMode.AND else "or"
            expressions.append(f"{joiner}({','.join(parts)})")
    return expressions


def group_expression(group: FilterGroup) -> Optional[str]:
    """Render a whole filter group as a single PostgREST logic expression."""
    parts: List[str] = []
    for f in group.filters:
        parts.extend(_leaf_expressions(f))
    for sub_group in group.filterGroups:
        expression = group_expression(sub_group)
        if expression:
            parts.append(expression)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return f"{group.mode.value}({','.join(parts)})"


def apply_filter_group(query, group: Optional[FilterGroup]):
    if group is None or group.is_empty():
        return query
    expression = group_expression(group)
    if expression is None:
        return query
    # PostgREST only exposes a top-level "or"; a single-branch OR is the
    # expression itself, nested and/or groups included.
    return query.or_(expression)


class QueryAdapter:
    """Paginated reads over the knowledge store."""

    async def paginate(
        self,
        principal: Principal,
        tables: Optional[List[str]] = None,
        filters: Optional[FilterGroup] = None,
        first: int = 100,
        after: Optional[str] = None,
        before: Optional[datetime] = None,
        search: Optional[str] = None,
        order_by: str = "updated_at",
    ) -> Connection:
        """
        Fetch one page of elements.

        Args:
            principal: Actor the read is made for
            tables: Tables to search (defaults to the knowledge tables)
            filters: Filter group to apply
            first: Page size
            after: Cursor returned by a previous page
            before: Only elements last updated strictly before this date
            search: Optional full text search

        Returns:
            Connection with edges and page info; global_count is the total
            number of matching elements across every table.
        """
        offset = decode_cursor(after)
        nodes: List[Dict[str, Any]] = []
        global_count = 0
        remaining = first
        skip = offset
        for table in tables or READ_KNOWLEDGE_TABLES:
            query = db_service.client.table(table).select("*", count="exact")
            query = apply_filter_group(query, filters)
            if before is not None:
                query = query.lt("updated_at", before.isoformat())
            if search:
                query = query.ilike("name", f"%{search}%")
            count_response = query.order(order_by).range(skip, skip + max(remaining, 1) - 1).execute()
            table_count = count_response.count or 0
            global_count += table_count
            if remaining > 0:
                rows = count_response.data or []
                nodes.extend(rows[:remaining])
                remaining -= len(rows[:remaining])
            skip = max(0, skip - table_count)
        logger.debug(
            f"Paginated {len(nodes)}/{global_count} elements for {principal.name} "
            f"(tables={tables or READ_KNOWLEDGE_TABLES})"
        )
        return build_connection(nodes, offset, global_count)

    async def count(
        self,
        principal: Principal,
        tables: Optional[List[str]] = None,
        filters: Optional[FilterGroup] = None,
        search: Optional[str] = None,
    ) -> int:
        result = await self.paginate(principal, tables=tables, filters=filters, first=1, search=search)
        return result.page_info.global_count


query_adapter = QueryAdapter()
