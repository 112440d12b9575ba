"""
Filter groups used by retention rules and query background tasks.

A filter group is a recursive structure: a boolean ``mode`` joining leaf
filters and nested groups. Groups arrive serialized as JSON strings and are
validated here, at the boundary, before reaching the query adapter.
"""
import json
from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from curator.core.errors import UnsupportedError


class FilterMode(str, Enum):
    AND = "and"
    OR = "or"


class FilterOperator(str, Enum):
    EQ = "eq"
    NOT_EQ = "not_eq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    NIL = "nil"
    NOT_NIL = "not_nil"
    STARTS_WITH = "starts_with"
    CONTAINS = "contains"


class Filter(BaseModel):
    """Leaf predicate: ``key`` compared to ``values`` with ``operator``."""
    key: List[str]
    values: List[Any] = Field(default_factory=list)
    operator: FilterOperator = FilterOperator.EQ
    mode: FilterMode = FilterMode.OR

    @field_validator("key", mode="before")
    @classmethod
    def _key_as_list(cls, value: Union[str, List[str]]) -> List[str]:
        if isinstance(value, str):
            return [value]
        return value

    def targets(self, key: str) -> bool:
        return key in self.key


class FilterGroup(BaseModel):
    mode: FilterMode = FilterMode.AND
    filters: List[Filter] = Field(default_factory=list)
    filterGroups: List["FilterGroup"] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.filters and all(group.is_empty() for group in self.filterGroups)

    def filters_on(self, key: str) -> List[Filter]:
        """Top level filters targeting ``key``."""
        return [f for f in self.filters if f.targets(key)]

    def values_of(self, key: str) -> List[Any]:
        return [value for f in self.filters_on(key) for value in f.values]

    def to_json(self) -> str:
        return self.model_dump_json()


FilterGroup.model_rebuild()


def parse_filter_group(serialized: Optional[Union[str, dict]]) -> Optional[FilterGroup]:
    """Parse a serialized filter group; ``None`` or an empty string gives ``None``."""
    if serialized is None or serialized == "":
        return None
    try:
        raw = json.loads(serialized) if isinstance(serialized, str) else serialized
        if raw is None:
            return None
        return FilterGroup.model_validate(raw)
    except (ValueError, ValidationError) as e:
        raise UnsupportedError(f"Invalid filter group: {e}")


def add_filter(
    group: Optional[FilterGroup],
    key: str,
    values: List[Any],
    operator: FilterOperator = FilterOperator.EQ,
) -> FilterGroup:
    """Return a new group that ANDs ``group`` with one extra leaf filter."""
    extra = Filter(key=[key], values=values, operator=operator)
    if group is None or group.is_empty():
        return FilterGroup(mode=FilterMode.AND, filters=[extra])
    return FilterGroup(mode=FilterMode.AND, filters=[extra], filterGroups=[group])
