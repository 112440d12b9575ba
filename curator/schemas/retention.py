from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum


class RetentionScope(str, Enum):
    KNOWLEDGE = "knowledge"
    FILE = "file"
    WORKBENCH = "workbench"


class RetentionUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class RetentionRule(BaseModel):
    id: str
    name: str
    scope: str = RetentionScope.KNOWLEDGE.value
    max_retention: int
    retention_unit: Optional[RetentionUnit] = RetentionUnit.DAYS
    filters: Optional[str] = None  # Serialized filter group
    last_execution_date: Optional[datetime] = None
    remaining_count: Optional[int] = None
    last_deleted_count: Optional[int] = None


class RetentionRuleCreate(BaseModel):
    name: str
    scope: RetentionScope = RetentionScope.KNOWLEDGE
    max_retention: int = Field(..., ge=1)
    retention_unit: RetentionUnit = RetentionUnit.DAYS
    filters: Optional[str] = None


class RetentionRuleUpdate(BaseModel):
    name: Optional[str] = None
    max_retention: Optional[int] = Field(None, ge=1)
    retention_unit: Optional[RetentionUnit] = None
    filters: Optional[str] = None


class ElementDeletionFailure(BaseModel):
    id: str
    error: str


class RuleExecutionResult(BaseModel):
    """Outcome of one rule execution (one batch)."""
    rule_id: str
    rule_name: str
    scope: str
    before: datetime
    remaining_count: int = 0
    fetched_count: int = 0
    deleted_count: int = 0
    failures: List[ElementDeletionFailure] = Field(default_factory=list)
    aborted: bool = False

    def to_patch(self, execution_date: datetime) -> Dict[str, Any]:
        return {
            "last_execution_date": execution_date.isoformat(),
            "remaining_count": self.remaining_count,
            "last_deleted_count": self.deleted_count,
        }
