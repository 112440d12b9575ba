from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from enum import Enum


class BackgroundTaskScope(str, Enum):
    SETTINGS = "SETTINGS"
    KNOWLEDGE = "KNOWLEDGE"
    USER = "USER"
    IMPORT = "IMPORT"


class BackgroundTaskType(str, Enum):
    QUERY = "QUERY"
    RULE = "RULE"
    LIST = "LIST"


class BackgroundTaskActionType(str, Enum):
    ADD = "ADD"
    REPLACE = "REPLACE"
    REMOVE = "REMOVE"
    MERGE = "MERGE"
    PROMOTE = "PROMOTE"
    ENRICHMENT = "ENRICHMENT"
    RULE_ELEMENT_RESCAN = "RULE_ELEMENT_RESCAN"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    COMPLETE_DELETE = "COMPLETE_DELETE"
    SHARE = "SHARE"
    UNSHARE = "UNSHARE"
    SHARE_MULTIPLE = "SHARE_MULTIPLE"
    UNSHARE_MULTIPLE = "UNSHARE_MULTIPLE"


DELETE_RESTRICTED_ACTIONS = {
    BackgroundTaskActionType.DELETE.value,
    BackgroundTaskActionType.RESTORE.value,
    BackgroundTaskActionType.COMPLETE_DELETE.value,
}


class BackgroundTaskAction(BaseModel):
    """One action to apply to every targeted element."""
    type: BackgroundTaskActionType
    context: Optional[Dict[str, Any]] = None  # field/values for editing actions


class ListTaskCreate(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    actions: List[BackgroundTaskAction] = Field(..., min_length=1)
    scope: BackgroundTaskScope


class QueryTaskCreate(BaseModel):
    filters: Optional[str] = None  # Serialized filter group
    search: Optional[str] = None
    actions: List[BackgroundTaskAction] = Field(..., min_length=1)
    scope: BackgroundTaskScope


class TaskError(BaseModel):
    id: Optional[str] = None
    timestamp: str
    message: str


class TaskProgressUpdate(BaseModel):
    processed: int = Field(0, ge=0)
    position: Optional[str] = None
    errors: List[TaskError] = Field(default_factory=list)
