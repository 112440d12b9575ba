"""
Background task authorization.

Decides whether a principal may create a QUERY or LIST background task for a
scope. Each scope has its own strategy; a strategy returns None when the
request is allowed and raises ForbiddenAccess or UnsupportedError otherwise.
The only side effects are store reads resolving LIST ids.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from curator.core.capabilities import (
    KNOWLEDGE_KNASKIMPORT,
    KNOWLEDGE_KNUPDATE,
    KNOWLEDGE_KNUPDATE_KNDELETE,
    SETTINGS_SETACCESSES,
    SETTINGS_SETLABELS,
    has_capability,
)
from curator.core.entity_types import (
    ENTITY_TYPE_DELETE_OPERATION,
    ENTITY_TYPE_NOTIFICATION,
    ENTITY_TYPE_VOCABULARY,
    are_parent_types_knowledge,
    get_parent_types,
)
from curator.core.errors import ForbiddenAccess, UnsupportedError
from curator.schemas.background_task import (
    DELETE_RESTRICTED_ACTIONS,
    BackgroundTaskActionType,
    BackgroundTaskScope,
    BackgroundTaskType,
)
from curator.schemas.filters import FilterGroup, parse_filter_group
from curator.schemas.principal import Principal
from curator.services.database import db_service

logger = logging.getLogger(__name__)

NOT_KNOWLEDGE_MESSAGE = "The targeted ids are not knowledge."
NOT_NOTIFICATIONS_MESSAGE = "The targeted ids are not notifications."
UNSUPPORTED_TYPE_MESSAGE = "A background task should be of type query or list."


@dataclass
class TaskRequest:
    """Normalized view of a task creation input."""
    actions: List[str]
    filters: Optional[FilterGroup] = None
    ids: List[str] = field(default_factory=list)

    @property
    def type_filter_values(self) -> List[str]:
        if self.filters is None:
            return []
        return self.filters.values_of("entity_type")

    @classmethod
    def from_input(cls, task_input: Any) -> "TaskRequest":
        actions = [
            action.type.value if hasattr(action, "type") else str(action)
            for action in getattr(task_input, "actions", None) or []
        ]
        return cls(
            actions=actions,
            filters=parse_filter_group(getattr(task_input, "filters", None)),
            ids=list(getattr(task_input, "ids", None) or []),
        )


ScopeStrategy = Callable[[Principal, TaskRequest, BackgroundTaskType], Awaitable[None]]


def _require(principal: Principal, capability: str) -> None:
    if not has_capability(principal, capability):
        raise ForbiddenAccess()


def _ancestry(entity_type: str, parent_types: Optional[List[str]] = None) -> List[str]:
    return [entity_type, *(parent_types if parent_types else get_parent_types(entity_type))]


def _check_knowledge_types(entity_types: List[str], ancestries: List[List[str]]) -> None:
    only_delete_operations = all(t == ENTITY_TYPE_DELETE_OPERATION for t in entity_types)
    targets_vocabulary = any(t == ENTITY_TYPE_VOCABULARY for t in entity_types)
    if targets_vocabulary or (not only_delete_operations and not are_parent_types_knowledge(ancestries)):
        raise ForbiddenAccess(NOT_KNOWLEDGE_MESSAGE)


async def check_settings_scope(principal: Principal, request: TaskRequest, task_type: BackgroundTaskType) -> None:
    _require(principal, SETTINGS_SETLABELS)


async def check_knowledge_scope(principal: Principal, request: TaskRequest, task_type: BackgroundTaskType) -> None:
    _require(principal, KNOWLEDGE_KNUPDATE)
    if any(action in DELETE_RESTRICTED_ACTIONS for action in request.actions):
        _require(principal, KNOWLEDGE_KNUPDATE_KNDELETE)

    if task_type == BackgroundTaskType.QUERY:
        types = request.type_filter_values
        _check_knowledge_types(types, [_ancestry(t) for t in types])
    elif task_type == BackgroundTaskType.LIST:
        objects = [await db_service.internal_load_by_id(principal, element_id) for element_id in request.ids]
        if any(o is None for o in objects):
            raise ForbiddenAccess(NOT_KNOWLEDGE_MESSAGE)
        types = [o.get("entity_type") for o in objects]
        _check_knowledge_types(types, [_ancestry(o.get("entity_type"), o.get("parent_types")) for o in objects])
    else:
        raise UnsupportedError(UNSUPPORTED_TYPE_MESSAGE)


async def check_user_scope(principal: Principal, request: TaskRequest, task_type: BackgroundTaskType) -> None:
    can_set_accesses = has_capability(principal, SETTINGS_SETACCESSES)

    if task_type == BackgroundTaskType.QUERY:
        type_filters = request.filters.filters_on("entity_type") if request.filters else []
        is_notifications = (
            len(type_filters) == 1
            and type_filters[0].values == [ENTITY_TYPE_NOTIFICATION]
        )
        if not is_notifications:
            raise ForbiddenAccess(NOT_NOTIFICATIONS_MESSAGE)
        user_filters = request.filters.filters_on("user_id")
        is_user_data = len(user_filters) > 0 and user_filters[0].values == [principal.id]
        if not (can_set_accesses or is_user_data):
            raise ForbiddenAccess()
    elif task_type == BackgroundTaskType.LIST:
        objects = [
            await db_service.store_load_by_id(principal, element_id, ENTITY_TYPE_NOTIFICATION)
            for element_id in request.ids
        ]
        if any(o is None for o in objects):
            raise ForbiddenAccess(NOT_NOTIFICATIONS_MESSAGE)
        owners = {o.get("user_id") for o in objects}
        is_user_data = owners == {principal.id}
        if not (can_set_accesses or is_user_data):
            raise ForbiddenAccess()
    else:
        raise UnsupportedError(UNSUPPORTED_TYPE_MESSAGE)


async def check_import_scope(principal: Principal, request: TaskRequest, task_type: BackgroundTaskType) -> None:
    _require(principal, KNOWLEDGE_KNASKIMPORT)
    # A delete must come with at least one other action on this scope
    if all(action == BackgroundTaskActionType.DELETE.value for action in request.actions):
        raise UnsupportedError("Background tasks of scope Import cannot contain only deletions.")
    # Targets are not checked: the import listing only returns files


SCOPE_STRATEGIES: Dict[str, ScopeStrategy] = {
    BackgroundTaskScope.SETTINGS.value: check_settings_scope,
    BackgroundTaskScope.KNOWLEDGE.value: check_knowledge_scope,
    BackgroundTaskScope.USER.value: check_user_scope,
    BackgroundTaskScope.IMPORT.value: check_import_scope,
}


async def check_action_validity(
    principal: Principal,
    task_input: Any,
    scope: Any,
    task_type: BackgroundTaskType,
) -> None:
    """
    Check that principal may create a task of task_type on scope.

    Raises:
        ForbiddenAccess: missing capability or targets outside the scope
        UnsupportedError: unknown scope, task type or action set
    """
    scope_value = scope.value if isinstance(scope, BackgroundTaskScope) else scope
    strategy = SCOPE_STRATEGIES.get(scope_value)
    if strategy is None:
        raise UnsupportedError("A background task should be of scope: SETTINGS, KNOWLEDGE, USER, IMPORT.")
    request = TaskRequest.from_input(task_input)
    try:
        await strategy(principal, request, task_type)
    except (ForbiddenAccess, UnsupportedError) as e:
        logger.info(
            f"Background task refused for {principal.id} "
            f"(scope={scope_value}, type={task_type.value}): {e.message}"
        )
        raise
