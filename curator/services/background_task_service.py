"""
Background task service: creation, lookup and progress bookkeeping.

Tasks are stored as internal objects (entity_type BackgroundTask) and executed
later by the task runtime, which reports progress through
update_task_progress / complete_task.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import NAMESPACE_URL, uuid4, uuid5

from curator.core.capabilities import (
    KNOWLEDGE_KNASKIMPORT,
    KNOWLEDGE_KNUPDATE,
    MEMBER_ACCESS_RIGHT_ADMIN,
    SETTINGS_SETACCESSES,
    SETTINGS_SETLABELS,
    has_any_capability,
)
from curator.core.entity_types import ENTITY_TYPE_BACKGROUND_TASK
from curator.core.errors import ForbiddenAccess, UnsupportedError
from curator.schemas.background_task import (
    BackgroundTaskScope,
    BackgroundTaskType,
    ListTaskCreate,
    QueryTaskCreate,
    TaskProgressUpdate,
)
from curator.schemas.filters import parse_filter_group
from curator.schemas.principal import Principal
from curator.services.audit_service import publish_user_action
from curator.services.database import (
    db_service,
    INTERNAL_OBJECTS_TABLE,
    READ_DATA_TABLES,
    READ_KNOWLEDGE_TABLES,
)
from curator.services.file_storage import IMPORT_GLOBAL_PATH, paginated_for_path_with_enrichment
from curator.services.query_adapter import query_adapter
from curator.services.task_authorization import check_action_validity

logger = logging.getLogger(__name__)

PROGRESS_UPDATE_ATTEMPTS = 5

# One authority per scope may manage the tasks of that scope
SCOPE_AUTHORITIES = {
    BackgroundTaskScope.SETTINGS.value: [SETTINGS_SETLABELS],
    BackgroundTaskScope.KNOWLEDGE.value: [KNOWLEDGE_KNUPDATE],
    BackgroundTaskScope.USER.value: [SETTINGS_SETACCESSES],
    BackgroundTaskScope.IMPORT.value: [KNOWLEDGE_KNASKIMPORT],
}

# Scopes where the creator becomes the admin member of the task
SCOPES_WITH_CREATOR_MEMBER = {
    BackgroundTaskScope.SETTINGS.value,
    BackgroundTaskScope.KNOWLEDGE.value,
    BackgroundTaskScope.USER.value,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _scope_value(scope: Any) -> Optional[str]:
    if scope is None:
        return None
    return scope.value if isinstance(scope, BackgroundTaskScope) else str(scope)


def generate_standard_id(entity_type: str, data: Any) -> str:
    """Deterministic id derived from the entity type and its input."""
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    canonical = json.dumps(data, sort_keys=True, default=str)
    return f"{entity_type.lower()}--{uuid5(NAMESPACE_URL, f'{entity_type}:{canonical}')}"


def authorized_members_for_task(principal: Principal, scope: Optional[str]) -> List[Dict[str, str]]:
    if scope in SCOPES_WITH_CREATOR_MEMBER:
        return [{"id": principal.id, "access_right": MEMBER_ACCESS_RIGHT_ADMIN}]
    return []


def authorized_authorities_for_task(scope: Optional[str]) -> List[str]:
    return list(SCOPE_AUTHORITIES.get(scope, []))


def create_default_task(
    principal: Principal,
    task_input: Any,
    task_type: BackgroundTaskType,
    task_expected_number: int,
    scope: Any = None,
) -> Dict[str, Any]:
    """
    Build a new background task record with zeroed progress.

    Access rights (authorized_members / authorized_authorities) are only
    attached when a scope is given, i.e. for user-created QUERY / LIST tasks.
    """
    task_id = str(uuid4())
    task: Dict[str, Any] = {
        "id": task_id,
        "internal_id": task_id,
        "standard_id": generate_standard_id(ENTITY_TYPE_BACKGROUND_TASK, task_input),
        "entity_type": ENTITY_TYPE_BACKGROUND_TASK,
        "initiator_id": principal.internal_id,
        "created_at": _now(),
        "completed": False,
        # Task related
        "type": task_type.value,
        "last_execution_date": None,
        "task_position": None,
        "task_processed_number": 0,
        "task_expected_number": task_expected_number,
        "errors": [],
    }
    scope_value = _scope_value(scope)
    if scope_value:
        task["scope"] = scope_value
        task["authorized_members"] = authorized_members_for_task(principal, scope_value)
        task["authorized_authorities"] = authorized_authorities_for_task(scope_value)
    return task


class BackgroundTaskService:
    """Service for creating and tracking background tasks"""

    @staticmethod
    async def _publish_and_index(principal: Principal, task: Dict[str, Any]) -> Dict[str, Any]:
        await publish_user_action(
            principal=principal,
            event_type="mutation",
            event_scope="create",
            event_access="extended",
            message="creates `background task`",
            context_data={"entity_type": ENTITY_TYPE_BACKGROUND_TASK, "input": task},
        )
        await db_service.index_internal_object(task)
        logger.info(
            f"Created background task {task['id']} "
            f"(type={task['type']}, scope={task.get('scope')}, expected={task['task_expected_number']})"
        )
        return task

    @staticmethod
    async def create_list_task(principal: Principal, task_input: ListTaskCreate) -> Dict[str, Any]:
        """
        Create a task applying actions to an explicit list of ids.

        Authorization runs first; a refusal raises before anything is
        audited or stored.
        """
        await check_action_validity(principal, task_input, task_input.scope, BackgroundTaskType.LIST)
        task = create_default_task(
            principal, task_input, BackgroundTaskType.LIST, len(task_input.ids), task_input.scope
        )
        list_task = {
            **task,
            "actions": [action.model_dump(mode="json") for action in task_input.actions],
            "task_ids": list(task_input.ids),
        }
        return await BackgroundTaskService._publish_and_index(principal, list_task)

    @staticmethod
    async def _count_query_targets(principal: Principal, task_input: QueryTaskCreate) -> int:
        scope = task_input.scope.value
        if scope == BackgroundTaskScope.IMPORT.value:
            files = await paginated_for_path_with_enrichment(principal, IMPORT_GLOBAL_PATH, first=1)
            return files.page_info.global_count
        tables = {
            BackgroundTaskScope.KNOWLEDGE.value: READ_KNOWLEDGE_TABLES,
            BackgroundTaskScope.USER.value: [INTERNAL_OBJECTS_TABLE],
            BackgroundTaskScope.SETTINGS.value: READ_DATA_TABLES,
        }[scope]
        return await query_adapter.count(
            principal,
            tables=tables,
            filters=parse_filter_group(task_input.filters),
            search=task_input.search,
        )

    @staticmethod
    async def create_query_task(principal: Principal, task_input: QueryTaskCreate) -> Dict[str, Any]:
        """Create a task whose targets are re-evaluated from a filter snapshot at execution."""
        await check_action_validity(principal, task_input, task_input.scope, BackgroundTaskType.QUERY)
        expected = await BackgroundTaskService._count_query_targets(principal, task_input)
        task = create_default_task(principal, task_input, BackgroundTaskType.QUERY, expected, task_input.scope)
        query_task = {
            **task,
            "actions": [action.model_dump(mode="json") for action in task_input.actions],
            "task_filters": task_input.filters,
            "task_search": task_input.search,
        }
        return await BackgroundTaskService._publish_and_index(principal, query_task)

    @staticmethod
    async def get_task(task_id: str) -> Optional[Dict[str, Any]]:
        """Get a task by ID"""
        rows = await db_service.find_internal_objects(ENTITY_TYPE_BACKGROUND_TASK, {"internal_id": task_id})
        return rows[0] if rows else None

    @staticmethod
    async def list_tasks(
        task_type: Optional[BackgroundTaskType] = None,
        completed: Optional[bool] = None,
        initiator_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List tasks, most recent first."""
        filters: Dict[str, Any] = {}
        if task_type is not None:
            filters["type"] = task_type.value
        if completed is not None:
            filters["completed"] = completed
        if initiator_id is not None:
            filters["initiator_id"] = initiator_id
        return await db_service.find_internal_objects(
            ENTITY_TYPE_BACKGROUND_TASK, filters, limit=limit, offset=offset
        )

    @staticmethod
    def can_manage_task(principal: Principal, task: Dict[str, Any]) -> bool:
        if task.get("initiator_id") in (principal.id, principal.internal_id):
            return True
        return has_any_capability(principal, task.get("authorized_authorities") or [])

    @staticmethod
    async def delete_task(principal: Principal, task_id: str) -> bool:
        """
        Delete a task.

        Returns:
            False if the task does not exist

        Raises:
            ForbiddenAccess: the principal neither created the task nor holds
            one of its authorized authorities
        """
        task = await BackgroundTaskService.get_task(task_id)
        if task is None:
            return False
        if not BackgroundTaskService.can_manage_task(principal, task):
            raise ForbiddenAccess()
        await db_service.delete_internal_object(task_id, ENTITY_TYPE_BACKGROUND_TASK)
        await publish_user_action(
            principal=principal,
            event_type="mutation",
            event_scope="delete",
            event_access="extended",
            message="deletes `background task`",
            context_data={"id": task_id, "entity_type": ENTITY_TYPE_BACKGROUND_TASK},
        )
        return True

    @staticmethod
    async def update_task_progress(actor: Principal, task_id: str, update: TaskProgressUpdate) -> Dict[str, Any]:
        """
        Record execution progress reported by the task runtime.

        Processed counts are added to the stored counter and errors appended,
        so partial failures never reset the progress already recorded. The
        write only applies if the row is unchanged since it was read; a
        concurrent report makes it re-read and try again.
        """
        for _ in range(PROGRESS_UPDATE_ATTEMPTS):
            task = await BackgroundTaskService.get_task(task_id)
            if task is None:
                raise ValueError(f"Background task {task_id} not found")
            if task.get("completed"):
                raise UnsupportedError(f"Background task {task_id} is already completed")

            patch: Dict[str, Any] = {
                "last_execution_date": _now(),
                "task_processed_number": (task.get("task_processed_number") or 0) + update.processed,
            }
            if update.position is not None:
                patch["task_position"] = update.position
            if update.errors:
                patch["errors"] = [*(task.get("errors") or []), *[e.model_dump(mode="json") for e in update.errors]]
            expected = {
                "completed": False,
                "task_processed_number": task.get("task_processed_number") or 0,
                "last_execution_date": task.get("last_execution_date"),
            }
            patched = await db_service.compare_and_patch(actor, task_id, ENTITY_TYPE_BACKGROUND_TASK, expected, patch)
            if patched is not None:
                return patched
            logger.debug(f"Background task {task_id} changed concurrently, retrying progress update")
        raise UnsupportedError(f"Background task {task_id} is being updated concurrently")

    @staticmethod
    async def complete_task(actor: Principal, task_id: str) -> Dict[str, Any]:
        patch = {"completed": True, "last_execution_date": _now()}
        completed = await db_service.patch_attribute(actor, task_id, ENTITY_TYPE_BACKGROUND_TASK, patch)
        logger.info(f"Background task {task_id} completed")
        return completed


background_task_service = BackgroundTaskService()
