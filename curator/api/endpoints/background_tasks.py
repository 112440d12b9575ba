"""
Background Task API Endpoints

Creation of QUERY / LIST background tasks, plus lookup, deletion and the
progress reporting used by the task runtime.
"""
from fastapi import APIRouter, HTTPException, status, Depends, Query
from typing import Optional, Dict, Any
import logging

from curator.core.capabilities import CONNECTORAPI
from curator.core.errors import ForbiddenAccess, UnsupportedError
from curator.core.rbac import require_capability
from curator.schemas.background_task import (
    BackgroundTaskType,
    ListTaskCreate,
    QueryTaskCreate,
    TaskProgressUpdate,
)
from curator.schemas.principal import Principal
from curator.services.auth_service import get_current_user
from curator.services.background_task_service import background_task_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _forbidden(e: ForbiddenAccess) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)


def _unsupported(e: UnsupportedError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.post("/list", status_code=status.HTTP_201_CREATED)
async def create_list_task(
    data: ListTaskCreate,
    principal: Principal = Depends(get_current_user)
) -> Dict[str, Any]:
    """Create a background task applying actions to an explicit list of ids."""
    try:
        return await background_task_service.create_list_task(principal, data)
    except ForbiddenAccess as e:
        raise _forbidden(e)
    except UnsupportedError as e:
        raise _unsupported(e)
    except Exception as e:
        logger.error(f"Failed to create list task: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create list task: {str(e)}"
        )


@router.post("/query", status_code=status.HTTP_201_CREATED)
async def create_query_task(
    data: QueryTaskCreate,
    principal: Principal = Depends(get_current_user)
) -> Dict[str, Any]:
    """Create a background task targeting every element matched by a filter."""
    try:
        return await background_task_service.create_query_task(principal, data)
    except ForbiddenAccess as e:
        raise _forbidden(e)
    except UnsupportedError as e:
        raise _unsupported(e)
    except Exception as e:
        logger.error(f"Failed to create query task: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create query task: {str(e)}"
        )


@router.get("/")
async def list_tasks(
    task_type: Optional[BackgroundTaskType] = Query(None, alias="type"),
    completed: Optional[bool] = None,
    mine: bool = False,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_user)
):
    try:
        tasks = await background_task_service.list_tasks(
            task_type=task_type,
            completed=completed,
            initiator_id=principal.internal_id if mine else None,
            limit=limit,
            offset=offset
        )
        return [t for t in tasks if background_task_service.can_manage_task(principal, t)]
    except Exception as e:
        logger.error(f"Failed to list background tasks: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list background tasks: {str(e)}"
        )


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    principal: Principal = Depends(get_current_user)
):
    task = await background_task_service.get_task(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Background task not found"
        )
    if not background_task_service.can_manage_task(principal, task):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to do this."
        )
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    principal: Principal = Depends(get_current_user)
):
    try:
        deleted = await background_task_service.delete_task(principal, task_id)
    except ForbiddenAccess as e:
        raise _forbidden(e)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Background task not found"
        )


@router.post("/{task_id}/progress")
async def report_task_progress(
    task_id: str,
    update: TaskProgressUpdate,
    principal: Principal = Depends(require_capability(CONNECTORAPI))
):
    """Progress report from the task runtime (processed count, cursor, errors)."""
    task = await background_task_service.get_task(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Background task not found"
        )
    try:
        return await background_task_service.update_task_progress(principal, task_id, update)
    except UnsupportedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.post("/{task_id}/complete")
async def complete_task(
    task_id: str,
    principal: Principal = Depends(require_capability(CONNECTORAPI))
):
    task = await background_task_service.get_task(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Background task not found"
        )
    return await background_task_service.complete_task(principal, task_id)
