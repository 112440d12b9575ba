"""
Retention Rule API Endpoints

Lets administrators manage retention rules, preview how many elements a rule
would purge, and inspect or trigger the retention manager.

Related:
- Executor: curator/services/retention_manager.py
- Rule store: curator/services/retention_rule_service.py
- Config: curator/core/config.py (RETENTION_*)
"""

from fastapi import APIRouter, HTTPException, status, Depends
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field
import logging

from curator.core.capabilities import SETTINGS
from curator.core.errors import ConfigurationError, UnsupportedError
from curator.core.rbac import require_capability
from curator.schemas.principal import Principal
from curator.schemas.retention import (
    RetentionRule,
    RetentionRuleCreate,
    RetentionRuleUpdate,
    RetentionScope,
    RetentionUnit,
)
from curator.services.manager_scheduler import get_managers_status, manager_scheduler
from curator.services.retention_manager import RETENTION_MANAGER_ID, retention_manager
from curator.services.retention_rule_service import retention_rule_service

router = APIRouter()
logger = logging.getLogger(__name__)


# ============================================================================
# Schemas
# ============================================================================

class RetentionRuleCheckRequest(BaseModel):
    """Rule parameters to preview before saving."""
    scope: RetentionScope = RetentionScope.KNOWLEDGE
    max_retention: int = Field(..., ge=1)
    retention_unit: RetentionUnit = RetentionUnit.DAYS
    filters: Optional[str] = None


class RetentionRuleCheckResponse(BaseModel):
    count: int = Field(
        ...,
        description="Number of elements the rule would currently delete",
        ge=0
    )


class RetentionRunResponse(BaseModel):
    executed: bool = Field(
        ...,
        description="False when another process held the retention lock"
    )
    status: Optional[Dict[str, Any]] = None


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/rules", response_model=List[RetentionRule])
async def list_retention_rules(
    principal: Principal = Depends(require_capability(SETTINGS))
):
    """List every retention rule with its last execution metadata."""
    try:
        return await retention_rule_service.find_all()
    except Exception as e:
        logger.error(f"Failed to list retention rules: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list retention rules: {str(e)}"
        )


@router.post("/rules", response_model=RetentionRule, status_code=status.HTTP_201_CREATED)
async def create_retention_rule(
    data: RetentionRuleCreate,
    principal: Principal = Depends(require_capability(SETTINGS))
):
    try:
        return await retention_rule_service.create_rule(principal, data)
    except UnsupportedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to create retention rule: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create retention rule: {str(e)}"
        )


@router.get("/rules/{rule_id}", response_model=RetentionRule)
async def get_retention_rule(
    rule_id: str,
    principal: Principal = Depends(require_capability(SETTINGS))
):
    rule = await retention_rule_service.get_rule(rule_id)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Retention rule not found"
        )
    return rule


@router.patch("/rules/{rule_id}", response_model=RetentionRule)
async def update_retention_rule(
    rule_id: str,
    data: RetentionRuleUpdate,
    principal: Principal = Depends(require_capability(SETTINGS))
):
    try:
        if await retention_rule_service.get_rule(rule_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Retention rule not found"
            )
        return await retention_rule_service.update_rule(principal, rule_id, data)
    except HTTPException:
        raise
    except UnsupportedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to update retention rule {rule_id}: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update retention rule: {str(e)}"
        )


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_retention_rule(
    rule_id: str,
    principal: Principal = Depends(require_capability(SETTINGS))
):
    deleted = await retention_rule_service.delete_rule(principal, rule_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Retention rule not found"
        )


@router.post("/rules/check", response_model=RetentionRuleCheckResponse)
async def check_retention_rule(
    data: RetentionRuleCheckRequest,
    principal: Principal = Depends(require_capability(SETTINGS))
):
    """
    Preview a rule: count the elements it would delete right now.

    Nothing is deleted. Elements protected by an ongoing upload or work are
    still counted, they are only skipped at execution time.
    """
    try:
        count = await retention_manager.check_rule(
            data.scope.value, data.max_retention, data.retention_unit, data.filters
        )
        return RetentionRuleCheckResponse(count=count)
    except (UnsupportedError, ConfigurationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Failed to check retention rule: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to check retention rule: {str(e)}"
        )


@router.get("/manager/status")
async def get_retention_manager_status(
    principal: Principal = Depends(require_capability(SETTINGS))
):
    """Status of the scheduled managers (enabled flags, last run, last error)."""
    return {"managers": get_managers_status()}


@router.post("/manager/run", response_model=RetentionRunResponse)
async def trigger_retention_manager(
    principal: Principal = Depends(require_capability(SETTINGS))
):
    """
    Run one retention cycle now, outside of the schedule.

    The cycle takes the same lock as the scheduled manager, so it is skipped
    if a scheduled execution is in progress anywhere.
    """
    logger.info(f"Retention manager run triggered manually by {principal.id}")
    executed = await manager_scheduler.run_once(RETENTION_MANAGER_ID)
    statuses = [s for s in get_managers_status() if s["id"] == RETENTION_MANAGER_ID]
    return RetentionRunResponse(executed=executed, status=statuses[0] if statuses else None)
