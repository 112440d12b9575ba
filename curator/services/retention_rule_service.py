"""
Retention rule configuration store.

Rules are internal objects (entity_type RetentionRule). Administrators manage
them through the retention API; the retention manager only reads them and
patches their execution metadata.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from curator.core.entity_types import ENTITY_TYPE_RETENTION_RULE
from curator.schemas.filters import parse_filter_group
from curator.schemas.principal import Principal
from curator.schemas.retention import RetentionRule, RetentionRuleCreate, RetentionRuleUpdate
from curator.services.audit_service import publish_user_action
from curator.services.database import db_service

logger = logging.getLogger(__name__)


class RetentionRuleService:
    """Service for managing retention rules"""

    @staticmethod
    async def find_all() -> List[RetentionRule]:
        rows = await db_service.find_internal_objects(ENTITY_TYPE_RETENTION_RULE)
        return [RetentionRule.model_validate(row) for row in rows]

    @staticmethod
    async def get_rule(rule_id: str) -> Optional[RetentionRule]:
        rows = await db_service.find_internal_objects(ENTITY_TYPE_RETENTION_RULE, {"internal_id": rule_id})
        return RetentionRule.model_validate(rows[0]) if rows else None

    @staticmethod
    async def create_rule(principal: Principal, data: RetentionRuleCreate) -> RetentionRule:
        # Reject malformed filters before storing them
        parse_filter_group(data.filters)
        rule_id = str(uuid4())
        record: Dict[str, Any] = {
            "id": rule_id,
            "internal_id": rule_id,
            "entity_type": ENTITY_TYPE_RETENTION_RULE,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "name": data.name,
            "scope": data.scope.value,
            "max_retention": data.max_retention,
            "retention_unit": data.retention_unit.value,
            "filters": data.filters,
            "last_execution_date": None,
            "remaining_count": None,
            "last_deleted_count": None,
        }
        await publish_user_action(
            principal=principal,
            event_type="mutation",
            event_scope="create",
            event_access="administration",
            message=f"creates retention rule `{data.name}`",
            context_data={"id": rule_id, "entity_type": ENTITY_TYPE_RETENTION_RULE, "input": record},
        )
        created = await db_service.index_internal_object(record)
        logger.info(f"Created retention rule {rule_id} ({data.name}, scope={data.scope.value})")
        return RetentionRule.model_validate(created)

    @staticmethod
    async def update_rule(principal: Principal, rule_id: str, data: RetentionRuleUpdate) -> RetentionRule:
        patch = data.model_dump(exclude_unset=True, mode="json")
        if "filters" in patch:
            parse_filter_group(patch["filters"])
        updated = await db_service.patch_attribute(principal, rule_id, ENTITY_TYPE_RETENTION_RULE, patch)
        await publish_user_action(
            principal=principal,
            event_type="mutation",
            event_scope="update",
            event_access="administration",
            message=f"updates retention rule `{updated.get('name')}`",
            context_data={"id": rule_id, "entity_type": ENTITY_TYPE_RETENTION_RULE, "input": patch},
        )
        return RetentionRule.model_validate(updated)

    @staticmethod
    async def delete_rule(principal: Principal, rule_id: str) -> bool:
        rule = await RetentionRuleService.get_rule(rule_id)
        if rule is None:
            return False
        await db_service.delete_internal_object(rule_id, ENTITY_TYPE_RETENTION_RULE)
        await publish_user_action(
            principal=principal,
            event_type="mutation",
            event_scope="delete",
            event_access="administration",
            message=f"deletes retention rule `{rule.name}`",
            context_data={"id": rule_id, "entity_type": ENTITY_TYPE_RETENTION_RULE},
        )
        return True


retention_rule_service = RetentionRuleService()
