"""
Retention Manager

Purges aged data according to the administrator-defined retention rules.

Every tick of the manager (see manager_scheduler) loads the retention rules
and, rule after rule:
1. computes the age cutoff from max_retention / retention_unit
2. fetches one batch of candidates older than the cutoff for the rule scope
3. drops elements still being uploaded or processed by an import work
4. deletes each remaining element (failures are recorded, not fatal)
5. patches the rule with its execution metadata

Only one batch is processed per rule and per tick; remaining_count tells
operators how much backlog is left.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from curator.core.config import settings
from curator.core.entity_types import ENTITY_TYPE_RETENTION_RULE
from curator.core.errors import ConfigurationError
from curator.schemas.filters import parse_filter_group
from curator.schemas.principal import RETENTION_MANAGER_USER
from curator.schemas.retention import (
    ElementDeletionFailure,
    RetentionRule,
    RetentionScope,
    RetentionUnit,
    RuleExecutionResult,
)
from curator.services.database import db_service, READ_KNOWLEDGE_TABLES
from curator.services.file_storage import (
    IMPORT_GLOBAL_PATH,
    IMPORT_PENDING_PATH,
    delete_file,
    paginated_for_path_with_enrichment,
)
from curator.services.lock_service import LockHandle
from curator.services.manager_scheduler import ManagerDefinition, register_manager
from curator.services.query_adapter import Connection, query_adapter
from curator.services.retention_rule_service import retention_rule_service

logger = logging.getLogger(__name__)

RETENTION_MANAGER_ID = "RETENTION_MANAGER"
COMPLETE_STATUS = "complete"

_UNIT_DELTAS = {
    RetentionUnit.MINUTES: lambda n: relativedelta(minutes=n),
    RetentionUnit.HOURS: lambda n: relativedelta(hours=n),
    RetentionUnit.DAYS: lambda n: relativedelta(days=n),
    RetentionUnit.WEEKS: lambda n: relativedelta(weeks=n),
    RetentionUnit.MONTHS: lambda n: relativedelta(months=n),
    RetentionUnit.YEARS: lambda n: relativedelta(years=n),
}


def compute_before(max_retention: int, unit: Optional[RetentionUnit], now: Optional[datetime] = None) -> datetime:
    """Cutoff date: elements last modified before it are expired."""
    now = now or datetime.now(timezone.utc)
    delta = _UNIT_DELTAS[unit or RetentionUnit.DAYS](max_retention)
    return now - delta


def is_element_deletable(node: dict) -> bool:
    """Elements still uploading or with an unfinished work are protected."""
    upload_status = node.get("uploadStatus")
    if upload_status is not None and upload_status != COMPLETE_STATUS:
        return False
    return all((work or {}).get("status") == COMPLETE_STATUS for work in node.get("works") or [])


class RetentionManager:
    """Executes retention rules, one batch per rule per call."""

    def __init__(self, batch_size: Optional[int] = None):
        self.batch_size = batch_size or settings.RETENTION_BATCH_SIZE

    async def get_elements_to_delete(
        self,
        scope: str,
        before: datetime,
        filters: Optional[str] = None,
        first: Optional[int] = None,
    ) -> Connection:
        """
        Fetch one batch of expired candidates for a scope.

        Raises:
            ConfigurationError: if the scope is not a retention scope
        """
        first = first or self.batch_size
        if scope == RetentionScope.KNOWLEDGE.value:
            result = await query_adapter.paginate(
                RETENTION_MANAGER_USER,
                tables=READ_KNOWLEDGE_TABLES,
                filters=parse_filter_group(filters),
                first=first,
                before=before,
            )
        elif scope == RetentionScope.FILE.value:
            result = await paginated_for_path_with_enrichment(
                RETENTION_MANAGER_USER, IMPORT_GLOBAL_PATH, first=first, not_modified_since=before
            )
        elif scope == RetentionScope.WORKBENCH.value:
            result = await paginated_for_path_with_enrichment(
                RETENTION_MANAGER_USER, IMPORT_PENDING_PATH, first=first, not_modified_since=before
            )
        else:
            raise ConfigurationError(f"[Retention manager] Scope {scope} not existing for Retention Rule.")

        if scope in (RetentionScope.FILE.value, RetentionScope.KNOWLEDGE.value):
            result.edges = [edge for edge in result.edges if is_element_deletable(edge.node)]
        return result

    async def delete_element(self, scope: str, node_id: str, node_entity_type: Optional[str] = None) -> None:
        if scope == RetentionScope.KNOWLEDGE.value:
            await db_service.delete_element_by_internal_id(
                RETENTION_MANAGER_USER, node_id, node_entity_type
            )
        elif scope in (RetentionScope.FILE.value, RetentionScope.WORKBENCH.value):
            await delete_file(RETENTION_MANAGER_USER, node_id)
        else:
            raise ConfigurationError(f"[Retention manager] Scope {scope} not existing for Retention Rule.")

    async def execute_rule(self, rule: RetentionRule, lock: Optional[LockHandle] = None) -> RuleExecutionResult:
        """Run one batch of a rule and persist its execution metadata."""
        logger.debug(f"Executing retention rule {rule.name}")
        before = compute_before(rule.max_retention, rule.retention_unit)
        connection = await self.get_elements_to_delete(rule.scope, before, rule.filters)

        result = RuleExecutionResult(
            rule_id=rule.id,
            rule_name=rule.name,
            scope=rule.scope,
            before=before,
            remaining_count=connection.page_info.global_count,
            fetched_count=len(connection.edges),
        )
        logger.debug(f"Retention manager clearing {len(connection.edges)} elements for rule {rule.name}")

        for edge in connection.edges:
            if lock is not None and lock.signal.aborted:
                # Undeleted elements are selected again on the next cycle
                result.aborted = True
                break
            node = edge.node
            node_id = node.get("internal_id") if rule.scope == RetentionScope.KNOWLEDGE.value else node.get("id")
            try:
                await self.delete_element(rule.scope, node_id, node.get("entity_type"))
                result.deleted_count += 1
                logger.debug(f"Retention manager deleted {node.get('id')} (last update {node.get('updated_at')})")
            except ConfigurationError:
                raise
            except Exception as e:
                result.failures.append(ElementDeletionFailure(id=str(node.get("id")), error=str(e)))
                logger.error(
                    f"Retention manager failed to delete {node.get('id')}: {e}",
                    extra={"id": node.get("id"), "rule_id": rule.id, "manager": RETENTION_MANAGER_ID},
                )

        await db_service.patch_attribute(
            RETENTION_MANAGER_USER,
            rule.id,
            ENTITY_TYPE_RETENTION_RULE,
            result.to_patch(datetime.now(timezone.utc)),
        )

        if result.failures:
            logger.warning(
                f"Retention rule {rule.name} deleted {result.deleted_count}/{result.fetched_count} elements, "
                f"{len(result.failures)} failed: {', '.join(f.id for f in result.failures)}"
            )
        else:
            logger.info(
                f"Retention rule {rule.name} deleted {result.deleted_count} elements "
                f"({result.remaining_count} matched before deletion)"
            )
        return result

    async def execute(self, rules: List[RetentionRule], lock: Optional[LockHandle] = None) -> List[RuleExecutionResult]:
        """
        Execute rules sequentially.

        The lock signal is checked before each rule; an aborted signal raises
        AbortError and leaves the remaining rules untouched. Fetch and patch
        errors propagate and stop the cycle.
        """
        results = []
        for rule in rules:
            if lock is not None:
                lock.signal.throw_if_aborted()
            results.append(await self.execute_rule(rule, lock))
            if lock is not None and not lock.signal.aborted:
                await lock.extend()
        return results

    async def check_rule(self, scope: str, max_retention: int, unit: Optional[RetentionUnit], filters: Optional[str] = None) -> int:
        """Number of elements a rule would currently target, nothing deleted."""
        before = compute_before(max_retention, unit)
        result = await self.get_elements_to_delete(scope, before, filters)
        return result.page_info.global_count

    async def handler(self, lock: LockHandle) -> List[RuleExecutionResult]:
        rules = await retention_rule_service.find_all()
        logger.debug(f"Retention manager execution for {len(rules)} rules")
        return await self.execute(rules, lock)


retention_manager = RetentionManager()

register_manager(ManagerDefinition(
    id=RETENTION_MANAGER_ID,
    label="Retention manager",
    handler=retention_manager.handler,
    interval_ms=settings.RETENTION_MANAGER_INTERVAL_MS,
    lock_key=settings.RETENTION_MANAGER_LOCK_KEY,
    enabled_by_config=settings.RETENTION_MANAGER_ENABLED,
    enabled_to_start=settings.RETENTION_MANAGER_START_ENABLED,
))
