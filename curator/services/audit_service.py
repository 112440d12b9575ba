"""
User action audit trail.

Every user-initiated mutation (background task creation, retention rule
changes...) is recorded in the ``audit_logs`` table. Emission never fails the
operation it describes: errors are logged and swallowed.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from curator.schemas.principal import Principal
from curator.services.database import db_service

logger = logging.getLogger(__name__)

AUDIT_LOGS_TABLE = "audit_logs"


async def publish_user_action(
    principal: Principal,
    event_type: str,
    event_scope: str,
    event_access: str,
    message: str,
    context_data: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Record a user action.

    Args:
        principal: The user performing the action
        event_type: Kind of event (mutation, authentication, ...)
        event_scope: Operation (create, update, delete, ...)
        event_access: Audience of the event (extended, administration)
        message: Human readable description
        context_data: Entity type, id and input of the action

    Returns:
        The stored audit entry, or None if it could not be stored
    """
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "actor_id": principal.id,
        "actor_name": principal.name,
        "actor_email": principal.email,
        "event_type": event_type,
        "event_scope": event_scope,
        "event_access": event_access,
        "message": f"{principal.name} {message}",
        "context_data": context_data or {},
    }
    try:
        response = db_service.client.table(AUDIT_LOGS_TABLE).insert(entry).execute()
        return response.data[0] if response.data else entry
    except Exception as e:
        logger.error(f"Failed to publish user action '{message}' for {principal.id}: {e}")
        return None
