"""
Health check endpoint for service status monitoring.
Reports database connectivity and the state of the scheduled managers.
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from typing import Dict, Any
import logging

from curator.services.database import db_service
from curator.services.manager_scheduler import get_managers_status

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def health_check() -> JSONResponse:
    """
    Health check endpoint.

    Returns:
        - status: "healthy" or "degraded"
        - timestamp: Current UTC timestamp
        - services: Status of the database
        - managers: Status of each registered manager

    Status codes:
        - 200: All services healthy
        - 503: Database unreachable
    """
    checks: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {},
    }

    try:
        db_service.client.table("manager_locks").select("lock_key").limit(1).execute()
        checks["services"]["database"] = {"status": "healthy"}
    except Exception as e:
        error_msg = str(e)
        logger.error(f"Database health check failed: {error_msg}")
        checks["services"]["database"] = {"status": "unhealthy", "error": error_msg}
        checks["status"] = "degraded"

    checks["managers"] = get_managers_status()

    status_code = 200 if checks["status"] == "healthy" else 503
    return JSONResponse(content=checks, status_code=status_code)
