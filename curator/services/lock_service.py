"""
Manager Lock Service

Provides the distributed lease lock that guarantees a single active execution
of a scheduled manager across every cooperating process.

A lease is a row of the ``manager_locks`` table (lock_key, holder_id,
expires_at). It is acquired by inserting the row, or by taking over a row
whose lease has expired with a conditional update on ``expires_at``; both are
atomic in PostgreSQL, so at most one process wins. The holder receives a
LockHandle exposing an abort signal, extend() and unlock().
"""
import asyncio
import logging
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional
from uuid import uuid4

from postgrest.exceptions import APIError

from curator.core.config import settings
from curator.core.errors import AbortError, LockLostError
from curator.services.database import db_service

logger = logging.getLogger(__name__)

MANAGER_LOCKS_TABLE = "manager_locks"
UNIQUE_VIOLATION = "23505"


class AbortSignal:
    """Cooperative cancellation flag polled by lock holders."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def throw_if_aborted(self) -> None:
        if self._event.is_set():
            raise AbortError(self.reason)

    async def wait(self) -> None:
        await self._event.wait()


class LockHandle:
    """
    Handle given to the holder of a lease.

    The signal is aborted when the lease expires without being extended,
    when an extension fails, or when the owner requests a shutdown.
    """

    def __init__(self, service: "ManagerLockService", lock_key: str, holder_id: str, expires_at: datetime):
        self.service = service
        self.lock_key = lock_key
        self.holder_id = holder_id
        self.expires_at = expires_at
        self.signal = AbortSignal()
        self.released = False
        self._watchdog: Optional[asyncio.Task] = None
        self._arm_watchdog()

    def _arm_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
        delay = (self.expires_at - datetime.now(timezone.utc)).total_seconds()
        self._watchdog = asyncio.create_task(self._expire_after(max(delay, 0)))

    async def _expire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        logger.warning(f"Lease {self.lock_key} expired before being extended")
        self.signal.abort("lease expired")

    async def extend(self) -> None:
        """Renew the lease for another lease duration."""
        if self.released or self.signal.aborted:
            raise LockLostError(f"Lock {self.lock_key} is not held anymore")
        expires_at = await self.service._extend_lease(self.lock_key, self.holder_id)
        if expires_at is None:
            self.signal.abort("lease lost")
            raise LockLostError(f"Lock {self.lock_key} was taken over by another holder")
        self.expires_at = expires_at
        self._arm_watchdog()

    async def unlock(self) -> None:
        """Release the lease early. Safe to call more than once."""
        if self.released:
            return
        self.released = True
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        await self.service._release_lease(self.lock_key, self.holder_id)


class ManagerLockService:
    """Service for acquiring, extending and releasing manager leases."""

    # Lease duration in milliseconds
    DEFAULT_LEASE_MS = 30000

    def __init__(self, holder_id: Optional[str] = None, lease_ms: Optional[int] = None):
        self.db_service = db_service
        self.holder_id = holder_id or settings.MANAGER_LOCK_HOLDER_ID or f"{socket.gethostname()}:{uuid4()}"
        self.lease_ms = lease_ms or settings.MANAGER_LOCK_LEASE_MS or self.DEFAULT_LEASE_MS

    def _lease_expiry(self, now: datetime) -> datetime:
        return now + timedelta(milliseconds=self.lease_ms)

    async def _try_acquire(self, lock_key: str) -> Optional[datetime]:
        """
        Attempt to take the lease without waiting.

        Returns:
            The lease expiry if acquired, None if another holder has it
        """
        now = datetime.now(timezone.utc)
        expires_at = self._lease_expiry(now)
        lease = {
            "holder_id": self.holder_id,
            "expires_at": expires_at.isoformat(),
            "acquired_at": now.isoformat(),
        }

        # Take over an expired lease (compare-and-swap on expires_at)
        result = self.db_service.client.table(MANAGER_LOCKS_TABLE).update(lease).eq(
            "lock_key", lock_key
        ).lt("expires_at", now.isoformat()).execute()
        if result.data:
            logger.info(f"Acquired expired lease {lock_key} as {self.holder_id}")
            return expires_at

        # First holder ever: create the lease row
        try:
            self.db_service.client.table(MANAGER_LOCKS_TABLE).insert(
                {"lock_key": lock_key, **lease}
            ).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.debug(f"Lease {lock_key} is held by another process")
                return None
            raise
        logger.info(f"Acquired lease {lock_key} as {self.holder_id}")
        return expires_at

    async def _extend_lease(self, lock_key: str, holder_id: str) -> Optional[datetime]:
        expires_at = self._lease_expiry(datetime.now(timezone.utc))
        result = self.db_service.client.table(MANAGER_LOCKS_TABLE).update(
            {"expires_at": expires_at.isoformat()}
        ).eq("lock_key", lock_key).eq("holder_id", holder_id).execute()
        if not result.data:
            logger.warning(f"Failed to extend lease {lock_key}: not held by {holder_id}")
            return None
        logger.debug(f"Extended lease {lock_key} until {expires_at.isoformat()}")
        return expires_at

    async def _release_lease(self, lock_key: str, holder_id: str) -> bool:
        try:
            result = self.db_service.client.table(MANAGER_LOCKS_TABLE).delete().eq(
                "lock_key", lock_key
            ).eq("holder_id", holder_id).execute()
        except Exception as e:
            # The lease expires on its own; a failed release only delays the next holder
            logger.error(f"Error releasing lease {lock_key}: {str(e)}")
            return False

        if result.data:
            logger.info(f"Released lease {lock_key}")
            return True
        logger.warning(f"Lease {lock_key} was not held by {holder_id}")
        return False

    async def acquire(self, lock_key: str) -> Optional[LockHandle]:
        """Acquire the lease for lock_key, returning None if it is taken."""
        expires_at = await self._try_acquire(lock_key)
        if expires_at is None:
            return None
        return LockHandle(self, lock_key, self.holder_id, expires_at)

    @asynccontextmanager
    async def lock_resource(self, lock_key: str) -> AsyncIterator[Optional[LockHandle]]:
        """
        Context manager around a lease.

        Usage:
            async with manager_lock_service.lock_resource("retention_manager_lock") as lock:
                if lock:
                    await handler(lock)

        Yields:
            LockHandle if the lease was acquired, None otherwise
        """
        handle = await self.acquire(lock_key)
        try:
            yield handle
        finally:
            if handle is not None:
                await handle.unlock()

    async def check_lock_status(self, lock_key: str) -> dict:
        """Return the current lease holder for monitoring."""
        result = self.db_service.client.table(MANAGER_LOCKS_TABLE).select("*").eq(
            "lock_key", lock_key
        ).execute()
        lease = result.data[0] if result.data else None
        if lease is None:
            return {"lock_key": lock_key, "is_locked": False, "holder_id": None, "expires_at": None}
        expires_at = datetime.fromisoformat(lease["expires_at"])
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return {
            "lock_key": lock_key,
            "is_locked": expires_at > datetime.now(timezone.utc),
            "holder_id": lease.get("holder_id"),
            "expires_at": lease["expires_at"],
        }


# Global service instance
manager_lock_service = ManagerLockService()
