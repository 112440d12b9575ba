"""
Manager Scheduler

Runs registered managers (retention manager, ...) periodically. Every
manager runs in its own asyncio task; on each tick the task tries to take the
manager's lease and, if it gets it, awaits the handler with the lock handle.
Ticks where another process holds the lease are skipped, so the handler has
at most one active execution across all processes sharing the lock key.

Usage:
    # Declared next to the manager
    register_manager(ManagerDefinition(...))

    # Called in main.py on startup / shutdown
    await start_managers()
    await stop_managers()
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from curator.core.errors import AbortError
from curator.services.lock_service import LockHandle, ManagerLockService, manager_lock_service

logger = logging.getLogger(__name__)

ManagerHandler = Callable[[LockHandle], Awaitable[Any]]


@dataclass
class ManagerDefinition:
    """Declaration of a periodic manager."""
    id: str
    label: str
    handler: ManagerHandler
    interval_ms: int
    lock_key: str
    enabled_by_config: bool = False
    enabled_to_start: bool = True

    def enabled(self) -> bool:
        return self.enabled_by_config

    def should_start(self) -> bool:
        return self.enabled_by_config and self.enabled_to_start


@dataclass
class ManagerState:
    running: bool = False
    task: Optional[asyncio.Task] = None
    current_lock: Optional[LockHandle] = None
    last_run_start: Optional[datetime] = None
    last_run_end: Optional[datetime] = None
    last_error: Optional[str] = None
    executions: int = 0
    skipped: int = 0
    last_result: Any = None


class ManagerScheduler:
    """Registry and runtime of the periodic managers."""

    def __init__(self, lock_service: Optional[ManagerLockService] = None):
        self.lock_service = lock_service or manager_lock_service
        self._definitions: Dict[str, ManagerDefinition] = {}
        self._states: Dict[str, ManagerState] = {}

    def register(self, definition: ManagerDefinition) -> None:
        if definition.id in self._definitions:
            logger.warning(f"Manager {definition.id} registered twice, replacing previous definition")
        self._definitions[definition.id] = definition
        self._states[definition.id] = ManagerState()

    def get_definition(self, manager_id: str) -> Optional[ManagerDefinition]:
        return self._definitions.get(manager_id)

    async def run_once(self, manager_id: str) -> bool:
        """
        Execute one tick of a manager.

        Returns:
            True if the handler ran, False if the lease was held elsewhere
        """
        definition = self._definitions[manager_id]
        state = self._states[manager_id]

        async with self.lock_service.lock_resource(definition.lock_key) as lock:
            if lock is None:
                state.skipped += 1
                logger.debug(f"[{definition.id}] Lock {definition.lock_key} held by another process, skipping")
                return False

            state.current_lock = lock
            state.last_run_start = datetime.now(timezone.utc)
            try:
                result = await definition.handler(lock)
                state.last_error = None
                state.last_result = result
            except AbortError as e:
                logger.info(f"[{definition.id}] Execution aborted: {e.message}")
            except Exception as e:
                state.last_error = str(e)
                logger.error(f"[{definition.id}] Error during manager execution: {e}", exc_info=True)
            finally:
                state.current_lock = None
                state.last_run_end = datetime.now(timezone.utc)
                state.executions += 1
        return True

    async def _manager_loop(self, manager_id: str) -> None:
        definition = self._definitions[manager_id]
        state = self._states[manager_id]
        logger.info(f"{definition.label} started (interval: {definition.interval_ms}ms, lock: {definition.lock_key})")

        while state.running:
            try:
                await self.run_once(manager_id)
            except Exception as e:
                # Lock acquisition failures land here; the next tick retries
                logger.error(f"[{definition.id}] Error in scheduler loop: {e}", exc_info=True)

            await asyncio.sleep(definition.interval_ms / 1000)

        logger.info(f"{definition.label} stopped")

    def start(self, manager_id: str) -> bool:
        definition = self._definitions[manager_id]
        state = self._states[manager_id]

        if not definition.should_start():
            logger.info(
                f"{definition.label} not started "
                f"(enabled_by_config={definition.enabled_by_config}, "
                f"enabled_to_start={definition.enabled_to_start})"
            )
            return False

        if state.running:
            logger.warning(f"{definition.label} already running")
            return False

        state.running = True
        state.task = asyncio.create_task(self._manager_loop(manager_id))
        return True

    async def stop(self, manager_id: str) -> None:
        state = self._states[manager_id]
        if not state.running:
            return

        state.running = False
        if state.current_lock is not None:
            state.current_lock.signal.abort("shutdown requested")

        if state.task:
            state.task.cancel()
            try:
                await state.task
            except asyncio.CancelledError:
                pass
            state.task = None

    async def start_all(self) -> List[str]:
        return [manager_id for manager_id in list(self._definitions) if self.start(manager_id)]

    async def stop_all(self) -> None:
        for manager_id in list(self._definitions):
            await self.stop(manager_id)

    def status(self) -> List[Dict[str, Any]]:
        statuses = []
        for manager_id, definition in self._definitions.items():
            state = self._states[manager_id]
            statuses.append({
                "id": definition.id,
                "label": definition.label,
                "enabled_by_config": definition.enabled_by_config,
                "enabled_to_start": definition.enabled_to_start,
                "running": state.running,
                "interval_ms": definition.interval_ms,
                "lock_key": definition.lock_key,
                "executions": state.executions,
                "skipped": state.skipped,
                "last_run_start": state.last_run_start.isoformat() if state.last_run_start else None,
                "last_run_end": state.last_run_end.isoformat() if state.last_run_end else None,
                "last_error": state.last_error,
            })
        return statuses


manager_scheduler = ManagerScheduler()


def register_manager(definition: ManagerDefinition) -> None:
    manager_scheduler.register(definition)


async def start_managers() -> List[str]:
    """Start every registered manager enabled for this process."""
    return await manager_scheduler.start_all()


async def stop_managers() -> None:
    """Stop every running manager, aborting in-flight executions."""
    await manager_scheduler.stop_all()


def get_managers_status() -> List[Dict[str, Any]]:
    return manager_scheduler.status()
