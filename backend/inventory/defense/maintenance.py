import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from inventory.core.clock import Clock, utc_now
from inventory.core.config import DefenseSettings
from inventory.core.errors import StorageError
from inventory.core.metrics import increment_counter
from inventory.core.observability import log_business_event
from inventory.defense.ledger import AttemptLedger
from inventory.defense.lockout import LockoutStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaintenanceResult:
    attempts_removed: int
    lockouts_removed: int
    cutoff: datetime


class MaintenanceScheduler:
    """Periodic purge of expired attempt and lockout rows.

    One run fires ``maintenance_initial_delay_seconds`` after ``start()``,
    then every ``maintenance_interval_seconds``. Database work happens in a
    worker thread with its own session, so the event loop serving requests
    is never blocked. A failed run is logged and the next tick runs as usual.
    """

    def __init__(
        self,
        settings: DefenseSettings,
        session_factory: Callable[[], Session],
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._clock = clock
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def purge(self) -> MaintenanceResult:
        db = self._session_factory()
        try:
            cutoff = self._clock() - timedelta(hours=self._settings.retention_hours)
            ledger = AttemptLedger(db, self._clock)
            attempts_removed = ledger.purge_older_than(cutoff)
            lockouts_removed = LockoutStateMachine(db, ledger, self._settings, self._clock).purge_expired()
        finally:
            db.close()
        return MaintenanceResult(attempts_removed=attempts_removed, lockouts_removed=lockouts_removed, cutoff=cutoff)

    async def run_once(self) -> MaintenanceResult | None:
        # Two bounded statements per run.
        timeout = self._settings.storage_timeout_seconds * 2
        try:
            result = await asyncio.wait_for(asyncio.to_thread(self.purge), timeout=timeout)
        except StorageError as exc:
            increment_counter("maintenance_run_total", status="failed")
            logger.warning("Security maintenance run failed, next run unaffected: %s", exc)
            return None
        except asyncio.TimeoutError:
            increment_counter("maintenance_run_total", status="timeout")
            logger.warning("Security maintenance run timed out after %.1fs", timeout)
            return None
        increment_counter("maintenance_run_total", status="ok")
        log_business_event(
            logger,
            None,
            event="security.maintenance",
            attempts_removed=result.attempts_removed,
            lockouts_removed=result.lockouts_removed,
            cutoff=result.cutoff.isoformat(),
        )
        return result

    async def _sleep(self, stop_event: asyncio.Event, seconds: float) -> bool:
        """Wait ``seconds`` or until stopped. Returns True when stopped."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _loop(self, stop_event: asyncio.Event) -> None:
        if await self._sleep(stop_event, self._settings.maintenance_initial_delay_seconds):
            return
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Security maintenance run crashed")
            if await self._sleep(stop_event, self._settings.maintenance_interval_seconds):
                return

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event), name="security-maintenance")
        logger.info(
            "Security maintenance scheduled initial_delay_s=%s interval_s=%s retention_h=%s",
            self._settings.maintenance_initial_delay_seconds,
            self._settings.maintenance_interval_seconds,
            self._settings.retention_hours,
        )

    async def stop(self, timeout: float = 3.0) -> None:
        task = self._task
        if task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Security maintenance did not stop in %.1fs, cancelled", timeout)
        finally:
            self._task = None
            self._stop_event = None
        logger.info("Security maintenance stopped")
