"""User integrity monitor: count-drop detection and recovery from backups.

A drop in the best available user count is treated as data loss. A legitimate
bulk deletion looks identical and will be undone by recovery; nothing in the
stored data distinguishes the two.
"""

import asyncio
from functools import lru_cache
from typing import Any

from app.core.config import Settings, get_settings
from app.core.events import USERS_RECOVERED, EventBus, get_event_bus
from app.core.logging import get_logger
from app.services.persistence import UserPersistenceManager, get_persistence

log = get_logger(__name__)

LAST_KNOWN_USER_COUNT = "last_known_user_count"


class UserIntegrityMonitor:
    def __init__(
        self,
        persistence: UserPersistenceManager,
        events: EventBus,
        settings: Settings | None = None,
    ) -> None:
        self.persistence = persistence
        self.events = events
        self.settings = settings or get_settings()
        self.is_monitoring = False
        self.last_known_user_count = 0
        self.recovery_attempts = 0
        self.max_recovery_attempts = self.settings.max_recovery_attempts
        self._task: asyncio.Task | None = None
        self._start_task: asyncio.Task | None = None
        self._hints: asyncio.Queue[str] | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None

    # -- counts ------------------------------------------------------------

    def get_all_users(self) -> list[dict[str, Any]]:
        """Longest valid copy among the canonical and backup slots."""
        _, users = self.persistence.read_best_copy()
        return users

    def _persist_count(self, count: int) -> None:
        self.last_known_user_count = count
        self.persistence.write_value(LAST_KNOWN_USER_COUNT, str(count))

    def _load_persisted_count(self) -> int | None:
        raw = self.persistence.read_value(LAST_KNOWN_USER_COUNT)
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None

    def update_user_count(self) -> int:
        count = len(self.get_all_users())
        self._persist_count(count)
        log.debug("user_count_updated", count=count)
        return count

    # -- integrity ---------------------------------------------------------

    def check_user_integrity(self) -> None:
        users = self.get_all_users()
        current = len(users)
        if self.last_known_user_count > 0 and current < self.last_known_user_count:
            log.warning("user_count_dropped", last_known=self.last_known_user_count, current=current)
            self.attempt_recovery()
        elif current > self.last_known_user_count:
            self._persist_count(current)
            self.create_backups(users)

    def attempt_recovery(self) -> bool:
        """Restore canonical and backups from the longest backup slot.

        Returns True on success. Never shrinks the canonical collection.
        """
        if self.recovery_attempts >= self.max_recovery_attempts:
            log.error(
                "recovery_exhausted",
                attempts=self.recovery_attempts,
                max_attempts=self.max_recovery_attempts,
            )
            return False

        self.recovery_attempts += 1
        log.info("recovery_attempt", attempt=self.recovery_attempts)

        with self.persistence.store.lock:
            slot, best = self.persistence.read_best_copy(include_canonical=False)
            if not best:
                log.error("recovery_no_backup", attempt=self.recovery_attempts)
                return False
            canonical = self.persistence.read_canonical()
            if len(best) < len(canonical):
                log.warning(
                    "recovery_skipped_smaller_backup",
                    slot=slot,
                    backup_count=len(best),
                    canonical_count=len(canonical),
                )
                return False
            failed = self.persistence.restore_users(best)

        if failed:
            log.error("recovery_write_partial", failed=failed)
        self._persist_count(len(best))
        self.recovery_attempts = 0
        log.info("recovery_succeeded", slot=slot, count=len(best))
        self.events.emit(USERS_RECOVERED, count=len(best))
        return True

    def create_backups(self, users: list[dict[str, Any]]) -> None:
        self.persistence.write_backups(users)

    def force_recovery(self) -> bool:
        log.info("force_recovery")
        self.recovery_attempts = 0
        return self.attempt_recovery()

    def handle_before_shutdown(self) -> None:
        """Emergency backup from the best copy; failures are logged only."""
        try:
            users = self.get_all_users()
            if users:
                self.create_backups(users)
                log.info("emergency_backup_created", count=len(users))
        except Exception:
            log.exception("emergency_backup_failed")

    def get_status(self) -> dict[str, Any]:
        return {
            "isMonitoring": self.is_monitoring,
            "lastKnownUserCount": self.last_known_user_count,
            "recoveryAttempts": self.recovery_attempts,
            "currentUserCount": len(self.get_all_users()),
        }

    # -- scheduling --------------------------------------------------------

    def notify_change(self, key: str = "users") -> None:
        """Hint that key may have been changed by another writer. Thread-safe."""
        if not self.is_monitoring or self._hints is None or "user" not in key:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._event_loop:
            self._hints.put_nowait(key)
        elif self._event_loop is not None and not self._event_loop.is_closed():
            self._event_loop.call_soon_threadsafe(self._hints.put_nowait, key)

    async def _loop(self) -> None:
        interval = self.settings.monitor_interval_seconds
        while True:
            try:
                key = await asyncio.wait_for(self._hints.get(), timeout=interval)
            except asyncio.TimeoutError:
                key = None
            if key is not None:
                log.debug("storage_change_detected", key=key)
                await asyncio.sleep(self.settings.change_check_delay_seconds)
                # Collapse hints that arrived during the delay
                while not self._hints.empty():
                    self._hints.get_nowait()
            try:
                self.check_user_integrity()
            except Exception:
                log.exception("integrity_check_failed")

    def start_monitoring(self) -> None:
        if self.is_monitoring:
            return
        self.is_monitoring = True
        persisted = self._load_persisted_count()
        if persisted is None:
            self.update_user_count()
        else:
            self.last_known_user_count = persisted
            self.check_user_integrity()
        self._event_loop = asyncio.get_running_loop()
        self._hints = asyncio.Queue()
        self._task = self._event_loop.create_task(self._loop())
        log.info("user_monitoring_started", last_known=self.last_known_user_count)

    def start(self, delay: float | None = None) -> None:
        """Start monitoring after a short delay so the store can initialise."""
        if self.is_monitoring or (self._start_task and not self._start_task.done()):
            return
        delay = self.settings.monitor_startup_delay_seconds if delay is None else delay

        async def _delayed() -> None:
            await asyncio.sleep(delay)
            self.start_monitoring()

        self._start_task = asyncio.get_running_loop().create_task(_delayed())

    async def stop_monitoring(self) -> None:
        for task in (self._start_task, self._task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._start_task = self._task = None
        self._hints = None
        self._event_loop = None
        if self.is_monitoring:
            self.is_monitoring = False
            log.info("user_monitoring_stopped")


@lru_cache
def get_monitor() -> UserIntegrityMonitor:
    return UserIntegrityMonitor(get_persistence(), get_event_bus())
