from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from loguru import logger

from .cache import CacheEntry, RepositoryCache
from .logger import describe


@dataclass(frozen=True)
class CleanupSweeper:
    cache: RepositoryCache
    retention: timedelta

    def is_stale(self, entry: CacheEntry, now: datetime) -> bool:
        return now - entry.last_access > self.retention

    @describe("Cleaning untouched repositories", level="INFO")
    def clean(self, now: datetime | None = None) -> list[CacheEntry]:
        """Delete entries not accessed within the retention window and return them."""
        now = now or datetime.now(UTC)
        removed = []
        for entry in self.cache.entries():
            try:
                if not self.is_stale(entry, now):
                    continue
            except FileNotFoundError:
                continue
            if self.remove(entry):
                removed.append(entry)
        logger.info(f"Removed {len(removed)} untouched repositories.")
        self.remove_orphaned_locks()
        return removed

    def remove_orphaned_locks(self) -> int:
        removed = 0
        for entry in self.cache.orphaned_locks():
            lock = entry.lock()
            if lock is None:
                continue
            if entry.path.exists():
                # Cloned since it was listed.
                lock.release()
                continue
            lock.remove()
            removed += 1
        logger.debug(f"Removed {removed} orphaned lock file(s).")
        return removed

    def remove(self, entry: CacheEntry) -> bool:
        lock = entry.lock()
        if lock is None:
            logger.debug(f"Skipping {entry} as it is in use.")
            return False
        try:
            entry.remove()
        except OSError as e:
            lock.release()
            logger.opt(exception=e).error(f"Unable to remove {entry}.")
            return False
        lock.remove()
        return True
