from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
import os
from pathlib import Path
import shutil
import stat

from loguru import logger

from .config import MirroringConfiguration
from .constants import MIRROR_LOCK_EXTENSION
from .lock import FileSystemLock
from .typed_path import AbsDir, AbsFile, RelDir


@dataclass(frozen=True)
class CacheEntry:
    path: AbsDir

    @property
    def key(self) -> str:
        return self.path.name

    @property
    def lock_file(self) -> AbsFile:
        return self.path + MIRROR_LOCK_EXTENSION

    def __str__(self) -> str:
        return str(self.path)

    def lock(self) -> FileSystemLock | None:
        return FileSystemLock.acquire(self.lock_file)

    def is_cloned(self) -> bool:
        """Whether the directory exists and holds at least one entry."""
        if not self.path.is_folder():
            return False
        with os.scandir(self.path) as entries:
            return any(True for _ in entries)

    def create(self) -> None:
        self.path.path.mkdir(parents=True, exist_ok=True)

    def touch(self, now: datetime | None = None) -> None:
        timestamp = (now or datetime.now(UTC)).timestamp()
        # Only the access time marks usage; keep the modification time.
        os.utime(self.path, (timestamp, os.stat(self.path).st_mtime))

    @property
    def last_access(self) -> datetime:
        return datetime.fromtimestamp(os.stat(self.path).st_atime, tz=UTC)

    def remove(self) -> None:
        """Delete the directory, raising if anything is left behind."""
        if not self.path.path.exists(follow_symlinks=False):
            return
        logger.debug(f"Removing {self.path}")
        if self.path.is_folder() and not self.path.path.is_symlink():
            shutil.rmtree(self.path, onexc=_make_writable_and_retry)
        else:
            os.remove(self.path)


def _make_writable_and_retry(function: object, path: str, exception: BaseException) -> None:
    # Repository stores can contain read-only files and folders.
    if not isinstance(exception, PermissionError) or not callable(function):
        raise exception
    for writable in (os.path.dirname(path), path):
        os.chmod(writable, stat.S_IWRITE | stat.S_IREAD | stat.S_IEXEC)
    function(path)


@dataclass(frozen=True)
class RepositoryCache:
    root: AbsDir

    def entry(self, configuration: MirroringConfiguration) -> CacheEntry:
        return self.entry_for_key(configuration.key)

    def entry_for_key(self, key: str) -> CacheEntry:
        # A subfolder per first character keeps directories small.
        return CacheEntry(self.root / RelDir(key[0]) / RelDir(key))

    def _shards(self) -> Iterator[Path]:
        if not self.root.is_folder():
            return
        for shard in sorted(self.root.path.iterdir()):
            if shard.is_dir():
                yield shard

    def entries(self) -> Iterator[CacheEntry]:
        for shard in self._shards():
            for path in sorted(shard.iterdir()):
                if path.is_dir():
                    yield CacheEntry(AbsDir(path))

    def orphaned_locks(self) -> Iterator[CacheEntry]:
        """Yield entries whose lock file outlived their directory."""
        for shard in self._shards():
            for path in sorted(shard.glob(f"*{MIRROR_LOCK_EXTENSION.extension}")):
                entry = CacheEntry(AbsDir(path.with_suffix("")))
                if path.is_file() and not entry.path.exists():
                    yield entry
