from __future__ import annotations

import contextlib
from dataclasses import dataclass
import errno
import fcntl
import os
from typing import Self

from .typed_path import AbsFile
from .types import PyFile


@dataclass(frozen=True)
class FileSystemLock:
    file: PyFile
    filepath: AbsFile

    def __del__(self) -> None:
        self.release()

    @classmethod
    def acquire(cls, filepath: AbsFile) -> Self | None:
        """Lock `filepath` (creating it if needed) or return None if it is already held."""
        filepath.path.parent.mkdir(parents=True, exist_ok=True)
        file = open(filepath, "a+")  # noqa: SIM115
        lock = cls.acquire_non_blocking(file, filepath)
        if lock is None:
            file.close()
        return lock

    @classmethod
    def acquire_non_blocking(cls, file: PyFile, filepath: AbsFile) -> Self | None:
        try:
            fcntl.flock(file, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            if e.errno in (errno.EWOULDBLOCK, errno.EAGAIN):
                return None
            raise e
        return cls(file, filepath)

    @property
    def released(self) -> bool:
        return self.file.closed

    def release(self) -> None:
        self.file.close()

    def remove(self) -> None:
        """Delete the lock file while still holding it, then release."""
        try:
            with contextlib.suppress(FileNotFoundError):
                os.remove(self.filepath)
        finally:
            self.release()
