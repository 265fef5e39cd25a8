from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import threading
from typing import Protocol, Self

from loguru import logger

from .api import ConfigSourceClient
from .config import MirroringConfiguration, MirroringSettings
from .errors import CacheEntryBusyError, MirroringError
from .mirror import Mirror
from .types import ErrorKind


class ConfigSource(Protocol):
    def fetch(self, batch_size: int) -> list[MirroringConfiguration]: ...


class MirrorEngine(Protocol):
    def mirror(self, configuration: MirroringConfiguration) -> None: ...


@dataclass(frozen=True, slots=True)
class JobResult:
    configuration: MirroringConfiguration
    error: MirroringError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class MirrorRunner:
    """Fetch configurations in batches and mirror them on a bounded pool of workers."""

    def __init__(
        self,
        settings: MirroringSettings,
        client: ConfigSource,
        mirror: MirrorEngine,
        *,
        on_result: Callable[[JobResult], None] | None = None,
    ) -> None:
        if settings.max_degree_of_parallelism < 1:
            raise ValueError("max_degree_of_parallelism should be at least 1.")
        self.settings = settings
        self.client = client
        self.mirror = mirror
        self.on_result = on_result
        self._slots = threading.BoundedSemaphore(settings.max_degree_of_parallelism)
        self._stopped = threading.Event()
        self._active_keys: set[str] = set()
        self._active_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(
            max_workers=settings.max_degree_of_parallelism, thread_name_prefix="mirror"
        )

    @classmethod
    def from_settings(cls, settings: MirroringSettings) -> Self:
        return cls(
            settings, ConfigSourceClient.from_settings(settings), Mirror.from_settings(settings)
        )

    @property
    def active_keys(self) -> frozenset[str]:
        with self._active_lock:
            return frozenset(self._active_keys)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def run(self) -> None:
        """Dispatch batches until stopped; errors from the configuration source propagate."""
        try:
            while not self.stopped:
                batch = self.client.fetch(self.settings.batch_size)
                if not batch:
                    self._stopped.wait(self.settings.empty_batch_delay.total_seconds())
                    continue
                for configuration in batch:
                    if not self.dispatch(configuration):
                        break
        finally:
            self._pool.shutdown(wait=False)

    def dispatch(self, configuration: MirroringConfiguration) -> bool:
        """Submit one job once a worker is free; return False if stopped while waiting."""
        while not self._slots.acquire(timeout=0.1):
            if self.stopped:
                return False
        if self.stopped:
            self._slots.release()
            return False
        with self._active_lock:
            if configuration.key in self._active_keys:
                logger.debug(f"Skipping {configuration} as it is already being mirrored.")
                self._slots.release()
                return True
            self._active_keys.add(configuration.key)
        try:
            future = self._pool.submit(self.mirror_one, configuration)
        except RuntimeError:
            # The pool has been shut down.
            self._finish(configuration)
            raise
        future.add_done_callback(lambda future: self._complete(configuration, future))
        return True

    def mirror_one(self, configuration: MirroringConfiguration) -> JobResult:
        try:
            self.mirror.mirror(configuration)
        except MirroringError as e:
            self.report(e)
            return JobResult(configuration, e)
        return JobResult(configuration)

    def report(self, error: MirroringError) -> None:
        match error.kind:
            case ErrorKind.AGGREGATE:
                logger.opt(exception=error).critical(str(error))
            case ErrorKind.FILESYSTEM if isinstance(error, CacheEntryBusyError):
                logger.warning(str(error))
            case _:
                logger.opt(exception=error).error(str(error))

    def _complete(self, configuration: MirroringConfiguration, future: Future[JobResult]) -> None:
        self._finish(configuration)
        if future.cancelled():
            return
        exception = future.exception()
        if exception is not None:
            # Anything that is not a mirroring error stays within its job.
            logger.opt(exception=exception).error(
                f"Unexpected error while mirroring {configuration}."
            )
            result = JobResult(configuration, MirroringError(configuration, exception))
        else:
            result = future.result()
        if self.on_result is not None:
            self.on_result(result)

    def _finish(self, configuration: MirroringConfiguration) -> None:
        with self._active_lock:
            self._active_keys.discard(configuration.key)
        self._slots.release()

    def stop(self) -> None:
        logger.info("Stopping mirroring.")
        self._stopped.set()

    def join(self) -> None:
        """Wait for in-flight jobs."""
        self._pool.shutdown(wait=True, cancel_futures=False)
