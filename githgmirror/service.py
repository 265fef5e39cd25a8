from __future__ import annotations

from collections.abc import Callable
import threading

from loguru import logger

from .cache import RepositoryCache
from .config import MirroringSettings
from .constants import MIRROR_NAME
from .runner import MirrorRunner
from .sweeper import CleanupSweeper
from .types import ErrorKind


class MirrorService:
    """Keep one runner alive, replacing it after failures, and sweep the cache periodically."""

    def __init__(
        self,
        settings: MirroringSettings,
        *,
        runner_factory: Callable[[MirroringSettings], MirrorRunner] = MirrorRunner.from_settings,
        sweeper: CleanupSweeper | None = None,
    ) -> None:
        self.settings = settings
        self.runner_factory = runner_factory
        self.sweeper = sweeper or CleanupSweeper(
            RepositoryCache(settings.repositories_directory), settings.cleanup_retention
        )
        self.restarts = 0
        self._shutdown = threading.Event()
        self._runner: MirrorRunner | None = None
        self._runner_lock = threading.Lock()
        self._threads: list[threading.Thread] = []

    @property
    def runner(self) -> MirrorRunner | None:
        with self._runner_lock:
            return self._runner

    def start(self) -> None:
        logger.info(f"{MIRROR_NAME} started.")
        self._threads = [
            threading.Thread(target=self.supervise, name="supervisor", daemon=True),
            threading.Thread(target=self.clean_periodically, name="sweeper", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def supervise(self) -> None:
        if self._shutdown.wait(self.settings.start_delay.total_seconds()):
            return
        while not self._shutdown.is_set():
            logger.info("Starting mirroring.")
            runner: MirrorRunner | None = None
            try:
                runner = self.runner_factory(self.settings)
                with self._runner_lock:
                    if self._shutdown.is_set():
                        break
                    self._runner = runner
                runner.run()
            except Exception as e:
                self.report(e)
                self.restarts += 1
                if self._shutdown.wait(self.settings.restart_delay.total_seconds()):
                    break
            finally:
                if runner is not None:
                    # Running jobs still hold slots of this runner.
                    runner.join()
                with self._runner_lock:
                    self._runner = None

    def report(self, error: Exception) -> None:
        seconds = self.settings.restart_delay.total_seconds()
        delay = f"A new start will be attempted in {seconds:g}s."
        match getattr(error, "kind", None):
            case ErrorKind.TRANSPORT:
                logger.error(f"Mirroring failed: {error} {delay}")
            case _:
                logger.opt(exception=error).error(
                    f"Mirroring failed with {type(error).__name__}: {error} {delay}"
                )

    def clean_periodically(self) -> None:
        while not self._shutdown.wait(self.settings.cleanup_interval.total_seconds()):
            try:
                self.sweeper.clean()
            except Exception as e:
                logger.opt(exception=e).error(f"Cleaning failed with {type(e).__name__}: {e}")

    def stop(self) -> None:
        logger.info(f"{MIRROR_NAME} stopped. Stopping mirroring.")
        self._shutdown.set()
        with self._runner_lock:
            if self._runner is not None:
                self._runner.stop()
        logger.info("Mirroring stopped.")

    def wait(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
