from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import timedelta
import functools
import hashlib

from .constants import (
    BATCH_SIZE,
    CLEANUP_INTERVAL,
    CLEANUP_RETENTION,
    EMPTY_BATCH_DELAY,
    MAX_DEGREE_OF_PARALLELISM,
    MIRROR_CACHE,
    RESTART_DELAY,
    START_DELAY,
)
from .typed_path import AbsDir, AbsFile, Remote
from .types import Direction


@dataclass(frozen=True, kw_only=True)
class MirroringConfiguration:
    hg_clone_uri: Remote
    git_clone_uri: Remote
    git_uri_is_hg_uri: bool = False
    direction: Direction

    @functools.cached_property
    def key(self) -> str:
        pair = f"{self.hg_clone_uri.canonical}\n{self.git_clone_uri.canonical}"
        return hashlib.blake2b(
            bytes(pair, encoding="utf-8", errors="ignore"), usedforsecurity=False
        ).hexdigest()

    def __str__(self) -> str:
        return f"{self.hg_clone_uri} and {self.git_clone_uri} in direction {self.direction}"


@dataclass(frozen=True, kw_only=True, slots=True)
class MirroringSettings:
    api_endpoint_url: str
    api_password: str = field(repr=False)
    repositories_directory: AbsDir = MIRROR_CACHE
    max_degree_of_parallelism: int = MAX_DEGREE_OF_PARALLELISM
    batch_size: int = BATCH_SIZE
    start_delay: timedelta = START_DELAY
    restart_delay: timedelta = RESTART_DELAY
    cleanup_interval: timedelta = CLEANUP_INTERVAL
    cleanup_retention: timedelta = CLEANUP_RETENTION
    empty_batch_delay: timedelta = EMPTY_BATCH_DELAY
    command_timeout: timedelta | None = None
    hg_options: Sequence[str] = ()
    log_file: AbsFile | None = None
