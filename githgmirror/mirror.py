from __future__ import annotations

from collections.abc import Callable, Collection, Sequence
from dataclasses import KW_ONLY, dataclass
import functools
from os import PathLike
from typing import NoReturn, Self

from loguru import logger

from .bookmarks import parse_bookmarks, push_arguments
from .cache import CacheEntry, RepositoryCache
from .config import MirroringConfiguration, MirroringSettings
from .constants import AUTH_SECTION, HG
from .errors import AggregateMirroringError, CacheEntryBusyError, CommandError, MirroringError
from .executor import CommandExecutor, CommandResult
from .logger import describe
from .typed_path import Remote
from .types import Direction

BRIDGE_SCHEME_PREFIX = "git+"
HTTP_SCHEMES = ("http", "https")
HG_EXTENSIONS: tuple[str, ...] = ("--config", "extensions.hggit=")
# `hg push` exits with 1 when there is nothing to push.
PUSH_RETURNCODES = (0, 1)


@dataclass(frozen=True)
class Mirror:
    cache: RepositoryCache
    executor_factory: Callable[[], CommandExecutor] = CommandExecutor
    hg_options: Sequence[str] = ()

    @classmethod
    def from_settings(cls, settings: MirroringSettings) -> Self:
        return cls(
            RepositoryCache(settings.repositories_directory),
            functools.partial(CommandExecutor, timeout=settings.command_timeout),
            hg_options=tuple(settings.hg_options),
        )

    def mirror(self, configuration: MirroringConfiguration) -> None:
        entry = self.cache.entry(configuration)
        lock = entry.lock()
        if lock is None:
            raise CacheEntryBusyError(
                configuration, BlockingIOError(f"{entry.lock_file} is locked.")
            )
        try:
            job = MirrorJob(
                configuration, entry, self.executor_factory(), hg_options=self.hg_options
            )
            with describe(f"Mirroring {configuration}", level="INFO", error_level="WARNING"):
                job.run()
        finally:
            lock.release()


@dataclass
class MirrorJob:
    configuration: MirroringConfiguration
    entry: CacheEntry
    executor: CommandExecutor
    _: KW_ONLY
    hg_options: Sequence[str] = ()

    @property
    def hg_remote(self) -> Remote:
        return self.configuration.hg_clone_uri

    @property
    def git_remote(self) -> Remote:
        return self.configuration.git_clone_uri

    def run(self) -> None:
        with self.executor:
            self.checkout()
            self.executor.cd(self.entry.path)
            try:
                self.synchronize()
            except (CommandError, OSError) as e:
                self.fail(e, retry_next_cycle=False)

    def checkout(self) -> None:
        try:
            if self.entry.is_cloned():
                logger.debug(f"Reusing {self.entry}")
            else:
                self.clone()
            self.entry.touch()
        except (CommandError, OSError) as e:
            self.fail(e, retry_next_cycle=True)

    def clone(self) -> None:
        with describe(
            f"Cloning {self.hg_remote} into {self.entry}", level="DEBUG", error_level="DEBUG"
        ):
            # Partial clones and stray files are rebuilt from scratch.
            self.entry.remove()
            self.entry.create()
            self.hg(
                "clone",
                "--noupdate",
                self.address(self.hg_remote),
                self.entry.path,
                remote=self.hg_remote,
            )
            self.executor.cd(self.entry.path)
            self.hg("gexport")

    def synchronize(self) -> None:
        match self.configuration.direction:
            case Direction.GIT_TO_HG:
                self.pull(self.git_remote)
                self.push_bookmarks(self.hg_remote)
            case Direction.HG_TO_GIT:
                self.pull(self.hg_remote)
                self.push_git()
            case Direction.TWO_WAY:
                # Pull both sides first so neither push drops unseen commits.
                self.pull(self.git_remote)
                self.pull(self.hg_remote)
                self.push_bookmarks(self.hg_remote)
                self.push_git()

    def fail(self, cause: CommandError | OSError, *, retry_next_cycle: bool) -> NoReturn:
        self.executor.close()
        try:
            self.entry.remove()
        except OSError as cleanup_error:
            raise AggregateMirroringError(
                self.configuration, cause, retry_next_cycle, cleanup_error=cleanup_error
            ) from cause
        raise MirroringError(self.configuration, cause, retry_next_cycle) from cause

    def pull(self, remote: Remote) -> None:
        with describe(f"Pulling {remote}", level="DEBUG", error_level="DEBUG"):
            self.hg("pull", self.address(remote), remote=remote)

    def push_git(self) -> None:
        if self.configuration.git_uri_is_hg_uri:
            self.push_bookmarks(self.git_remote)
        else:
            self.push_bridge(self.git_remote)

    def push_bookmarks(self, remote: Remote) -> None:
        with describe(f"Pushing bookmarks to {remote}", level="DEBUG", error_level="DEBUG"):
            bookmarks = parse_bookmarks(self.hg("bookmarks").output)
            logger.debug(f"Found {len(bookmarks)} bookmark(s): {bookmarks}")
            self.hg(
                "push",
                *push_arguments(bookmarks),
                self.address(remote),
                remote=remote,
                returncodes=PUSH_RETURNCODES,
            )

    def push_bridge(self, remote: Remote) -> None:
        with describe(f"Force pushing to {remote}", level="DEBUG", error_level="DEBUG"):
            self.hg(
                "push",
                "--force",
                "--new-branch",
                self.address(remote),
                remote=remote,
                returncodes=PUSH_RETURNCODES,
            )

    def address(self, remote: Remote) -> str:
        """Return the URI to put on the command line.

        http(s) credentials move to `auth_options`. Other schemes keep their username
        since Mercurial's auth section does not apply to them.
        """
        if remote.scheme not in HTTP_SCHEMES:
            return Remote(remote.without_password).repo
        address = Remote(remote.without_credentials)
        if remote == self.git_remote and not self.configuration.git_uri_is_hg_uri:
            address = address.with_scheme_prefix(BRIDGE_SCHEME_PREFIX)
        return address.repo

    def auth_options(self, remote: Remote | None) -> list[str]:
        if (
            remote is None
            or remote.scheme not in HTTP_SCHEMES
            or (credentials := remote.credentials) is None
        ):
            return []
        options = [
            "--config",
            f"auth.{AUTH_SECTION}.prefix={remote.auth_prefix}",
            "--config",
            f"auth.{AUTH_SECTION}.username={credentials.username}",
        ]
        if credentials.password is not None:
            options.extend(["--config", f"auth.{AUTH_SECTION}.password={credentials.password}"])
        return options

    def hg(
        self,
        subcommand: str,
        *args: str | PathLike,
        remote: Remote | None = None,
        returncodes: Collection[int] = (0,),
    ) -> CommandResult:
        return self.executor.run(
            HG,
            *HG_EXTENSIONS,
            *self.hg_options,
            *self.auth_options(remote),
            subcommand,
            *args,
            returncodes=returncodes,
        )
