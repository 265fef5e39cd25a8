from __future__ import annotations

from collections.abc import Callable
import dataclasses
from datetime import timedelta
import functools
import os
from pathlib import Path
import signal
import sys
import threading
import traceback
from types import FrameType

import click
from loguru import logger

from .cache import RepositoryCache
from .config import MirroringConfiguration, MirroringSettings
from .config_parser import SettingsParser
from .constants import CLEANUP_RETENTION, MIRROR_CACHE, MIRROR_NAME
from .errors import MirroringError
from .logger import setup_logger
from .mirror import Mirror
from .service import MirrorService
from .sweeper import CleanupSweeper
from .typed_path import AbsDir, AbsFile, Remote
from .types import Direction, ExitCode


def check_for_errors[**P](fn: Callable[P, ExitCode | None]) -> Callable[P, None]:
    @functools.wraps(fn)
    def main(*args: P.args, **kwargs: P.kwargs) -> None:
        try:
            exitcode = fn(*args, **kwargs)
        except BaseException as e:
            logger.debug(f"Threw {type(e)}!")
            logger.trace(traceback.format_exc())
            logger.error(f"{type(e).__name__}: {e}")
            sys.exit(1)
        if exitcode is not None:
            sys.exit(exitcode)

    return main


def load_settings(settings_file: str | None, cache: str | None) -> MirroringSettings | None:
    settings = None
    if settings_file is not None:
        settings = SettingsParser.parse_file(AbsFile(Path(settings_file).absolute()))
    if cache is not None:
        directory = AbsDir(Path(cache).expanduser().absolute())
        if settings is None:
            return MirroringSettings(
                api_endpoint_url="", api_password="", repositories_directory=directory
            )
        settings = dataclasses.replace(settings, repositories_directory=directory)
    return settings


def settings_option[**P, R](fn: Callable[P, R]) -> Callable[P, R]:
    return click.option(
        "--settings",
        "-s",
        "settings_file",
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help="YAML settings file.",
    )(fn)


def cache_option[**P, R](fn: Callable[P, R]) -> Callable[P, R]:
    return click.option(
        "--cache",
        default=None,
        help=f"Directory holding the cached clones (defaults to {os.fspath(MIRROR_CACHE)}).",
        show_default=False,
    )(fn)


@click.group(context_settings=dict(show_default=True))
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Display more output (repeat up to 2 times).",
    show_default=False,
)
@click.option(
    "-q",
    "--quiet",
    count=True,
    help="Display less output (repeat up to 3 times).",
    show_default=False,
)
@check_for_errors
def main(quiet: int, verbose: int) -> None:
    setup_logger(quiet, verbose)
    click.get_current_context().obj = dict(quiet=quiet, verbose=verbose)


@main.command()
@settings_option
@check_for_errors
def run(settings_file: str | None) -> None:
    """Mirror the configurations served by the API until interrupted.

    \b
    Example:
    githgmirror run --settings /etc/githgmirror.yaml
    """
    settings = load_settings(settings_file, None)
    if settings is None:
        raise click.UsageError("--settings is required to run the service.")
    verbosity = click.get_current_context().find_root().obj
    setup_logger(verbosity["quiet"], verbosity["verbose"], settings.log_file)
    service = MirrorService(settings)
    stopped = threading.Event()

    def handle_signal(signum: int, frame: FrameType | None) -> None:
        logger.info(f"Received {signal.Signals(signum).name}.")
        stopped.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)
    service.start()
    stopped.wait()
    service.stop()


@main.command()
@click.argument("hg_uri")
@click.argument("git_uri")
@click.option(
    "--direction",
    "-d",
    type=click.Choice([direction.value for direction in Direction]),
    default=Direction.TWO_WAY.value,
)
@click.option("--git-is-hg", is_flag=True, help="The git uri is a Mercurial repository.")
@settings_option
@cache_option
@check_for_errors
def mirror(
    hg_uri: str,
    git_uri: str,
    direction: str,
    git_is_hg: bool,
    settings_file: str | None,
    cache: str | None,
) -> ExitCode:
    """Mirror a single pair of repositories once.

    \b
    Example:
    githgmirror mirror https://hg.example/repo https://git.example/repo.git -d HgToGit
    """
    settings = load_settings(settings_file, cache)
    if settings is None:
        engine = Mirror(RepositoryCache(MIRROR_CACHE))
    else:
        engine = Mirror.from_settings(settings)
    configuration = MirroringConfiguration(
        hg_clone_uri=Remote(hg_uri),
        git_clone_uri=Remote(git_uri),
        git_uri_is_hg_uri=git_is_hg,
        direction=Direction(direction),
    )
    try:
        engine.mirror(configuration)
    except MirroringError as e:
        logger.error(str(e))
        return 1
    return 0


@main.command()
@click.option(
    "--retention",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds since last access after which a clone is removed.",
)
@settings_option
@cache_option
@check_for_errors
def clean(retention: float | None, settings_file: str | None, cache: str | None) -> None:
    """Remove cached clones that have not been used recently.

    \b
    Example:
    githgmirror clean --cache /var/cache/githgmirror --retention 86400
    """
    settings = load_settings(settings_file, cache)
    root = MIRROR_CACHE if settings is None else settings.repositories_directory
    if retention is not None:
        window = timedelta(seconds=retention)
    elif settings is not None:
        window = settings.cleanup_retention
    else:
        window = CLEANUP_RETENTION
    CleanupSweeper(RepositoryCache(root), window).clean()


if __name__ == "__main__":
    main(prog_name=MIRROR_NAME.lower())
