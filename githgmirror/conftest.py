from pathlib import Path
import sys
import textwrap

from loguru import logger
import pytest
from pytest import LogCaptureFixture
import yaml
from yaml import Node

from .cache import RepositoryCache
from .typed_path import AbsDir


@pytest.fixture
def typed_tmp_path(tmp_path: Path) -> AbsDir:
    return AbsDir(tmp_path)


@pytest.fixture
def repository_cache(typed_tmp_path: AbsDir) -> RepositoryCache:
    return RepositoryCache(typed_tmp_path)


@pytest.fixture(autouse=True)
def log_everything() -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="TRACE",
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{file.path}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    )


@pytest.fixture
def log_level() -> str:
    return "INFO"


@pytest.fixture
def log_cleanly(caplog: LogCaptureFixture, log_level: str) -> None:
    logger.remove()
    logger.add(caplog.handler, level=log_level, colorize=False, format="{message}")


@pytest.fixture
def yaml_node(raw_yaml: str) -> Node:
    raw_yaml = textwrap.dedent(raw_yaml).strip()
    return yaml.compose(raw_yaml, Loader=yaml.SafeLoader)
