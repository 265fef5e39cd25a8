from datetime import timedelta
from pathlib import Path

import platformdirs

from .typed_path import AbsDir, Ext, RelDir

MIRROR_NAME: str = "GitHgMirror"
MIRROR_CACHE: AbsDir = AbsDir(Path(platformdirs.user_cache_dir("githgmirror"))) / RelDir(
    "repositories"
)
MIRROR_LOCK_EXTENSION: Ext = Ext(".lock")

LOADING_SUFFIX: str = "..."
DONE_SUFFIX: str = "[done]"
FAILURE_SUFFIX: str = "[failed]"

HG: str = "hg"
AUTH_SECTION: str = "githgmirror"

START_DELAY: timedelta = timedelta(seconds=10)
RESTART_DELAY: timedelta = timedelta(seconds=30)
CLEANUP_INTERVAL: timedelta = timedelta(hours=2)
CLEANUP_RETENTION: timedelta = timedelta(days=7)
EMPTY_BATCH_DELAY: timedelta = timedelta(seconds=10)
MAX_DEGREE_OF_PARALLELISM: int = 10
# One configuration per batch so no job waits for the rest of its batch.
BATCH_SIZE: int = 1
LOG_ROTATION: str = "64 MB"
