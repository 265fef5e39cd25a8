from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
import os
from os import PathLike
import re
from subprocess import PIPE, STDOUT, Popen, TimeoutExpired
import threading
from types import TracebackType
from typing import Self

import git
from git.util import remove_password_if_present
from loguru import logger

from .errors import CommandError, CommandTimeoutError
from .typed_path import AbsDir
from .utils import strict_not_none

SECRET_CONFIG_PATTERN = re.compile(r"^(?P<key>[^=]*\.password=)(?P<value>.*)$", flags=re.DOTALL)


def redact(args: Sequence[str]) -> list[str]:
    """Hide passwords in URLs and in `--config section.password=...` options."""
    redacted = [SECRET_CONFIG_PATTERN.sub(r"\g<key>*****", arg) for arg in args]
    return remove_password_if_present(redacted)


@dataclass(frozen=True, slots=True, kw_only=True)
class CommandResult:
    output: str
    returncode: int
    args: Sequence[str]

    def log(self, level: str) -> None:
        logger.log(level, f"Running: {' '.join(self.args)}")
        logger.log(level, f"output:\n{self.output}")
        logger.log(level, f"returncode = {self.returncode}")


class CommandExecutor:
    """Run external commands one after another, sharing a working directory."""

    def __init__(
        self,
        *,
        timeout: timedelta | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.timeout = timeout
        self.cwd: AbsDir | None = None
        self._env = self.default_env() if env is None else dict(env)
        self._processes: set[Popen[bytes]] = set()
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def default_env(cls) -> dict[str, str]:
        env = {key: value for key, value in os.environ.items() if not key.startswith("GIT_")}
        # Force untranslated output so it can be parsed.
        env["HGPLAIN"] = "1"
        return env

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        type_: type[BaseException] | None,
        value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def cd(self, directory: AbsDir) -> None:
        logger.trace(f"Changing directory to {directory}")
        self.cwd = directory

    def run(
        self,
        command: str | PathLike,
        *args: str | PathLike,
        returncodes: Collection[int] = (0,),
    ) -> CommandResult:
        argv = [os.fspath(command), *(os.fspath(arg) for arg in args)]
        process = self._launch(argv)
        try:
            return self.wait(process, argv, returncodes=returncodes)
        finally:
            self._forget(process)

    def _launch(self, argv: list[str]) -> Popen[bytes]:
        with self._lock:
            if self._closed:
                raise CommandError(redact(argv), status="executor is closed")
            try:
                process = Popen(
                    argv,
                    cwd=None if self.cwd is None else os.fspath(self.cwd),
                    env=self._env,
                    stdin=PIPE,
                    stdout=PIPE,
                    stderr=STDOUT,
                    text=False,
                )
            except OSError as e:
                logger.debug(f"Unable to launch {redact(argv)[0]}: {e}")
                raise CommandError(redact(argv), status=e) from e
            strict_not_none(process.stdin).close()
            self._processes.add(process)
        return process

    def wait(
        self, process: Popen[bytes], argv: Sequence[str], *, returncodes: Collection[int] = (0,)
    ) -> CommandResult:
        timeout = None if self.timeout is None else self.timeout.total_seconds()
        try:
            stdout, _ = process.communicate(timeout=timeout)
        except TimeoutExpired:
            self._kill(process)
            stdout, _ = process.communicate()
            result = self._result(process, argv, stdout)
            result.log(level="DEBUG")
            raise CommandTimeoutError(
                result.args, status=f"after {timeout} seconds", output=result.output
            ) from None
        result = self._result(process, argv, stdout)
        if result.returncode in returncodes:
            result.log(level="TRACE")
        else:
            result.log(level="DEBUG")
            raise CommandError(result.args, status=result.returncode, output=result.output)
        return result

    @classmethod
    def _result(cls, process: Popen[bytes], argv: Sequence[str], stdout: bytes) -> CommandResult:
        return CommandResult(
            output=strict_not_none(git.safe_decode(stdout or b"")),
            returncode=process.returncode,
            args=tuple(redact(argv)),
        )

    @classmethod
    def _kill(cls, process: Popen[bytes]) -> None:
        if process.poll() is None:
            process.kill()

    def _forget(self, process: Popen[bytes]) -> None:
        with self._lock:
            self._processes.discard(process)

    def close(self) -> None:
        """Kill and reap every live process so the working directory can be removed."""
        with self._lock:
            self._closed = True
            processes = list(self._processes)
            self._processes.clear()
        for process in processes:
            self._kill(process)
            process.wait()
        self.cwd = None
