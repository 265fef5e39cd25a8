from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import ClassVar

from git.exc import CommandError as GitPythonCommandError

from .config import MirroringConfiguration
from .types import ErrorKind


@dataclass
class TransportError(Exception):
    message: str
    kind: ClassVar[ErrorKind] = ErrorKind.TRANSPORT

    def __str__(self) -> str:
        return self.message


class CommandError(GitPythonCommandError):
    kind: ClassVar[ErrorKind] = ErrorKind.COMMAND

    def __init__(
        self,
        command: Sequence[str],
        status: int | str | Exception | None = None,
        output: str = "",
    ) -> None:
        super().__init__(list(command), status=status, stdout=output)
        self.output = output

    @property
    def returncode(self) -> int | None:
        return self.status if isinstance(self.status, int) else None


class CommandTimeoutError(CommandError):
    _msg = "Cmd('%s') timed out%s"


@dataclass
class MirroringError(Exception):
    configuration: MirroringConfiguration
    cause: BaseException
    retry_next_cycle: bool = False

    def __post_init__(self) -> None:
        self.__cause__ = self.cause

    @property
    def kind(self) -> ErrorKind:
        match self.cause:
            case CommandError():
                return ErrorKind.COMMAND
            case OSError():
                return ErrorKind.FILESYSTEM
        return getattr(self.cause, "kind", ErrorKind.COMMAND)

    @property
    def causes(self) -> tuple[BaseException, ...]:
        return (self.cause,)

    @property
    def headline(self) -> str:
        if self.retry_next_cycle:
            return (
                f"An exception occurred while cloning the repositories {self.configuration}."
                " Cloning will be restarted next time."
            )
        return f"An exception occurred while mirroring the repositories {self.configuration}."

    def __str__(self) -> str:
        return "\n".join(
            [self.headline, *(f"{type(cause).__name__}: {cause}" for cause in self.causes)]
        )


@dataclass
class AggregateMirroringError(MirroringError):
    cleanup_error: BaseException | None = None

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.AGGREGATE

    @property
    def causes(self) -> tuple[BaseException, ...]:
        if self.cleanup_error is None:
            return (self.cause,)
        return (self.cause, self.cleanup_error)

    @property
    def headline(self) -> str:
        return f"{super().headline} Removing the cached clone also failed."


@dataclass
class CacheEntryBusyError(MirroringError):
    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.FILESYSTEM

    @property
    def headline(self) -> str:
        return (
            f"The cached clone for the repositories {self.configuration}"
            " is in use by another job."
        )
