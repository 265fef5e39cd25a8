from collections.abc import Collection, Mapping
import os
from os import PathLike
from pathlib import Path

from .config import MirroringConfiguration
from .constants import HG
from .errors import CommandError
from .executor import CommandExecutor, CommandResult, redact
from .mirror import HG_EXTENSIONS
from .typed_path import AbsDir, Remote
from .types import Direction


def quick_configuration(
    hg: str = "https://hg.example.com/project",
    git: str = "https://git.example.com/project.git",
    direction: Direction = Direction.TWO_WAY,
    *,
    git_uri_is_hg_uri: bool = False,
) -> MirroringConfiguration:
    return MirroringConfiguration(
        hg_clone_uri=Remote(hg),
        git_clone_uri=Remote(git),
        git_uri_is_hg_uri=git_uri_is_hg_uri,
        direction=direction,
    )


def subcommand_of(argv: list[str]) -> str:
    args = iter(argv[1:])
    for arg in args:
        if arg == "--config":
            next(args)
            continue
        return arg
    raise ValueError(argv)


def without_extensions(argv: list[str]) -> list[str]:
    """Drop `hg` and the extension flags that every invocation carries."""
    assert argv[: len(HG_EXTENSIONS) + 1] == [HG, *HG_EXTENSIONS]
    return argv[len(HG_EXTENSIONS) + 1 :]


class RecordingExecutor(CommandExecutor):
    """Record commands instead of running them, replying with canned output per subcommand.

    A `clone` creates its target directory with a `.hg` folder inside, as the real one would.
    """

    def __init__(
        self,
        *,
        outputs: Mapping[str, str] | None = None,
        returncodes: Mapping[str, int] | None = None,
    ) -> None:
        super().__init__(env={})
        self.outputs = dict(outputs or {})
        self.returncodes = dict(returncodes or {})
        self.commands: list[list[str]] = []
        self.directories: list[AbsDir | None] = []
        self.close_count = 0

    def run(
        self,
        command: str | PathLike,
        *args: str | PathLike,
        returncodes: Collection[int] = (0,),
    ) -> CommandResult:
        argv = [os.fspath(command), *(os.fspath(arg) for arg in args)]
        self.commands.append(argv)
        self.directories.append(self.cwd)
        subcommand = subcommand_of(argv)
        if subcommand == "clone":
            (Path(argv[-1]) / ".hg").mkdir(parents=True, exist_ok=True)
        returncode = self.returncodes.get(subcommand, 0)
        output = self.outputs.get(subcommand, "")
        if returncode not in returncodes:
            raise CommandError(redact(argv), status=returncode, output=output)
        return CommandResult(output=output, returncode=returncode, args=tuple(redact(argv)))

    def close(self) -> None:
        self.close_count += 1
        super().close()

    @property
    def subcommands(self) -> list[str]:
        return [subcommand_of(argv) for argv in self.commands]
