import enum
import io

type ExitCode = int


class Direction(enum.StrEnum):
    GIT_TO_HG = "GitToHg"
    HG_TO_GIT = "HgToGit"
    TWO_WAY = "TwoWay"


class ErrorKind(enum.StrEnum):
    TRANSPORT = "transport"
    COMMAND = "command"
    FILESYSTEM = "filesystem"
    AGGREGATE = "aggregate"


type PyFile = io.TextIOWrapper
