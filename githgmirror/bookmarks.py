"""Bridge Mercurial bookmarks to the branch model of the other side.

`hg bookmarks` prints one bookmark per line, for example::

       master                    3:8c4f1ab0c1d2
     * feature/login             5:02fd2d2c9e4a

or ``no bookmarks set`` when there are none. The listing is meant for humans so
the parsing here is tied to that layout.
"""

from collections.abc import Sequence
import re

NO_BOOKMARKS = "no bookmarks set"
ACTIVE_MARKER = "*"
# The last column is `rev:node`; bookmark names may contain spaces.
BOOKMARK_LINE_PATTERN = re.compile(r"^(?P<name>.+?)\s+-?\d+:[0-9a-f]+$")


def parse_bookmarks(listing: str) -> list[str]:
    bookmarks = []
    for raw_line in listing.splitlines():
        line = raw_line.strip()
        if not line or line == NO_BOOKMARKS:
            continue
        if line.startswith(f"{ACTIVE_MARKER} "):
            line = line.removeprefix(ACTIVE_MARKER).lstrip()
        match = BOOKMARK_LINE_PATTERN.match(line)
        bookmarks.append(line if match is None else match.group("name"))
    return bookmarks


def push_arguments(bookmarks: Sequence[str]) -> list[str]:
    arguments = ["--new-branch", "--force"]
    for bookmark in bookmarks:
        arguments.extend(["-B", bookmark])
    return arguments
