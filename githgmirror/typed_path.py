from __future__ import annotations

from dataclasses import dataclass
import os.path
from pathlib import Path
import re
from typing import Self, overload
from urllib.parse import SplitResult, unquote, urlsplit, urlunsplit


@dataclass(frozen=True, slots=True)
class TypedPath:
    path: Path

    def __init__(self, path: Path | str | Self) -> None:
        if type(self) is TypedPath:
            raise TypeError()
        object.__setattr__(self, "path", Path(path))

    def _join[T: TypedPath](self, other: TypedPath, type_: type[T]) -> T:
        return type_(self.path / other.path)

    def exists(self) -> bool:
        return self.path.exists()

    def is_folder(self) -> bool:
        return self.path.is_dir()

    @property
    def name(self) -> str:
        return self.path.name

    def __fspath__(self) -> str:
        return self.path.__fspath__()

    def __str__(self) -> str:
        return repr(str(self.path))


@dataclass(frozen=True, slots=True, init=False)
class RelFile(TypedPath): ...


@dataclass(frozen=True, slots=True, init=False)
class AbsFile(TypedPath): ...


@dataclass(frozen=True, slots=True, init=False)
class RelDir(TypedPath): ...


@dataclass(frozen=True, slots=True, init=False)
class AbsDir(TypedPath):
    @overload
    def __truediv__(self, other: RelFile) -> AbsFile: ...
    @overload
    def __truediv__(self, other: RelDir) -> AbsDir: ...
    def __truediv__(self, other: TypedPath) -> TypedPath:
        match other:
            case RelFile():
                ret_type: type[TypedPath] = AbsFile
            case RelDir():
                ret_type = AbsDir
            case _:
                raise TypeError()
        return self._join(other, ret_type)

    def __add__(self, extension: Ext) -> AbsFile:
        return AbsFile(f"{self.path}{extension.extension}")


@dataclass(frozen=True, slots=True)
class Ext:
    extension: str


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str | None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='*****')"


@dataclass(frozen=True)
class Remote:
    repo: str

    def __fspath__(self) -> str:
        return self.repo

    def __str__(self) -> str:
        return repr(self.without_credentials)

    @property
    def _parts(self) -> SplitResult | None:
        parts = urlsplit(self.repo)
        # Single letter schemes are Windows drives.
        if len(parts.scheme) <= 1 or not parts.netloc:
            return None
        return parts

    @property
    def is_url(self) -> bool:
        return self._parts is not None

    @property
    def canonical(self) -> str:
        parts = self._parts
        if parts is None:
            if os.path.exists(self):
                # Distinguish common relative paths (eg ".").
                return os.path.realpath(self)
            return self._without_trailing_slashes(self.repo)
        return urlunsplit(
            (
                parts.scheme.lower(),
                self._host(parts).lower(),
                self._without_trailing_slashes(parts.path),
                parts.query,
                "",
            )
        )

    @classmethod
    def _without_trailing_slashes(cls, repo: str) -> str:
        strip_trailing_slash_pattern = r"^(.*?)\/*$"
        match = re.match(strip_trailing_slash_pattern, repo, flags=re.DOTALL)
        assert match is not None
        return match.group(1)

    @classmethod
    def _host(cls, parts: SplitResult) -> str:
        return parts.netloc.rpartition("@")[2]

    @property
    def credentials(self) -> Credentials | None:
        parts = self._parts
        if parts is None or parts.username is None:
            return None
        return Credentials(
            username=unquote(parts.username),
            password=None if parts.password is None else unquote(parts.password),
        )

    @property
    def without_credentials(self) -> str:
        parts = self._parts
        if parts is None or "@" not in parts.netloc:
            return self.repo
        return urlunsplit(parts._replace(netloc=self._host(parts)))

    @property
    def without_password(self) -> str:
        parts = self._parts
        if parts is None or parts.password is None:
            return self.repo
        userinfo = parts.netloc.rpartition("@")[0]
        username = userinfo.partition(":")[0]
        return urlunsplit(parts._replace(netloc=f"{username}@{self._host(parts)}"))

    @property
    def auth_prefix(self) -> str:
        """Return the host and path without a scheme so the prefix matches bridged schemes too."""
        parts = self._parts
        if parts is None:
            return "*"
        return f"{self._host(parts)}{parts.path}"

    @property
    def scheme(self) -> str:
        parts = self._parts
        return "" if parts is None else parts.scheme.lower()

    def with_scheme_prefix(self, prefix: str) -> Remote:
        if self.repo.startswith(prefix):
            return self
        return Remote(f"{prefix}{self.repo}")
