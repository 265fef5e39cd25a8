from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from datetime import timedelta
import difflib
import functools
import inspect
import os
from pathlib import Path
from typing import Any, NoReturn, cast

import yaml
from yaml import MappingNode, Node, ScalarNode, SequenceNode, YAMLError
from yaml.constructor import ConstructorError, SafeConstructor

from .config import MirroringSettings
from .typed_path import AbsDir, AbsFile, RelFile

SCALAR_TYPES: dict[str, str] = {
    "tag:yaml.org,2002:str": "string",
    "tag:yaml.org,2002:int": "integer",
    "tag:yaml.org,2002:float": "float",
    "tag:yaml.org,2002:bool": "boolean",
    "tag:yaml.org,2002:null": "null",
}


@dataclass(frozen=True, slots=True)
class Context:
    filename: RelFile | AbsFile
    node: Node


@dataclass
class ParserError(YAMLError):
    msg: str
    context: Context

    @property
    def position(self) -> str:
        position = str(self.context.filename.path)
        if self.context.node.start_mark is not None:
            position = f"{position}:{self.context.node.start_mark.line + 1}:{self.context.node.start_mark.column + 1}"
        return position

    def __str__(self) -> str:
        return f"An unexpected error occurred during parsing @ {self.position}: {self.msg}"


@dataclass
class SettingsParser:
    filepath: AbsFile | RelFile
    environ: dict[str, str] = field(default_factory=lambda: dict(os.environ), repr=False)
    _node: Node = field(
        init=False, repr=False, hash=False, compare=False, default=Node("", None, None, None)
    )

    def __post_init__(self) -> None:
        self._wrap_methods()

    def _wrap_methods(self) -> None:
        for attr in dir(self):
            method = getattr(self, attr)
            if not attr.startswith("__") and inspect.ismethod(method):
                setattr(self, attr, self._context_wrap(method))

    def _context_wrap[**P, R](self, method: Callable[P, R]) -> Callable[P, R]:
        signature = inspect.signature(method, eval_str=False)

        @functools.wraps(method)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            binding = signature.bind(*args, **kwargs)
            node = binding.arguments.get("node")
            if node is None or node is self._node:
                return method(*args, **kwargs)
            previous_node = self._node
            self._node = node
            try:
                return method(*args, **kwargs)
            finally:
                self._node = previous_node

        return wrapper

    @property
    def context(self) -> Context:
        return Context(self.filepath, self._node)

    def fail(self, message: str, *, node: Node | None = None) -> NoReturn:
        error = ParserError(message, self.context if node is None else Context(self.filepath, node))
        raise error

    def type_of(self, node: Node) -> str:
        match node:
            case ScalarNode():
                if node.value == "" and node.tag.endswith(":str"):
                    return "empty string"
                return SCALAR_TYPES.get(node.tag, node.tag)
            case SequenceNode():
                return "sequence"
            case MappingNode():
                return "mapping"
            case _:
                return "unknown"

    def scalar_value(self, node: Node) -> Any:
        match node:
            case ScalarNode():
                return SafeConstructor().construct_object(node)
        return self.fail(f"expected a scalar, got {self.type_of(node)}.")

    def parse_mapping[T](
        self,
        node: Node,
        subparsers: dict[str, Callable[[Node], Any]],
        combine: Callable[..., T],
        *,
        name: str,
        required: Collection[str],
    ) -> T:
        results = {}
        match node:
            case MappingNode():
                key_node: Node
                value_node: Node
                for key_node, value_node in node.value:
                    key = self.parse_string_key(key_node, options=subparsers.keys())
                    sub_parser = subparsers[key]
                    if key in results:
                        self.fail(f"duplicate key {key!r} in mapping.", node=key_node)
                    results[key] = sub_parser(value_node)
            case _:
                self.fail(f"expected {name} mapping, got {self.type_of(node)}.")
        for key in required:
            if key not in results.keys():
                self.fail(f"{name} mapping is missing the key {key!r}.")
        return combine(**results)

    def parse_string_key[T: str](self, node: Node, options: Collection[T]) -> T:
        match node:
            case ScalarNode() if isinstance(key := node.value, str):
                if key in options:
                    return cast(T, key)
                suggestions = difflib.get_close_matches(key, possibilities=options, n=1)
                if suggestions:
                    [suggestion] = suggestions
                    message = f"invalid key {key!r}, did you mean {suggestion!r}?"
                else:
                    message = f"mapping key should be one of {list(options)!r}, got {key!r}."
                self.fail(message)
        return self.fail(f"expected a string as the key, got {self.type_of(node)}.")

    def parse_string(self, node: Node) -> str:
        value = self.scalar_value(node)
        if not isinstance(value, str) or not value:
            self.fail(f"expected a non-empty string, got {self.type_of(node)}.")
        return value

    def parse_url(self, node: Node) -> str:
        url = self.parse_string(node)
        if not url.startswith(("http://", "https://")):
            self.fail(f"expected an http(s) url, got {url!r}.")
        return url

    def parse_password_variable(self, node: Node) -> str:
        variable = self.parse_string(node)
        try:
            return self.environ[variable]
        except KeyError:
            self.fail(f"the environment variable {variable!r} is not set.")

    def parse_positive_int(self, node: Node) -> int:
        value = self.scalar_value(node)
        if isinstance(value, bool) or not isinstance(value, int):
            self.fail(f"expected a positive integer, got {self.type_of(node)}.")
        if value < 1:
            self.fail(f"expected a positive integer, got {value}.")
        return value

    def parse_duration(self, node: Node) -> timedelta:
        value = self.scalar_value(node)
        if isinstance(value, bool) or not isinstance(value, int | float):
            self.fail(f"expected a duration in seconds, got {self.type_of(node)}.")
        if value < 0:
            self.fail(f"expected a non-negative duration, got {value}.")
        return timedelta(seconds=value)

    def parse_optional_duration(self, node: Node) -> timedelta | None:
        if self.scalar_value(node) is None:
            return None
        return self.parse_duration(node)

    def parse_path(self, node: Node) -> Path:
        path = Path(self.parse_string(node)).expanduser()
        if not path.is_absolute():
            # Relative paths are relative to the settings file.
            path = Path(os.path.abspath(self.filepath.path.parent / path))
        return path

    def parse_directory(self, node: Node) -> AbsDir:
        path = self.parse_path(node)
        if path.exists() and not path.is_dir():
            self.fail(f"{os.fspath(path)!r} is not a directory.")
        return AbsDir(path)

    def parse_log_file(self, node: Node) -> AbsFile:
        path = self.parse_path(node)
        if path.is_dir():
            self.fail(f"{os.fspath(path)!r} is a directory.")
        return AbsFile(path)

    def parse_options(self, node: Node) -> list[str]:
        match node:
            case SequenceNode():
                return [self.parse_string(item) for item in node.value]
        return self.fail(f"expected sequence of options, got {self.type_of(node)}.")

    def combine_settings(self, **values: Any) -> MirroringSettings:
        password = values.pop("api_password", None)
        password_from_env = values.pop("api_password_env", None)
        match password, password_from_env:
            case None, None:
                self.fail("settings mapping is missing the key 'api_password'.")
            case str(), str():
                self.fail("only one of 'api_password' and 'api_password_env' can be given.")
        return MirroringSettings(api_password=password or password_from_env, **values)

    def parse_settings(self, node: Node) -> MirroringSettings:
        return self.parse_mapping(
            node,
            subparsers=dict(
                api_endpoint_url=self.parse_url,
                api_password=self.parse_string,
                api_password_env=self.parse_password_variable,
                repositories_directory=self.parse_directory,
                max_degree_of_parallelism=self.parse_positive_int,
                batch_size=self.parse_positive_int,
                start_delay=self.parse_duration,
                restart_delay=self.parse_duration,
                cleanup_interval=self.parse_duration,
                cleanup_retention=self.parse_duration,
                empty_batch_delay=self.parse_duration,
                command_timeout=self.parse_optional_duration,
                hg_options=self.parse_options,
                log_file=self.parse_log_file,
            ),
            combine=self.combine_settings,
            name="settings",
            required=("api_endpoint_url",),
        )

    def parse(self) -> MirroringSettings:
        with open(self.filepath) as f:
            try:
                tree = yaml.compose(f, Loader=yaml.SafeLoader)
            except ConstructorError as e:
                raise YAMLError(f"Unable to load {self.filepath}.") from e
        if tree is None:
            tree = ScalarNode("tag:yaml.org,2002:null", "")
        return self.parse_settings(tree)

    @classmethod
    def parse_file(cls, filepath: AbsFile | RelFile) -> MirroringSettings:
        parser = cls(filepath)
        return parser.parse()
