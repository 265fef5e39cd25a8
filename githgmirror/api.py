from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Self

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import MirroringConfiguration, MirroringSettings
from .errors import TransportError
from .logger import describe
from .typed_path import Remote
from .types import Direction
from .utils import strict_cast

REQUEST_TIMEOUT_SECONDS = 30
TAKE_PATH = "Take"
DIRECTIONS_BY_ORDINAL: tuple[Direction, ...] = (
    Direction.GIT_TO_HG,
    Direction.HG_TO_GIT,
    Direction.TWO_WAY,
)


def build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


@dataclass
class ConfigSourceClient:
    endpoint: str
    password: str = field(repr=False)
    session: requests.Session = field(default_factory=build_session, repr=False)

    @classmethod
    def from_settings(cls, settings: MirroringSettings) -> Self:
        return cls(settings.api_endpoint_url, settings.api_password)

    @property
    def take_url(self) -> str:
        return f"{self.endpoint.rstrip('/')}/{TAKE_PATH}"

    def fetch(self, batch_size: int) -> list[MirroringConfiguration]:
        with describe(f"Fetching {batch_size} configuration(s)", error_level="DEBUG"):
            records = self._get(params=dict(count=batch_size, password=self.password))
            if not isinstance(records, list):
                raise TransportError(
                    f"Expected a list of configurations from {self.take_url}, "
                    f"got {type(records).__name__}."
                )
            return [self.parse_record(record) for record in records]

    def _get(self, params: Mapping[str, Any]) -> Any:
        try:
            response = self.session.get(
                self.take_url, params=params, timeout=REQUEST_TIMEOUT_SECONDS
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            # The URL of the response carries the password.
            status = "unknown" if e.response is None else e.response.status_code
            raise TransportError(
                f"Fetching configurations from {self.take_url} failed with status {status}."
            ) from None
        except requests.RequestException as e:
            raise TransportError(
                f"Unable to fetch configurations from {self.take_url} ({type(e).__name__})."
            ) from None
        try:
            return response.json()
        except ValueError:
            raise TransportError(f"{self.take_url} did not return valid JSON.") from None

    @classmethod
    def parse_record(cls, record: Any) -> MirroringConfiguration:
        if not isinstance(record, dict):
            raise TransportError(f"Expected a configuration object, got {type(record).__name__}.")
        try:
            return MirroringConfiguration(
                hg_clone_uri=Remote(cls._string(record, "HgCloneUri")),
                git_clone_uri=Remote(cls._string(record, "GitCloneUri")),
                git_uri_is_hg_uri=cls._boolean(record, "GitUrlIsHgUrl"),
                direction=cls.parse_direction(record.get("Direction")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Invalid configuration record: {e}") from None

    @classmethod
    def _string(cls, record: dict[str, Any], key: str) -> str:
        value = record[key]
        if not isinstance(value, str) or not value:
            raise TypeError(f"{key!r} should be a non-empty string.")
        return value

    @classmethod
    def _boolean(cls, record: dict[str, Any], key: str) -> bool:
        try:
            return strict_cast(bool, record.get(key, False))
        except TypeError:
            raise TypeError(f"{key!r} should be a boolean.") from None

    @classmethod
    def parse_direction(cls, value: Any) -> Direction:
        match value:
            case bool():
                pass
            case int() if 0 <= value < len(DIRECTIONS_BY_ORDINAL):
                return DIRECTIONS_BY_ORDINAL[value]
            case str():
                for direction in Direction:
                    if value.lower() in (direction.value.lower(), direction.name.lower()):
                        return direction
        raise ValueError(f"unknown direction {value!r}.")
