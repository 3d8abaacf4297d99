from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qs, urlsplit

import pytest

from gristle.client import GristClient
from gristle.config import GristConfig
from gristle.transport import Transport


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(
        self,
        status_code: int = 200,
        body: Any = "",
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if isinstance(body, bytes):
            self.content = body
        elif isinstance(body, str):
            self.content = body.encode("utf-8")
        else:
            self.content = json.dumps(body).encode("utf-8")
        self.text = self.content.decode("utf-8", errors="replace")
        self.status_code = status_code
        self.headers = dict(headers or {"Content-Type": "application/json"})


@dataclass
class Call:
    method: str
    url: str
    kwargs: Dict[str, Any]

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def query(self) -> Dict[str, str]:
        return {key: values[0] for key, values in parse_qs(urlsplit(self.url).query).items()}

    def json_body(self) -> Any:
        return json.loads(self.kwargs["data"].decode("utf-8"))


@dataclass
class FakeSession:
    """Records every request and replays queued responses; the last one repeats."""

    responses: List[Any] = field(default_factory=lambda: [FakeResponse(200, {})])
    calls: List[Call] = field(default_factory=list)

    def queue(self, *responses: Any) -> None:
        self.responses = list(responses)

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(Call(method=method, url=url, kwargs=kwargs))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def config() -> GristConfig:
    return GristConfig(url="https://grist.example.test/", token="test-token")


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def transport(config: GristConfig, session: FakeSession) -> Transport:
    return Transport(config, timeout=5, session=session)  # type: ignore[arg-type]


@pytest.fixture
def client(config: GristConfig, session: FakeSession) -> GristClient:
    return GristClient(config, timeout=5, session=session)  # type: ignore[arg-type]
