"""Shared fixtures: zero-delay relay/importer configs and MockTransport helpers."""

from __future__ import annotations

from typing import Callable, Dict, List

import httpx
import pytest

from design_qa.integrations.figma_importer import ImporterConfig
from design_qa.integrations.relay_fetch import Relay, RelayConfig

API_RELAYS = (
    Relay("relay-a", "https://relay-a.test/?url={url}"),
    Relay("relay-b", "https://relay-b.test/?url={url}"),
)
IMAGE_RELAYS = (
    Relay("img-a", "https://img-a.test/?url={url}"),
    Relay("img-b", "https://img-b.test/?url={url}"),
)


def target_of(request: httpx.Request) -> str:
    """The upstream URL a relay request was asked to forward."""
    return request.url.params["url"]


def make_relay_config(handler: Callable, **overrides) -> RelayConfig:
    values = dict(
        api_relays=API_RELAYS,
        image_relays=IMAGE_RELAYS,
        transport=httpx.MockTransport(handler),
        cache_bust=False,
        rotate_delay=0,
        retries=3,
        backoff_base=0,
        backoff_floor=0,
        retry_after_buffer=0.5,
        network_retry_delay=0,
    )
    values.update(overrides)
    return RelayConfig(**values)


def make_importer_config(handler: Callable, **overrides) -> ImporterConfig:
    values = dict(
        relay=make_relay_config(handler),
        text_cooldown=(0, 0),
        image_cooldown=(0, 0),
        image_download_retry_delay=0,
    )
    values.update(overrides)
    return ImporterConfig(**values)


class RequestLog:
    """Records every request a MockTransport handler sees."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []

    def add(self, request: httpx.Request) -> None:
        self.requests.append(request)

    @property
    def hosts(self) -> List[str]:
        return [r.url.host for r in self.requests]

    @property
    def targets(self) -> List[str]:
        return [target_of(r) for r in self.requests]

    def count(self, host: str) -> int:
        return sum(1 for h in self.hosts if h == host)


@pytest.fixture
def request_log() -> RequestLog:
    return RequestLog()


@pytest.fixture
def figma_token() -> str:
    return "figd_test-token-1234"


@pytest.fixture
def file_key() -> str:
    return "AbCdEf1234567890"


def json_response(data: Dict, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=data)
