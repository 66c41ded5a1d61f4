"""Relay-based fetch layer for the Figma REST API and its image CDN.

Figma endpoints are reached through a prioritized list of relays (CORS
proxies). Two relay lists exist:

    API    — forwards auth headers, small JSON bodies
    IMAGE  — no auth headers, CDN-style relays first for bandwidth

``fetch_through_relay`` walks one list in order and decides per response
whether to return, rotate, or give up. ``fetch_with_backoff`` wraps it with
Retry-After aware backoff for 429s and bounded retries for network errors.

No client or cache is kept between calls: every attempt opens a fresh
httpx.AsyncClient, so a rate-limited response can never be replayed.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from .. import settings
from ..cancellation import CancelToken, OperationCancelled, delay
from ..config import FIGMA_PRIVATE_RELAY_URL

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Base class for terminal fetch-layer failures."""


class RelayExhaustedError(FetchError):
    """Every relay in the list failed without a usable response."""


class RateLimitExhaustedError(FetchError):
    """The API kept answering 429 until the retry budget ran out."""


class AccessBlockedError(FetchError):
    """Retry-After is so long the access token is effectively banned."""


class NetworkFailureError(FetchError):
    """Network-level failures persisted through every retry."""


class ContentClass(str, enum.Enum):
    API = "api"
    IMAGE = "image"


@dataclass(frozen=True)
class Relay:
    """A relay endpoint. ``template`` receives the URL-encoded target as ``{url}``."""

    name: str
    template: str

    def build(self, target_url: str, cache_bust: bool = True) -> str:
        relay_url = self.template.format(url=quote(target_url, safe=""))
        if cache_bust:
            sep = "&" if "?" in relay_url else "?"
            relay_url = f"{relay_url}{sep}_t={int(time.time() * 1000)}"
        return relay_url


def default_api_relays() -> Tuple[Relay, ...]:
    relays = [Relay("corsproxy.io", "https://corsproxy.io/?{url}")]
    if FIGMA_PRIVATE_RELAY_URL:
        relays.append(Relay("private-worker", FIGMA_PRIVATE_RELAY_URL + "?url={url}"))
    return tuple(relays)


def default_image_relays() -> Tuple[Relay, ...]:
    return (
        Relay("wsrv.nl", "https://wsrv.nl/?url={url}"),
        Relay("weserv.nl", "https://images.weserv.nl/?url={url}"),
        Relay("corsproxy.io", "https://corsproxy.io/?{url}"),
    )


@dataclass
class RelayConfig:
    """Relay lists and retry tunables for one import/fetch session.

    Args:
        api_relays: Ordered relays for API calls (auth headers forwarded).
        image_relays: Ordered relays for rendered-image downloads.
        timeout: Per-request HTTP timeout in seconds.
        transport: Optional httpx transport (tests inject MockTransport).
        cache_bust: Append a timestamp query parameter to every relay URL.
    """

    api_relays: Tuple[Relay, ...] = field(default_factory=default_api_relays)
    image_relays: Tuple[Relay, ...] = field(default_factory=default_image_relays)
    timeout: float = settings.FIGMA_HTTP_TIMEOUT
    transport: Optional[httpx.AsyncBaseTransport] = None
    cache_bust: bool = settings.RELAY_CACHE_BUST
    rotate_delay: float = settings.RELAY_ROTATE_DELAY
    retries: int = settings.FIGMA_FETCH_RETRIES
    backoff_base: float = settings.FIGMA_BACKOFF_BASE
    backoff_floor: float = settings.FIGMA_BACKOFF_FLOOR
    backoff_multiplier: float = settings.FIGMA_BACKOFF_MULTIPLIER
    retry_after_buffer: float = settings.FIGMA_RETRY_AFTER_BUFFER
    ban_threshold: float = settings.FIGMA_BAN_THRESHOLD
    network_retry_delay: float = settings.FIGMA_NETWORK_RETRY_DELAY

    def relays_for(self, content_class: ContentClass) -> Sequence[Relay]:
        if content_class == ContentClass.IMAGE:
            return self.image_relays
        return self.api_relays


async def _send(
    url: str,
    headers: Mapping[str, str],
    config: RelayConfig,
    cancel_token: Optional[CancelToken],
) -> httpx.Response:
    async with httpx.AsyncClient(
        timeout=config.timeout,
        transport=config.transport,
        follow_redirects=True,
    ) as client:
        request = client.get(url, headers=dict(headers))
        if cancel_token is None:
            return await request
        return await cancel_token.guard(request)


async def fetch_through_relay(
    target_url: str,
    headers: Optional[Mapping[str, str]] = None,
    cancel_token: Optional[CancelToken] = None,
    content_class: ContentClass = ContentClass.API,
    config: Optional[RelayConfig] = None,
) -> httpx.Response:
    """GET ``target_url`` through the relays of ``content_class``, in priority order.

    404 and any non-429, non-5xx status are returned as-is. A 429 rotates to
    the next relay, except on the last relay where it is returned so the
    backoff layer can honor Retry-After. 5xx and network errors rotate.

    Raises:
        OperationCancelled: the token fired; no further relays are tried.
        RelayExhaustedError: no relay produced a usable response.
    """
    config = config or RelayConfig()
    headers = headers or {}
    relays = config.relays_for(content_class)
    last_error: Optional[Exception] = None

    for i, relay in enumerate(relays):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        is_last = i == len(relays) - 1
        relay_url = relay.build(target_url, cache_bust=config.cache_bust)

        if content_class == ContentClass.API:
            logger.info("relay: attempt %d/%d via %s", i + 1, len(relays), relay.name)

        try:
            resp = await _send(relay_url, headers, config, cancel_token)
        except OperationCancelled:
            raise
        except httpx.HTTPError as e:
            logger.warning("relay: %s network error: %s", relay.name, e)
            last_error = e
            if not is_last:
                await delay(config.rotate_delay, cancel_token)
            continue

        if resp.status_code == 404:
            return resp

        if resp.status_code == 429:
            logger.warning(
                "relay: %s returned 429 (Retry-After: %s)",
                relay.name, resp.headers.get("Retry-After"),
            )
            if is_last:
                logger.warning("relay: last relay %s is rate limited too", relay.name)
                return resp
            await delay(config.rotate_delay, cancel_token)
            continue

        if resp.status_code >= 500:
            logger.warning(
                "relay: %s server error %d, trying next relay",
                relay.name, resp.status_code,
            )
            continue

        if resp.is_success and content_class == ContentClass.API:
            logger.info("relay: %s succeeded", relay.name)
        return resp

    if last_error is not None:
        raise RelayExhaustedError(
            f"No relay succeeded for {target_url} (last error: {last_error})"
        ) from last_error
    raise RelayExhaustedError(f"No relay succeeded for {target_url}")


def _mask_credential(headers: Mapping[str, str]) -> str:
    for key, value in headers.items():
        if key.lower() == "x-figma-token" and value:
            return f"...{value[-4:]}" if len(value) > 4 else "****"
    return "(none)"


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(int(value.strip()))
    except ValueError:
        return None


async def fetch_with_backoff(
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    cancel_token: Optional[CancelToken] = None,
    retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    config: Optional[RelayConfig] = None,
) -> httpx.Response:
    """Fetch an API URL through the relays, backing off on 429 and network errors.

    A 429 waits Retry-After seconds (plus a small buffer) when the header is
    present, otherwise ``max(base_delay, floor)``; each wait grows the base for
    the next one. A Retry-After above the ban threshold fails immediately.

    Raises:
        OperationCancelled: the token fired during a fetch or a wait.
        AccessBlockedError: Retry-After exceeds the ban threshold.
        RateLimitExhaustedError: still 429 after every retry.
        NetworkFailureError: network failures persisted after every retry.
    """
    config = config or RelayConfig()
    headers = dict(headers or {})
    remaining = config.retries if retries is None else retries
    backoff = config.backoff_base if base_delay is None else base_delay

    while True:
        try:
            resp = await fetch_through_relay(
                url, headers, cancel_token, ContentClass.API, config,
            )
        except OperationCancelled:
            raise
        except (RelayExhaustedError, httpx.HTTPError) as e:
            if remaining <= 0:
                raise NetworkFailureError(
                    f"Figma API unreachable after retries: {e}"
                ) from e
            logger.warning("fetch: network failure, retrying (%d left): %s", remaining, e)
            remaining -= 1
            await delay(config.network_retry_delay, cancel_token)
            continue

        if resp.status_code != 429:
            return resp

        if remaining <= 0:
            raise RateLimitExhaustedError(
                "Figma API rate limit exceeded: every retry was answered with 429. "
                "Wait a few minutes before importing again."
            )

        retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
        if retry_after is not None:
            if retry_after > config.ban_threshold:
                hours = retry_after / 3600
                raise AccessBlockedError(
                    f"Figma access token {_mask_credential(headers)} is blocked by rate limiting.\n"
                    f"Figma asked to wait {int(retry_after)}s (about {hours:.1f}h).\n"
                    "Use an access token from another account, or retry after the wait has passed."
                )
            wait = retry_after + config.retry_after_buffer
        else:
            wait = max(backoff, config.backoff_floor)

        logger.warning(
            "fetch: 429 received, retrying in %.1fs (%d retries left)", wait, remaining,
        )
        await delay(wait, cancel_token)
        remaining -= 1
        backoff = wait * config.backoff_multiplier
