"""
Download and decode the remote catalog and analytics feeds.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from brewcatalog.domain.errors import (
    SourceDecodeError,
    SourceNetworkError,
    SourceStatusError,
)
from brewcatalog.domain.models import AnalyticsFeed, CaskEntry, EngineConfig, FormulaEntry
from brewcatalog.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

FORMULA_CACHE_KEY = "formula.jws.json"
CASK_CACHE_KEY = "cask.jws.json"
FORMULA_ANALYTICS_CACHE_KEY = "formula-analytics-90d.json"
CASK_ANALYTICS_CACHE_KEY = "cask-analytics-90d.json"

_FORMULAE = TypeAdapter(List[FormulaEntry])
_CASKS = TypeAdapter(List[CaskEntry])
_ANALYTICS = TypeAdapter(AnalyticsFeed)


@dataclass(frozen=True)
class FeedSpec:
    """A remote feed: where it lives, where it is cached, how it is wrapped."""

    key: str
    url: str
    signed: bool = False


def default_feeds(config: EngineConfig) -> dict:
    return {
        "formulae": FeedSpec(FORMULA_CACHE_KEY, config.formula_url, signed=True),
        "casks": FeedSpec(CASK_CACHE_KEY, config.cask_url, signed=True),
        "formula_analytics": FeedSpec(FORMULA_ANALYTICS_CACHE_KEY, config.formula_analytics_url),
        "cask_analytics": FeedSpec(CASK_ANALYTICS_CACHE_KEY, config.cask_analytics_url),
    }


def unwrap_envelope(raw: bytes, url: str) -> bytes:
    """
    Return the payload of a signed envelope {"payload": "<nested JSON>"}.

    A body that is not an envelope (e.g. a bare JSON list) is returned as is.
    """
    try:
        document = json.loads(raw)
    except ValueError as e:
        raise SourceDecodeError(url, f"failed to decode signed json from {url}: {e}") from e

    if not isinstance(document, dict):
        return raw
    payload = document.get("payload")
    if not isinstance(payload, str):
        raise SourceDecodeError(url, f"signed json from {url} has no string payload")
    return payload.encode("utf-8")


class SourceFetcher:
    """
    Cache-first fetching of remote feeds.

    Network, status and decode failures are raised as distinct SourceError
    subclasses; nothing is retried.
    """

    def __init__(
        self,
        cache: CacheStore,
        timeout: float = 60.0,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self.cache = cache
        self.timeout = timeout
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(follow_redirects=True, timeout=self.timeout)
        )

    async def _download(self, feed: FeedSpec) -> bytes:
        try:
            async with self._client_factory() as client:
                response = await client.get(feed.url)
        except httpx.HTTPError as e:
            raise SourceNetworkError(feed.url, f"failed to fetch {feed.url}: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise SourceStatusError(feed.url, response.status_code, response.reason_phrase)

        body = response.content
        await self.cache.write(feed.key, body)
        logger.info(f"Downloaded {feed.url}")
        return body

    async def fetch(self, feed: FeedSpec, adapter: TypeAdapter) -> Any:
        """
        Fetch and decode `feed`. A cached payload that no longer decodes is
        discarded and downloaded again.
        """
        cached = await self.cache.read(feed.key)
        if cached is not None:
            try:
                result = self._decode(feed, cached, adapter)
                logger.info(f"Loaded {feed.url} from cache {feed.key}")
                return result
            except SourceDecodeError as e:
                logger.warning(f"Discarding undecodable cache entry {feed.key}: {e}")
        return self._decode(feed, await self._download(feed), adapter)

    def _decode(self, feed: FeedSpec, raw: bytes, adapter: TypeAdapter) -> Any:
        payload = unwrap_envelope(raw, feed.url) if feed.signed else raw
        try:
            return adapter.validate_json(payload)
        except ValidationError as e:
            raise SourceDecodeError(feed.url, f"failed to decode json from {feed.url}: {e}") from e

    async def fetch_formulae(self, feed: FeedSpec) -> List[FormulaEntry]:
        return await self.fetch(feed, _FORMULAE)

    async def fetch_casks(self, feed: FeedSpec) -> List[CaskEntry]:
        return await self.fetch(feed, _CASKS)

    async def fetch_analytics(self, feed: FeedSpec) -> AnalyticsFeed:
        return await self.fetch(feed, _ANALYTICS)
