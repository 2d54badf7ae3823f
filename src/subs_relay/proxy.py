"""Download proxy: fetch once, unwrap, decode, cache.

Per request the order is fixed: rate check, content cache, join an in-flight
download for the same key, otherwise fetch, validate, sniff, extract, decode
and cache. Soft failures (nothing usable upstream) come back as ``None``;
hard failures raise from :mod:`subs_relay.errors`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Mapping, Optional

import httpx

from .cache import SingleFlight, SlidingWindowRateLimiter, TTLCache
from .encoding import clean_subtitle_text, decode_subtitle
from .errors import ProviderUnavailable, RateLimited, UnsupportedContainer
from .extract import extract_subtitle
from .metrics import DOWNLOAD_COUNT
from .models import DownloadResult
from .providers.base import DEFAULT_HEADERS, Provider, call_with_reauth
from .settings import Settings
from .sniff import ContainerFormat, sniff

log = logging.getLogger("subs_relay.proxy")


def download_key(source: str, url: str, season: Optional[int], episode: Optional[int]) -> str:
    season_part = "" if season is None else str(season)
    episode_part = "" if episode is None else str(episode)
    return f"{source}|{url}|{season_part}|{episode_part}"


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=None, follow_redirects=True)


class DownloadProxy:
    def __init__(
        self,
        providers: Mapping[str, Provider],
        settings: Optional[Settings] = None,
        cache: Optional[TTLCache] = None,
        inflight: Optional[SingleFlight] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        client_factory: Callable[[], httpx.AsyncClient] = _default_client,
    ) -> None:
        self.settings = settings or Settings()
        self.providers: Dict[str, Provider] = dict(providers)
        self.cache = cache if cache is not None else TTLCache(
            default_ttl=self.settings.content_cache_ttl,
            max_size=self.settings.content_cache_max_size,
        )
        self.inflight = inflight if inflight is not None else SingleFlight()
        self.limiter = limiter if limiter is not None else SlidingWindowRateLimiter(
            window=self.settings.ip_rate_limit_window,
            max_requests=self.settings.ip_rate_limit_max,
        )
        self._client_factory = client_factory

    async def fetch(
        self,
        url: str,
        source: str,
        season: Optional[int] = None,
        episode: Optional[int] = None,
        client_key: str = "unknown",
    ) -> Optional[DownloadResult]:
        if not self.limiter.allow(client_key):
            raise RateLimited(client_key, retry_after=self.limiter.retry_after(client_key))

        key = download_key(source, url, season, episode)
        cached = self.cache.get(key)
        if cached is not None:
            log.debug("content cache hit for %s", key)
            return cached

        if key in self.inflight:
            log.info("joining in-flight download for %s", key)
        return await self.inflight.do(key, lambda: self._produce(key, url, source, season, episode))

    async def _produce(
        self,
        key: str,
        url: str,
        source: str,
        season: Optional[int],
        episode: Optional[int],
    ) -> Optional[DownloadResult]:
        try:
            data = await asyncio.wait_for(self._download(url, source), timeout=self.settings.download_timeout)
        except asyncio.TimeoutError:
            log.warning("download timed out after %ss: %s", self.settings.download_timeout, url)
            return None
        except ProviderUnavailable as exc:
            log.warning("download failed for %s: %s", url, exc)
            return None

        container = sniff(data)
        if container in (ContainerFormat.EMPTY, ContainerFormat.ERROR_PAGE):
            log.warning("upstream returned %s for %s", container.value, url)
            return None
        if container == ContainerFormat.UNKNOWN:
            raise UnsupportedContainer(f"unrecognised content from {source}: {data[:8]!r}")

        entry = extract_subtitle(data, container, season, episode)
        if entry is None:
            log.warning("no subtitle file inside %s archive from %s", container.value, url)
            return None
        if not entry.confident:
            log.warning("ambiguous archive for %s, served %s", key, entry.name)

        text = clean_subtitle_text(decode_subtitle(entry.data))
        if not text.strip():
            return None

        result = DownloadResult(text=text, filename=entry.name, confident=entry.confident)
        self.cache.set(key, result)
        DOWNLOAD_COUNT.labels(format=container.value, source=source or "direct").inc()
        return result

    async def _download(self, url: str, source: str) -> Optional[bytes]:
        provider = self.providers.get(source)
        async with self._client_factory() as client:
            if provider is not None:
                return await call_with_reauth(provider, lambda: provider.download(client, url))
            try:
                resp = await client.get(url, headers=DEFAULT_HEADERS)
            except httpx.HTTPError as exc:
                raise ProviderUnavailable(f"GET {url} failed: {exc}") from exc
            if resp.status_code >= 400:
                log.warning("HTTP %s for %s", resp.status_code, url)
                return None
            return resp.content

    def stats(self) -> dict:
        return {
            "content_cache_entries": len(self.cache),
            "content_cache_ttl": self.settings.content_cache_ttl,
            "in_flight": len(self.inflight),
            "rate_limited_clients": len(self.limiter),
            "rate_limit_window": self.settings.ip_rate_limit_window,
            "rate_limit_max": self.settings.ip_rate_limit_max,
        }


__all__ = ["DownloadProxy", "download_key"]
