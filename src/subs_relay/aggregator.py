"""Fan a title out to every source, score what comes back and rank it.

Phase 1 searches the primary sources concurrently (the fallback source only
runs when all of them come back empty) and scores every listing. Phase 2
concurrently asks the owning source to turn season packs into
episode-specific links. Both phases finish before dedup and sorting, so
ranking never depends on which lookup returned first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

import httpx

from .cache import TTLCache
from .errors import NoMatch
from .matching import EPISODE_BONUS, SEASON_PACK_BONUS, evaluate
from .metadata import lookup_media
from .metrics import PROVIDER_CALLS
from .models import Candidate, Identifier, MediaInfo, RawCandidate, SearchRequest, SubtitleRef
from .providers.base import Provider, call_with_reauth
from .settings import Settings

log = logging.getLogger("subs_relay.aggregator")

LANGUAGE = "bul"

MetadataLookup = Callable[[str, str], Optional[MediaInfo]]


def build_proxy_url(base_url: str, candidate: Candidate, identifier: Identifier) -> str:
    params = {"url": candidate.url, "source": candidate.source_tag}
    if identifier.season is not None:
        params["season"] = str(identifier.season)
    if identifier.episode is not None:
        params["episode"] = str(identifier.episode)
    return f"{base_url.rstrip('/')}/proxy?{urlencode(params)}"


def evaluation_label(raw: RawCandidate) -> str:
    """Listing name plus any season/episode the source knows from its page layout."""
    if raw.season is not None and raw.episode is not None:
        return f"{raw.name} S{raw.season:02d}E{raw.episode:02d}"
    if raw.season is not None:
        return f"{raw.name} Season {raw.season}"
    return raw.name


def dedupe(candidates: Sequence[Candidate]) -> List[Candidate]:
    """One entry per identity, highest score wins; first seen wins ties and keeps its position."""
    best: Dict[str, Candidate] = {}
    for candidate in candidates:
        current = best.get(candidate.identity)
        if current is None or candidate.rank_score > current.rank_score:
            best[candidate.identity] = candidate
    # dict preserves first-insertion order even when a value is replaced
    return list(best.values())


def rank(candidates: Sequence[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: c.rank_score, reverse=True)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=None)


class SubtitleAggregator:
    def __init__(
        self,
        providers: Sequence[Provider],
        fallback: Optional[Provider] = None,
        settings: Optional[Settings] = None,
        cache: Optional[TTLCache] = None,
        metadata_lookup: Optional[MetadataLookup] = None,
        client_factory: Callable[[], httpx.AsyncClient] = _default_client,
    ) -> None:
        self.settings = settings or Settings()
        self.providers = list(providers)
        self.fallback = fallback
        self.cache = cache if cache is not None else TTLCache(
            default_ttl=self.settings.search_cache_ttl,
            max_size=self.settings.search_cache_max_size,
        )
        self._metadata_lookup = metadata_lookup or self._lookup_media
        self._client_factory = client_factory
        self._by_tag: Dict[str, Provider] = {p.tag: p for p in self.providers}
        if fallback is not None:
            self._by_tag.setdefault(fallback.tag, fallback)

    def _lookup_media(self, kind: str, media_id: str) -> Optional[MediaInfo]:
        return lookup_media(kind, media_id, self.settings.tmdb_api_key, timeout=self.settings.metadata_timeout)

    async def resolve(self, identifier: Identifier, kind: str, base_url: str) -> List[SubtitleRef]:
        candidates = await self.candidates(identifier, kind)
        return [
            SubtitleRef(
                composite_id=f"{candidate.source_tag}_{ordinal}",
                language=LANGUAGE,
                download_url=build_proxy_url(base_url, candidate, identifier),
                label=candidate.raw_name,
            )
            for ordinal, candidate in enumerate(candidates)
        ]

    async def candidates(self, identifier: Identifier, kind: str) -> List[Candidate]:
        key = identifier.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            log.debug("result cache hit for %s", key)
            return list(cached)

        try:
            ranked = await self._collect(identifier, kind)
        except NoMatch as exc:
            log.info("%s", exc)
            ranked = []
        except Exception:  # noqa: BLE001
            log.exception("aggregation failed for %s", key)
            ranked = []

        ttl = self.settings.search_cache_ttl if ranked else self.settings.empty_search_cache_ttl
        self.cache.set(key, tuple(ranked), ttl=ttl)
        return ranked

    async def _media(self, identifier: Identifier, kind: str) -> Optional[MediaInfo]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._metadata_lookup, kind, identifier.media_id),
                timeout=self.settings.metadata_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("metadata lookup timed out for %s", identifier.media_id)
        except Exception as exc:  # noqa: BLE001
            log.warning("metadata lookup failed for %s: %s", identifier.media_id, exc)
        return None

    async def _collect(self, identifier: Identifier, kind: str) -> List[Candidate]:
        if not identifier.is_imdb:
            log.info("ignoring non-IMDb id %s", identifier.media_id)
            return []
        media = await self._media(identifier, kind)
        if media is None:
            raise NoMatch(f"no title metadata for {identifier.media_id}")

        request = SearchRequest(
            title=media.title,
            year=media.year,
            season=identifier.season,
            episode=identifier.episode,
            kind=kind,
        )
        async with self._client_factory() as client:
            batches = await asyncio.gather(*(self._search(p, client, request) for p in self.providers))
            if not any(raws for _provider, raws in batches) and self.fallback is not None:
                log.info("primary sources empty for %s, asking %s", identifier.cache_key(), self.fallback.tag)
                batches = [await self._search(self.fallback, client, request)]

            scored = self._score(batches, media, identifier)
            if identifier.is_episode:
                scored = await self._expand_packs(client, scored, identifier)

        ranked = rank(dedupe(scored))
        log.info("resolved %s: %d candidates", identifier.cache_key(), len(ranked))
        return ranked

    async def _search(
        self,
        provider: Provider,
        client: httpx.AsyncClient,
        request: SearchRequest,
    ) -> Tuple[Provider, List[RawCandidate]]:
        start = time.perf_counter()
        timeout_flag = False
        error_text = ""
        result: List[RawCandidate] = []
        try:
            result = await asyncio.wait_for(
                call_with_reauth(provider, lambda: provider.search(client, request)),
                timeout=self.settings.search_timeout,
            )
            result = list(result or [])
        except asyncio.TimeoutError:
            timeout_flag = True
            error_text = "timeout"
        except Exception as exc:  # noqa: BLE001
            error_text = str(exc) or exc.__class__.__name__
        duration_ms = (time.perf_counter() - start) * 1000
        log.info(
            "[metrics] provider=%s duration_ms=%.0f count=%s success=%s timeout=%s%s",
            provider.tag,
            duration_ms,
            len(result),
            not error_text,
            timeout_flag,
            f" error={error_text}" if error_text else "",
        )
        outcome = "timeout" if timeout_flag else ("error" if error_text else ("hit" if result else "empty"))
        PROVIDER_CALLS.labels(provider=provider.tag, outcome=outcome).inc()
        return provider, result

    def _score(
        self,
        batches: Sequence[Tuple[Provider, List[RawCandidate]]],
        media: MediaInfo,
        identifier: Identifier,
    ) -> List[Candidate]:
        scored: List[Candidate] = []
        for provider, raws in batches:
            for raw in raws:
                outcome = evaluate(
                    evaluation_label(raw),
                    media.title,
                    year=None if identifier.is_episode else media.year,
                    season=identifier.season,
                    episode=identifier.episode,
                )
                if not outcome.match:
                    continue
                scored.append(
                    Candidate(
                        source_tag=provider.tag,
                        raw_name=raw.name,
                        url=raw.url,
                        rank_score=outcome.score,
                        is_season_pack=outcome.is_season_pack,
                        native_id=raw.native_id,
                        detail_url=raw.detail_url,
                        season=raw.season,
                        episode=raw.episode,
                    )
                )
        return scored

    async def _expand_packs(
        self,
        client: httpx.AsyncClient,
        scored: List[Candidate],
        identifier: Identifier,
    ) -> List[Candidate]:
        packs = [index for index, candidate in enumerate(scored) if candidate.is_season_pack]
        if not packs:
            return scored
        expanded = await asyncio.gather(
            *(self._expand_one(client, scored[index], identifier.season, identifier.episode) for index in packs)
        )
        merged = list(scored)
        for index, candidate in zip(packs, expanded):
            merged[index] = candidate
        return merged

    async def _expand_one(self, client: httpx.AsyncClient, pack: Candidate, season: int, episode: int) -> Candidate:
        provider = self._by_tag.get(pack.source_tag)
        if provider is None:
            return pack
        try:
            raw = await asyncio.wait_for(
                call_with_reauth(provider, lambda: provider.resolve_episode(client, pack, season, episode)),
                timeout=self.settings.search_timeout,
            )
        except asyncio.TimeoutError:
            log.info("[%s] season pack lookup timed out for %s", pack.source_tag, pack.url)
            return pack
        except Exception as exc:  # noqa: BLE001
            log.info("[%s] season pack lookup failed for %s: %s", pack.source_tag, pack.url, exc)
            return pack
        if raw is None:
            return pack
        return Candidate(
            source_tag=pack.source_tag,
            raw_name=raw.name,
            url=raw.url,
            rank_score=pack.rank_score - SEASON_PACK_BONUS + EPISODE_BONUS,
            is_season_pack=False,
            native_id=raw.native_id,
            detail_url=raw.detail_url,
            season=season,
            episode=episode,
        )

    def stats(self) -> dict:
        return {
            "search_cache_entries": len(self.cache),
            "search_cache_ttl": self.settings.search_cache_ttl,
            "empty_search_cache_ttl": self.settings.empty_search_cache_ttl,
            "providers": [p.tag for p in self.providers],
            "fallback": self.fallback.tag if self.fallback else None,
        }


__all__ = ["LANGUAGE", "SubtitleAggregator", "build_proxy_url", "dedupe", "evaluation_label", "rank"]
