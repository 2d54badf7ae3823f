from __future__ import annotations

import logging
from typing import Optional

import requests

from .models import MediaInfo
from .year_filter import normalize_year

log = logging.getLogger("subs_relay.metadata")

# Prefer v3 endpoint; fall back to cinemeta-live if needed
CINEMETA_BASES = [
    "https://v3-cinemeta.strem.io",
    "https://cinemeta-live.strem.io",
]
TMDB_FIND_URL = "https://api.themoviedb.org/3/find/{imdb_id}"
USER_AGENT = "Mozilla/5.0"


def fetch_cinemeta_meta(media_type: str, imdb_id: str, timeout: float = 10.0) -> Optional[dict]:
    meta_type = "series" if media_type == "series" else "movie"
    last_exc: Optional[Exception] = None
    for base in CINEMETA_BASES:
        url = f"{base}/meta/{meta_type}/{imdb_id}.json"
        try:
            resp = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
            if resp.status_code == 404:
                continue
            resp.raise_for_status()
            payload = resp.json() or {}
            meta = payload.get("meta")
            if meta and meta.get("name"):
                return meta
        except (requests.RequestException, ValueError) as exc:
            last_exc = exc
            continue
    if last_exc:
        log.warning("Failed to fetch Cinemeta metadata for %s", imdb_id, exc_info=last_exc)
    else:
        log.info("Cinemeta has no metadata for %s", imdb_id)
    return None


def fetch_tmdb_meta(media_type: str, imdb_id: str, api_key: str, timeout: float = 10.0) -> Optional[dict]:
    try:
        resp = requests.get(
            TMDB_FIND_URL.format(imdb_id=imdb_id),
            params={"api_key": api_key, "external_source": "imdb_id"},
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
        )
        resp.raise_for_status()
        payload = resp.json() or {}
    except (requests.RequestException, ValueError) as exc:
        log.warning("Failed to fetch TMDB metadata for %s: %s", imdb_id, exc)
        return None
    results = payload.get("tv_results" if media_type == "series" else "movie_results") or []
    if not results:
        return None
    item = results[0]
    return {
        "name": item.get("title") or item.get("name"),
        "year": (item.get("release_date") or item.get("first_air_date") or "")[:4],
        "original": item.get("original_title") or item.get("original_name"),
    }


def lookup_media(
    media_type: str,
    imdb_id: str,
    tmdb_api_key: Optional[str] = None,
    timeout: float = 10.0,
) -> Optional[MediaInfo]:
    """Resolve an IMDb id to a title and release year.

    Cinemeta first; TMDB's find endpoint only when an API key is configured.
    Blocking (requests); callers on the event loop go through ``asyncio.to_thread``.
    """
    meta = fetch_cinemeta_meta(media_type, imdb_id, timeout=timeout)
    if meta:
        year = normalize_year(meta.get("year") or meta.get("releaseInfo") or meta.get("released"))
        return MediaInfo(title=str(meta["name"]), year=year or None)

    if tmdb_api_key:
        log.info("Cinemeta failed for %s, trying TMDB", imdb_id)
        tmdb = fetch_tmdb_meta(media_type, imdb_id, tmdb_api_key, timeout=timeout)
        if tmdb and tmdb.get("name"):
            return MediaInfo(
                title=str(tmdb["name"]),
                year=normalize_year(tmdb.get("year")) or None,
                original_title=tmdb.get("original"),
            )

    log.info("No metadata found for %s", imdb_id)
    return None


__all__ = ["fetch_cinemeta_meta", "fetch_tmdb_meta", "lookup_media"]
