from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional, Sequence
from urllib.parse import unquote

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .aggregator import MetadataLookup, SubtitleAggregator
from .cache import SingleFlight, SlidingWindowRateLimiter, TTLCache
from .errors import RateLimited, SubtitleRelayError, UnsupportedContainer
from .logging_setup import REQUEST_ID
from .metrics import PROXY_OUTCOMES, REQ_LATENCY, SEARCH_COUNT
from .models import Identifier
from .providers import Provider, build_providers, build_registry
from .proxy import DownloadProxy
from .settings import Settings

log = logging.getLogger("subs_relay.app")

VERSION = "1.0.0"

MANIFEST = {
    "id": "org.stremio.bgsubtitles",
    "version": VERSION,
    "name": "Bulgarian Subtitles",
    "description": "Bulgarian subtitles from subsunacs.net, subs.sab.bz, subsland.com and easternspirit.org",
    "catalogs": [],
    "resources": ["subtitles"],
    "types": ["movie", "series"],
    "idPrefixes": ["tt"],
    "behaviorHints": {"configurable": False, "configurationRequired": False},
}


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.client.host if request.client else "unknown"


def public_base_url(request: Request, settings: Settings) -> str:
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    base = str(request.base_url).rstrip("/")
    xf_proto = request.headers.get("x-forwarded-proto")
    if settings.force_https or (xf_proto and xf_proto.lower() == "https"):
        base = base.replace("http://", "https://", 1)
    return base


def _optional_int(raw: Optional[str], name: str) -> Optional[int]:
    if raw is None or raw == "":
        return None
    if not raw.isdigit() or int(raw) < 1:
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return int(raw)


def create_app(
    settings: Optional[Settings] = None,
    providers: Optional[Sequence[Provider]] = None,
    fallback: Optional[Provider] = None,
    metadata_lookup: Optional[MetadataLookup] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Wire the aggregator and the download proxy into a FastAPI app.

    All mutable state (caches, in-flight downloads, rate windows) is created
    here, so every app instance is isolated.
    """
    settings = settings or Settings()
    if providers is None:
        primaries, fallback = build_providers(settings, build_registry(settings))
    else:
        primaries = list(providers)
    registry: Dict[str, Provider] = {p.tag: p for p in primaries}
    if fallback is not None:
        registry[fallback.tag] = fallback

    aggregator = SubtitleAggregator(
        primaries,
        fallback=fallback,
        settings=settings,
        cache=TTLCache(default_ttl=settings.search_cache_ttl, max_size=settings.search_cache_max_size, clock=clock),
        metadata_lookup=metadata_lookup,
    )
    proxy = DownloadProxy(
        registry,
        settings=settings,
        cache=TTLCache(default_ttl=settings.content_cache_ttl, max_size=settings.content_cache_max_size, clock=clock),
        inflight=SingleFlight(),
        limiter=SlidingWindowRateLimiter(
            window=settings.ip_rate_limit_window,
            max_requests=settings.ip_rate_limit_max,
            clock=clock,
        ),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Started with providers=%s fallback=%s", [p.tag for p in primaries], fallback.tag if fallback else None)
        yield
        for provider in registry.values():
            await provider.aclose()
        log.info("Shutdown")

    app = FastAPI(title="Bulgarian Subtitles for Stremio", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.aggregator = aggregator
    app.state.proxy = proxy

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        token = REQUEST_ID.set(rid)
        try:
            response = await call_next(request)
        finally:
            REQUEST_ID.reset(token)
        response.headers["X-Request-ID"] = rid
        return response

    @app.get("/")
    async def index() -> JSONResponse:
        return JSONResponse({"status": "ok", "manifest": "/manifest.json", "name": MANIFEST["name"]})

    @app.get("/manifest.json")
    async def manifest() -> JSONResponse:
        return JSONResponse(MANIFEST)

    async def _subtitles(media_type: str, item_id: str, request: Request) -> JSONResponse:
        t0 = time.time()
        if media_type not in {"movie", "series"}:
            raise HTTPException(status_code=404, detail="Unsupported media type")
        SEARCH_COUNT.labels(media_type=media_type).inc()
        identifier = Identifier.parse(unquote(item_id))
        refs = await aggregator.resolve(identifier, media_type, public_base_url(request, settings))
        REQ_LATENCY.labels(route="subtitles").observe(time.time() - t0)
        return JSONResponse({"subtitles": [ref.to_stremio() for ref in refs]})

    @app.get("/subtitles/{media_type}/{item_id}.json")
    async def subtitles(media_type: str, item_id: str, request: Request) -> JSONResponse:
        return await _subtitles(media_type, item_id, request)

    @app.get("/subtitles/{media_type}/{item_id}/{extra}.json")
    async def subtitles_with_extra(media_type: str, item_id: str, extra: str, request: Request) -> JSONResponse:
        # Stremio appends videoHash/videoSize/filename extras; matching works from the id alone.
        return await _subtitles(media_type, item_id, request)

    @app.get("/proxy")
    async def proxy_download(
        request: Request,
        url: Optional[str] = Query(None),
        source: str = Query(""),
        season: Optional[str] = Query(None),
        episode: Optional[str] = Query(None),
    ) -> Response:
        t0 = time.time()
        if not url:
            raise HTTPException(status_code=400, detail="Missing url parameter")
        if not url.lower().startswith(("http://", "https://")):
            raise HTTPException(status_code=400, detail="Only http(s) URLs can be proxied")
        season_no = _optional_int(season, "season")
        episode_no = _optional_int(episode, "episode")

        try:
            result = await proxy.fetch(url, source, season_no, episode_no, client_key=client_key(request))
        except RateLimited as exc:
            PROXY_OUTCOMES.labels(outcome="rate_limited").inc()
            headers = {"Retry-After": str(int(exc.retry_after) + 1)} if exc.retry_after else None
            raise HTTPException(status_code=429, detail="Too many requests", headers=headers)
        except UnsupportedContainer as exc:
            PROXY_OUTCOMES.labels(outcome="unsupported").inc()
            raise HTTPException(status_code=415, detail=str(exc))
        except SubtitleRelayError as exc:
            PROXY_OUTCOMES.labels(outcome="error").inc()
            log.error("proxy failed for %s: %s", url, exc)
            raise HTTPException(status_code=500, detail=f"Error downloading subtitle: {exc}")
        except Exception as exc:  # noqa: BLE001
            PROXY_OUTCOMES.labels(outcome="error").inc()
            log.exception("unexpected proxy failure for %s", url)
            raise HTTPException(status_code=500, detail=f"Error downloading subtitle: {exc}")

        if result is None:
            PROXY_OUTCOMES.labels(outcome="not_found").inc()
            raise HTTPException(status_code=404, detail="Could not download subtitle")

        PROXY_OUTCOMES.labels(outcome="ok").inc()
        REQ_LATENCY.labels(route="proxy").observe(time.time() - t0)
        headers = {"Content-Disposition": 'attachment; filename="subtitle.srt"'}
        if not result.confident:
            headers["X-Subtitle-Match"] = "fallback"
        return PlainTextResponse(result.text, headers=headers)

    @app.get("/healthz")
    async def healthz() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": VERSION})

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/debug")
    async def debug() -> JSONResponse:
        payload: Dict[str, object] = {}
        payload.update(aggregator.stats())
        payload.update(proxy.stats())
        return JSONResponse(payload)

    return app


app = create_app()
