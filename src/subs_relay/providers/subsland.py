"""SubsLand provider.

The site sits behind a Cloudflare challenge that answers 403 to most server
IPs; pages are then fetched through a read-through relay that returns the
raw HTML. Results are paginated, and episode searches that find nothing are
retried with just the season so season packs still show up.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
from bs4 import BeautifulSoup

from ..errors import ProviderUnavailable
from ..models import Candidate, RawCandidate, SearchRequest
from ..normalize import search_query
from .base import Provider, find_episode_link

log = logging.getLogger("subs_relay.providers.subsland")

MAX_PAGES = 5
_ID_RE = re.compile(r"-(\d+)\.html")
_PAGE_RE = re.compile(r"[&?]page=(\d+)")


class SubsLandProvider(Provider):
    tag = "subsland"
    base_url = "https://subsland.com"

    def __init__(self, relay_url: Optional[str] = "https://r.jina.ai/") -> None:
        self.relay_url = relay_url

    def search_url(self, query: str, page: int = 0) -> str:
        params = {"s": query, "w": "name", "category": "1"}
        if page:
            params["page"] = str(page)
        return f"{self.base_url}/index.php?{urlencode(params)}"

    async def fetch_page(self, client: httpx.AsyncClient, url: str) -> str:
        resp = await self._request(client, "GET", url)
        if resp.status_code == 403 and self.relay_url:
            log.info("[subsland] 403 for %s, retrying through relay", url)
            resp = await self._request(
                client,
                "GET",
                f"{self.relay_url}{url}",
                headers={"Accept": "text/html", "X-Return-Format": "html"},
                timeout=20.0,
            )
        self._raise_for_status(resp, url)
        return self.html(resp)

    def parse_results(self, html: str) -> Tuple[List[RawCandidate], int]:
        """Return ``(candidates, highest_page_number_linked)``."""
        soup = BeautifulSoup(html, "html.parser")
        found: List[RawCandidate] = []
        for row in soup.find_all("tr"):
            title_link = row.select_one('a[href*="/subtitles/"]')
            if title_link is None:
                continue
            name = title_link.get_text(strip=True)
            href = title_link.get("href") or ""
            id_match = _ID_RE.search(href)
            if len(name) < 2 or not id_match:
                continue
            detail_url = self.absolute(href)
            download_link = row.select_one('a[href*="/downloadsubtitles/"]')
            url = self.absolute(download_link["href"]) if download_link and download_link.get("href") else detail_url
            found.append(RawCandidate(name=name, url=url, native_id=id_match.group(1), detail_url=detail_url))

        max_page = 0
        for anchor in soup.select('a[href*="page="]'):
            match = _PAGE_RE.search(anchor.get("href") or "")
            if match:
                max_page = max(max_page, int(match.group(1)))
        return found, max_page

    async def _collect(self, client: httpx.AsyncClient, query: str) -> List[RawCandidate]:
        html = await self.fetch_page(client, self.search_url(query))
        results, max_page = self.parse_results(html)
        page = 1
        while page <= min(max_page, MAX_PAGES):
            try:
                html = await self.fetch_page(client, self.search_url(query, page))
            except ProviderUnavailable as exc:
                log.warning("[subsland] page %d failed: %s", page, exc)
                break
            more, linked = self.parse_results(html)
            results.extend(more)
            max_page = max(max_page, linked)
            page += 1
        return results

    async def search(self, client: httpx.AsyncClient, request: SearchRequest) -> List[RawCandidate]:
        title = search_query(request.title)
        is_episode = request.season is not None and request.episode is not None
        query = f"{title} S{request.season:02d}E{request.episode:02d}" if is_episode else title
        results = await self._collect(client, query)

        if is_episode and not results:
            broader = f"{title} S{request.season:02d}"
            log.info("[subsland] no episode results, trying %r", broader)
            try:
                results = await self._collect(client, broader)
            except ProviderUnavailable as exc:
                log.warning("[subsland] broader search failed: %s", exc)

        unique: Dict[str, RawCandidate] = {}
        for item in results:
            unique.setdefault(item.native_id or item.url, item)
        log.info("[subsland] query=%r results=%d", query, len(unique))
        return list(unique.values())

    async def download(self, client: httpx.AsyncClient, url: str) -> Optional[bytes]:
        if "/downloadsubtitles/" in url:
            return await super().download(client, url)

        soup = BeautifulSoup(await self.fetch_page(client, url), "html.parser")
        link = soup.select_one('a[href*="/downloadsubtitles/"]')
        if link is None or not link.get("href"):
            log.info("[subsland] no download link on %s", url)
            return None
        target = self.absolute(link["href"])
        resp = await self._request(client, "GET", target, headers={"Referer": url})
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, target)
        return resp.content

    async def resolve_episode(
        self,
        client: httpx.AsyncClient,
        candidate: Candidate,
        season: int,
        episode: int,
    ) -> Optional[RawCandidate]:
        if not candidate.detail_url:
            return None
        soup = BeautifulSoup(await self.fetch_page(client, candidate.detail_url), "html.parser")
        found = find_episode_link(soup, self.base_url, season, episode)
        if not found:
            return None
        text, link = found
        return RawCandidate(
            name=text,
            url=link,
            native_id=f"{candidate.native_id}:{season}:{episode}",
            detail_url=candidate.detail_url,
        )
