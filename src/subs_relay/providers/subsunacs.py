from __future__ import annotations

import logging
import re
from typing import List, Optional

import httpx

from ..models import Candidate, RawCandidate, SearchRequest
from ..normalize import search_query
from .base import Provider, find_episode_link

log = logging.getLogger("subs_relay.providers.subsunacs")

_ID_RE = re.compile(r"-(\d+)/?$|[?&]id=(\d+)")


def _native_id(href: str) -> Optional[str]:
    match = _ID_RE.search(href)
    if not match:
        return None
    return match.group(1) or match.group(2)


class SubsunacsProvider(Provider):
    tag = "subsunacs"
    base_url = "https://subsunacs.net"
    page_encoding = "cp1251"

    def build_form(self, request: SearchRequest) -> dict:
        query = search_query(request.title)
        if request.season is not None and request.episode is not None:
            query = f"{query} {request.season:02d}x{request.episode:02d}"
            year = "0"
        else:
            year = request.year or "0"
        return {"m": query, "l": "0", "c": "", "y": year, "a": "", "d": "", "u": "", "g": "", "t": "Submit"}

    async def search(self, client: httpx.AsyncClient, request: SearchRequest) -> List[RawCandidate]:
        form = self.build_form(request)
        resp = await self._request(client, "POST", f"{self.base_url}/search.php", data=form)
        self._raise_for_status(resp, "search.php")
        soup = self.soup(resp)

        results: List[RawCandidate] = []
        for link in soup.select("a.tooltip"):
            name = link.get_text(strip=True)
            href = link.get("href")
            if not name or not href:
                continue
            url = self.absolute(href)
            results.append(RawCandidate(name=name, url=url, native_id=_native_id(href), detail_url=url))
        log.info("[subsunacs] query=%r results=%d", form["m"], len(results))
        return results

    def _download_link(self, soup, page_url: str) -> Optional[str]:
        for anchor in soup.find_all("a", href=True):
            if "get.php" in anchor["href"]:
                return self.absolute(anchor["href"])
        fallback = soup.select_one('a.download, a[title*="Свали"], a[title*="Download"]')
        if fallback is not None and fallback.get("href"):
            return self.absolute(fallback["href"])
        native = _native_id(page_url)
        if native:
            return f"{self.base_url}/get.php?id={native}"
        return None

    async def download(self, client: httpx.AsyncClient, url: str) -> Optional[bytes]:
        if "get.php" in url:
            return await super().download(client, url)

        page = await self._request(client, "GET", url, headers={"Referer": self.base_url})
        if page.status_code == 404:
            return None
        self._raise_for_status(page, url)
        link = self._download_link(self.soup(page), url)
        if not link:
            log.info("[subsunacs] no download link on %s", url)
            return None

        resp = await self._request(client, "GET", link, headers={"Referer": url})
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, link)
        return resp.content

    async def resolve_episode(
        self,
        client: httpx.AsyncClient,
        candidate: Candidate,
        season: int,
        episode: int,
    ) -> Optional[RawCandidate]:
        page_url = candidate.detail_url or candidate.url
        resp = await self._request(client, "GET", page_url, headers={"Referer": self.base_url})
        if resp.status_code >= 400:
            return None
        found = find_episode_link(self.soup(resp), self.base_url, season, episode)
        if not found:
            return None
        text, link = found
        return RawCandidate(
            name=text,
            url=link,
            native_id=_native_id(link) or f"{candidate.native_id}:{season}:{episode}",
            detail_url=page_url,
        )
