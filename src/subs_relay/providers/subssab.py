from __future__ import annotations

import logging
import re
from typing import List
from urllib.parse import urlencode

import httpx

from ..models import RawCandidate, SearchRequest
from ..normalize import search_query
from .base import Provider

log = logging.getLogger("subs_relay.providers.subssab")

_ATTACH_RE = re.compile(r"attach_id=(\d+)")
RESULT_SELECTOR = 'a[href*="act=download"][onmouseout="hideddrivetip()"]'


class SubsSabProvider(Provider):
    """subs.sab.bz; result links are direct downloads keyed by ``attach_id``."""

    tag = "subssab"
    base_url = "http://subs.sab.bz"
    page_encoding = "cp1251"

    def search_url(self, request: SearchRequest) -> str:
        query = search_query(request.title)
        if request.season is not None and request.episode is not None:
            query = f"{query} {request.season:02d}x{request.episode:02d}"
        params = {"act": "search", "movie": query, "select-language": "2"}
        return f"{self.base_url}/index.php?{urlencode(params)}"

    async def search(self, client: httpx.AsyncClient, request: SearchRequest) -> List[RawCandidate]:
        url = self.search_url(request)
        resp = await self._request(client, "GET", url, headers={"Referer": self.base_url})
        self._raise_for_status(resp, url)
        soup = self.soup(resp)

        results: List[RawCandidate] = []
        for link in soup.select(RESULT_SELECTOR):
            name = link.get_text(strip=True)
            href = link.get("href") or ""
            if len(name) < 2:
                continue
            match = _ATTACH_RE.search(href)
            if not match:
                continue
            results.append(RawCandidate(name=name, url=self.absolute(href), native_id=match.group(1)))
        log.info("[subssab] results=%d", len(results))
        return results
