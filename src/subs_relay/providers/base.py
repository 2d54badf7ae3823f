"""Common plumbing for subtitle sources.

Every source subclasses :class:`Provider`. Contract:

* ``search`` returns ``[]`` when the site simply has nothing,
* ``download`` returns ``None`` when the file is gone,
* network or parse failures raise :class:`ProviderUnavailable`,
* a session that silently logged out raises :class:`UpstreamAuthExpired`.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from ..encoding import decode_html
from ..errors import ProviderUnavailable, UpstreamAuthExpired
from ..matching import has_episode_marker
from ..models import Candidate, RawCandidate, SearchRequest

log = logging.getLogger("subs_relay.providers")

T = TypeVar("T")

BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_HEADERS = {
    "User-Agent": BROWSER_UA,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "bg,en;q=0.9",
}


class Provider:
    tag: str = ""
    base_url: str = ""
    page_encoding: Optional[str] = None
    request_timeout: float = 15.0

    async def search(self, client: httpx.AsyncClient, request: SearchRequest) -> List[RawCandidate]:
        raise NotImplementedError

    async def download(self, client: httpx.AsyncClient, url: str) -> Optional[bytes]:
        resp = await self._request(client, "GET", url, headers={"Referer": self.base_url + "/"})
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, url)
        return resp.content

    async def resolve_episode(
        self,
        client: httpx.AsyncClient,
        candidate: Candidate,
        season: int,
        episode: int,
    ) -> Optional[RawCandidate]:
        """Turn a season pack into an episode-specific link. ``None`` keeps the pack."""
        return None

    async def authenticate(self, force: bool = False) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    # -- helpers ---------------------------------------------------------

    def absolute(self, href: str) -> str:
        return urljoin(self.base_url + "/", href)

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        headers = dict(DEFAULT_HEADERS)
        headers.update(kwargs.pop("headers", None) or {})
        kwargs.setdefault("timeout", self.request_timeout)
        kwargs.setdefault("follow_redirects", True)
        try:
            return await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"{self.tag}: {method} {url} failed: {exc}") from exc

    def _raise_for_status(self, resp: httpx.Response, url: str) -> None:
        if resp.status_code >= 400:
            raise ProviderUnavailable(f"{self.tag}: HTTP {resp.status_code} for {url}")

    def html(self, resp: httpx.Response) -> str:
        declared = self.page_encoding or resp.charset_encoding
        return decode_html(resp.content, declared)

    def soup(self, resp: httpx.Response) -> BeautifulSoup:
        return BeautifulSoup(self.html(resp), "html.parser")


def find_episode_link(
    soup: BeautifulSoup,
    base_url: str,
    season: int,
    episode: int,
    href_filter: str = "",
) -> Optional[Tuple[str, str]]:
    """First anchor whose text or href names ``SxxEyy``; returns ``(text, absolute_url)``."""
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if href_filter and href_filter not in href:
            continue
        text = anchor.get_text(" ", strip=True)
        if has_episode_marker(text, season, episode) or has_episode_marker(href, season, episode):
            return text or href, urljoin(base_url + "/", href)
    log.debug("no S%02dE%02d link among %d anchors", season, episode, len(soup.find_all("a")))
    return None


async def call_with_reauth(provider: Provider, call: Callable[[], Awaitable[T]]) -> T:
    """Run ``call``; on an expired session log in again and retry exactly once."""
    try:
        return await call()
    except UpstreamAuthExpired:
        log.info("[%s] session expired, re-authenticating", provider.tag)
        await provider.authenticate(force=True)
        try:
            return await call()
        except UpstreamAuthExpired as exc:
            raise ProviderUnavailable(f"{provider.tag}: still logged out after re-authentication") from exc


__all__ = ["BROWSER_UA", "DEFAULT_HEADERS", "Provider", "call_with_reauth", "find_episode_link"]
