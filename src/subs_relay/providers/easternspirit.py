"""EasternSpirit forum downloads (authenticated fallback source).

Listings are forum file entries whose titles carry no episode markers. A
series entry holds one revision per episode, uploaded in order, so episode N
is the N-th revision by id. Search results for series are therefore reported
as season packs and expanded in :meth:`EasternSpiritProvider.resolve_episode`.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional

import httpx

from ..errors import ProviderUnavailable, UpstreamAuthExpired
from ..models import Candidate, RawCandidate, SearchRequest
from ..sniff import looks_like_error_page
from .base import BROWSER_UA, Provider

log = logging.getLogger("subs_relay.providers.easternspirit")

FORUM_URL = "https://www.easternspirit.org/forum/index.php"
_LOGIN_CSRF_RE = re.compile(r"""name=["']csrfKey["']\s*value=["']([^"']+)""")
_SESSION_CSRF_RE = re.compile(r"csrfKey=([a-f0-9]+)")
_FILE_RE = re.compile(r"""/files/file/(\d+)-([^/"'&\s]+)[^"']*["'][^>]*>([^<]{2,})""")
_REVISION_RE = re.compile(r"do=download&(?:amp;)?r=(\d+)")
_SKIP_TITLE_RE = re.compile(r"^\d|comment|reaction", re.IGNORECASE)
_LOGGED_IN_MARKERS = ("Sign Out", "Изход", "Unread Content")


def extract_revisions(html: str) -> List[str]:
    """Revision ids on a file's download page, oldest first."""
    seen = {match for match in _REVISION_RE.findall(html)}
    return sorted(seen, key=int)


def file_url(file_id: str, slug: str) -> str:
    return f"{FORUM_URL}?/files/file/{file_id}-{slug}/&do=download"


class EasternSpiritProvider(Provider):
    tag = "easternspirit"
    base_url = "https://www.easternspirit.org"
    request_timeout = 30.0

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.username = username
        self.password = password
        self._transport = transport
        self._session: Optional[httpx.AsyncClient] = None
        self._csrf: Optional[str] = None
        self._logged_in = False
        self._login_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    def _new_session(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": BROWSER_UA},
            follow_redirects=True,
            timeout=self.request_timeout,
            transport=self._transport,
        )

    async def _reset_session(self) -> httpx.AsyncClient:
        if self._session is not None:
            await self._session.aclose()
        self._session = self._new_session()
        self._logged_in = False
        self._csrf = None
        return self._session

    def _refresh_csrf(self, html: str) -> None:
        match = _SESSION_CSRF_RE.search(html)
        if match:
            self._csrf = match.group(1)

    async def authenticate(self, force: bool = False) -> bool:
        if not self.configured:
            raise ProviderUnavailable("easternspirit: credentials not configured")
        async with self._login_lock:
            if self._logged_in and not force:
                return True
            session = await self._reset_session()
            login_url = f"{FORUM_URL}?/login/"
            try:
                page = await session.get(login_url)
                match = _LOGIN_CSRF_RE.search(page.text)
                if not match:
                    raise ProviderUnavailable("easternspirit: login form has no csrfKey")
                resp = await session.post(
                    login_url,
                    data={
                        "login__standard_submitted": "1",
                        "csrfKey": match.group(1),
                        "auth": self.username,
                        "password": self.password,
                        "remember_me": "1",
                        "_processLogin": "usernamepassword",
                    },
                    headers={"Referer": login_url},
                )
            except httpx.HTTPError as exc:
                raise ProviderUnavailable(f"easternspirit: login request failed: {exc}") from exc

            if not any(marker in resp.text for marker in _LOGGED_IN_MARKERS):
                raise ProviderUnavailable("easternspirit: login rejected")
            self._csrf = match.group(1)
            self._refresh_csrf(resp.text)
            self._logged_in = True
            log.info("[easternspirit] logged in")
            return True

    async def _get(self, url: str) -> httpx.Response:
        await self.authenticate()
        assert self._session is not None
        try:
            return await self._session.get(url)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"easternspirit: GET {url} failed: {exc}") from exc

    async def search(self, client: httpx.AsyncClient, request: SearchRequest) -> List[RawCandidate]:
        await self.authenticate()
        assert self._session is not None
        try:
            resp = await self._session.post(
                f"{FORUM_URL}?/search/",
                data={"csrfKey": self._csrf or "", "q": request.title, "type": "downloads_file"},
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"easternspirit: search failed: {exc}") from exc
        self._raise_for_status(resp, "search")
        html = resp.text
        if not any(marker in html for marker in _LOGGED_IN_MARKERS):
            self._logged_in = False
            raise UpstreamAuthExpired("easternspirit: search answered as a guest")
        self._refresh_csrf(html)

        results: List[RawCandidate] = []
        seen = set()
        for file_id, slug, text in _FILE_RE.findall(html):
            title = text.strip()
            if _SKIP_TITLE_RE.search(title) or file_id in seen:
                continue
            seen.add(file_id)
            url = file_url(file_id, slug)
            results.append(
                RawCandidate(
                    name=title or slug.replace("-", " "),
                    url=url,
                    native_id=file_id,
                    detail_url=url,
                    season=request.season if request.is_series else None,
                )
            )
        log.info("[easternspirit] query=%r results=%d", request.title, len(results))
        return results

    def _with_csrf(self, url: str) -> str:
        if not self._csrf:
            return url
        if "csrfKey=" in url:
            return _SESSION_CSRF_RE.sub(f"csrfKey={self._csrf}", url)
        return f"{url}&csrfKey={self._csrf}"

    async def resolve_episode(
        self,
        client: httpx.AsyncClient,
        candidate: Candidate,
        season: int,
        episode: int,
    ) -> Optional[RawCandidate]:
        page_url = candidate.detail_url or candidate.url
        resp = await self._get(page_url)
        self._refresh_csrf(resp.text)
        revisions = extract_revisions(resp.text)
        if len(revisions) < 2 or not 0 < episode <= len(revisions):
            return None
        revision = revisions[episode - 1]
        return RawCandidate(
            name=f"{candidate.raw_name} S{season:02d}E{episode:02d}",
            url=f"{page_url}&r={revision}",
            native_id=f"{candidate.native_id}_r{revision}",
            detail_url=page_url,
        )

    async def download(self, client: httpx.AsyncClient, url: str) -> Optional[bytes]:
        target = url
        if "&r=" not in url:
            page = await self._get(url)
            self._refresh_csrf(page.text)
            revisions = extract_revisions(page.text)
            if revisions:
                target = f"{url}&r={revisions[-1]}"
            elif not looks_like_error_page(page.content):
                return page.content or None

        resp = await self._get(self._with_csrf(target))
        if resp.status_code == 404:
            return None
        data = resp.content
        if not data:
            return None
        if looks_like_error_page(data):
            self._logged_in = False
            raise UpstreamAuthExpired("easternspirit: got an HTML page instead of a file")
        return data

    async def aclose(self) -> None:
        if self._session is not None:
            await self._session.aclose()
            self._session = None
