from pathlib import Path
import sys
from urllib.parse import parse_qs

SRC_DIR = str((Path(__file__).resolve().parents[1] / "src").resolve())
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

import httpx  # noqa: E402
import pytest  # noqa: E402
from bs4 import BeautifulSoup  # noqa: E402

from subs_relay.errors import ProviderUnavailable, UpstreamAuthExpired  # noqa: E402
from subs_relay.models import Candidate, SearchRequest  # noqa: E402
from subs_relay.providers import (  # noqa: E402
    EasternSpiritProvider,
    SubsLandProvider,
    SubsSabProvider,
    SubsunacsProvider,
    build_providers,
    call_with_reauth,
    find_episode_link,
)
from subs_relay.providers.easternspirit import extract_revisions  # noqa: E402
from subs_relay.settings import Settings  # noqa: E402

EPISODE_REQUEST = SearchRequest(title="Breaking Bad", year="2008", season=1, episode=2, kind="series")
MOVIE_REQUEST = SearchRequest(title="Inception", year="2010")
ZIP_BYTES = b"PK\x03\x04fake-zip-payload"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# -- subsunacs ---------------------------------------------------------------

UNACS_RESULTS = """
<html><body><table>
<tr><td><a class="tooltip" href="/subtitles/Breaking_Bad_Season_1-12345/">Breaking Bad - Сезон 1</a></td></tr>
<tr><td><a class="tooltip" href="/subtitles/Breaking_Bad_S01E02-12399/">Breaking Bad S01E02</a></td></tr>
<tr><td><a class="other" href="/news/1/">Новини</a></td></tr>
</table></body></html>
"""


@pytest.mark.asyncio
async def test_subsunacs_search_posts_form_and_parses_cp1251():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, content=UNACS_RESULTS.encode("cp1251"), headers={"content-type": "text/html"})

    async with mock_client(handler) as client:
        results = await SubsunacsProvider().search(client, EPISODE_REQUEST)

    assert seen["method"] == "POST"
    assert seen["path"] == "/search.php"
    assert seen["form"]["m"] == ["Breaking Bad 01x02"]
    assert seen["form"]["y"] == ["0"]
    assert [r.name for r in results] == ["Breaking Bad - Сезон 1", "Breaking Bad S01E02"]
    assert results[0].url == "https://subsunacs.net/subtitles/Breaking_Bad_Season_1-12345/"
    assert results[0].native_id == "12345"


def test_subsunacs_movie_form_carries_year():
    form = SubsunacsProvider().build_form(MOVIE_REQUEST)
    assert form["m"] == "Inception"
    assert form["y"] == "2010"


@pytest.mark.asyncio
async def test_subsunacs_download_follows_detail_page():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if request.url.path == "/get.php":
            return httpx.Response(200, content=ZIP_BYTES)
        return httpx.Response(200, content=b'<html><a href="/get.php?id=12345">Download</a></html>')

    async with mock_client(handler) as client:
        data = await SubsunacsProvider().download(client, "https://subsunacs.net/subtitles/Breaking_Bad-12345/")

    assert data == ZIP_BYTES
    assert requested[-1] == "https://subsunacs.net/get.php?id=12345"


@pytest.mark.asyncio
async def test_subsunacs_download_missing_page_is_none():
    async with mock_client(lambda request: httpx.Response(404)) as client:
        assert await SubsunacsProvider().download(client, "https://subsunacs.net/subtitles/x-1/") is None


@pytest.mark.asyncio
async def test_subsunacs_resolves_episode_from_pack_page():
    page = """
    <html><body>
    <a href="/get.php?id=501">Breaking.Bad.S01E01.srt</a>
    <a href="/get.php?id=502">Breaking.Bad.S01E02.srt</a>
    </body></html>
    """

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=page.encode("cp1251"))

    pack = Candidate(
        "subsunacs",
        "Breaking Bad - Сезон 1",
        "https://subsunacs.net/subtitles/Breaking_Bad_Season_1-12345/",
        7.0,
        is_season_pack=True,
        native_id="12345",
        detail_url="https://subsunacs.net/subtitles/Breaking_Bad_Season_1-12345/",
    )
    async with mock_client(handler) as client:
        raw = await SubsunacsProvider().resolve_episode(client, pack, 1, 2)

    assert raw.name == "Breaking.Bad.S01E02.srt"
    assert raw.url == "https://subsunacs.net/get.php?id=502"
    assert raw.native_id == "502"


@pytest.mark.asyncio
async def test_http_errors_become_provider_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with mock_client(handler) as client:
        with pytest.raises(ProviderUnavailable):
            await SubsunacsProvider().search(client, MOVIE_REQUEST)


# -- subs.sab.bz -------------------------------------------------------------

SAB_RESULTS = """
<html><body>
<a href="http://subs.sab.bz/index.php?act=download&amp;attach_id=777"
   onmouseover="ddrivetip('...')" onmouseout="hideddrivetip()">Inception (2010)</a>
<a href="http://subs.sab.bz/index.php?act=download&amp;attach_id=778">no tooltip, not a result</a>
<a href="http://subs.sab.bz/index.php?act=download" onmouseout="hideddrivetip()">No id</a>
</body></html>
"""


@pytest.mark.asyncio
async def test_subssab_search_reads_tooltip_links():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, content=SAB_RESULTS.encode("cp1251"))

    async with mock_client(handler) as client:
        results = await SubsSabProvider().search(client, MOVIE_REQUEST)

    assert seen["params"] == {"act": "search", "movie": "Inception", "select-language": "2"}
    assert len(results) == 1
    assert results[0].name == "Inception (2010)"
    assert results[0].native_id == "777"
    assert results[0].url == "http://subs.sab.bz/index.php?act=download&attach_id=777"


def test_subssab_episode_query():
    url = SubsSabProvider().search_url(EPISODE_REQUEST)
    assert "movie=Breaking+Bad+01x02" in url


# -- subsland ----------------------------------------------------------------

LAND_PAGE_ONE = """
<html><body><table>
<tr>
  <td><a href="https://subsland.com/subtitles/breaking-bad-s01e02-1001.html">Breaking Bad S01E02</a></td>
  <td><a href="https://subsland.com/downloadsubtitles/breaking-bad-s01e02-1001.zip">Свали</a></td>
</tr>
<tr><td>header row</td></tr>
</table>
<a href="index.php?s=Breaking+Bad+S01E02&amp;page=1">2</a>
</body></html>
"""

LAND_PAGE_TWO = """
<html><body><table>
<tr><td><a href="/subtitles/breaking-bad-s01e02-web-1002.html">Breaking Bad S01E02 WEB</a></td></tr>
<tr><td><a href="/subtitles/breaking-bad-s01e02-1001.html">Breaking Bad S01E02</a></td></tr>
</table>
<a href="index.php?s=Breaking+Bad+S01E02&amp;page=1">2</a>
</body></html>
"""


@pytest.mark.asyncio
async def test_subsland_uses_relay_after_403_and_follows_pages():
    relayed = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "subsland.com":
            return httpx.Response(403, text="Just a moment...")
        relayed.append(str(request.url))
        assert request.headers["x-return-format"] == "html"
        body = LAND_PAGE_TWO if "page=1" in str(request.url) else LAND_PAGE_ONE
        return httpx.Response(200, content=body.encode("utf-8"), headers={"content-type": "text/html; charset=utf-8"})

    async with mock_client(handler) as client:
        results = await SubsLandProvider().search(client, EPISODE_REQUEST)

    assert len(relayed) == 2
    assert relayed[0].startswith("https://r.jina.ai/https://subsland.com/index.php?")
    assert [r.native_id for r in results] == ["1001", "1002"]
    assert results[0].url == "https://subsland.com/downloadsubtitles/breaking-bad-s01e02-1001.zip"
    assert results[0].detail_url == "https://subsland.com/subtitles/breaking-bad-s01e02-1001.html"
    assert results[1].url == "https://subsland.com/subtitles/breaking-bad-s01e02-web-1002.html"


@pytest.mark.asyncio
async def test_subsland_broadens_to_season_when_episode_is_missing():
    queries = []

    def handler(request: httpx.Request) -> httpx.Response:
        query = request.url.params["s"]
        queries.append(query)
        if query.endswith("S01"):
            body = '<table><tr><td><a href="/subtitles/breaking-bad-season-1-2001.html">Breaking Bad Season 1</a></td></tr></table>'
        else:
            body = "<table></table>"
        return httpx.Response(200, content=body.encode("utf-8"), headers={"content-type": "text/html; charset=utf-8"})

    async with mock_client(handler) as client:
        results = await SubsLandProvider(relay_url=None).search(client, EPISODE_REQUEST)

    assert queries == ["Breaking Bad S01E02", "Breaking Bad S01"]
    assert [r.native_id for r in results] == ["2001"]


@pytest.mark.asyncio
async def test_subsland_403_without_relay_is_unavailable():
    async with mock_client(lambda request: httpx.Response(403)) as client:
        with pytest.raises(ProviderUnavailable):
            await SubsLandProvider(relay_url=None).search(client, MOVIE_REQUEST)


# -- easternspirit -------------------------------------------------------------

LOGIN_PAGE = '<form><input type="hidden" name="csrfKey" value="abc123"></form>'
LOGGED_IN = '<a href="?/logout/&amp;csrfKey=def456">Sign Out</a>'
SEARCH_PAGE = LOGGED_IN + """
<ol>
<li><a href="https://www.easternspirit.org/forum/index.php?/files/file/321-breaking-bad/">Breaking Bad</a>
<a href="https://www.easternspirit.org/forum/index.php?/files/file/321-breaking-bad/?tab=comments">3 comments</a></li>
</ol>
"""
REVISIONS_PAGE = LOGGED_IN + """
<a href="index.php?/files/file/321-breaking-bad/&amp;do=download&amp;r=13">E03</a>
<a href="index.php?/files/file/321-breaking-bad/&amp;do=download&amp;r=11">E01</a>
<a href="index.php?/files/file/321-breaking-bad/&amp;do=download&amp;r=12">E02</a>
"""


class EasternSpiritSite:
    def __init__(self, logged_in: bool = True, file_payload: bytes = ZIP_BYTES) -> None:
        self.logged_in = logged_in
        self.file_payload = file_payload
        self.logins = 0
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append((request.method, url))
        if "?/login/" in url:
            if request.method == "GET":
                return httpx.Response(200, text=LOGIN_PAGE)
            self.logins += 1
            return httpx.Response(200, text=LOGGED_IN)
        if "?/search/" in url:
            return httpx.Response(200, text=SEARCH_PAGE if self.logged_in else "<a>Sign In</a>")
        if "&r=" in url:
            if not self.logged_in:
                return httpx.Response(200, text="<!DOCTYPE html><html>Sign In</html>")
            return httpx.Response(200, content=self.file_payload)
        return httpx.Response(200, text=REVISIONS_PAGE)


def test_extract_revisions_sorted_numerically():
    assert extract_revisions(REVISIONS_PAGE) == ["11", "12", "13"]
    assert extract_revisions("do=download&r=9 do=download&r=10") == ["9", "10"]


@pytest.mark.asyncio
async def test_easternspirit_requires_credentials():
    provider = EasternSpiritProvider()
    with pytest.raises(ProviderUnavailable):
        await provider.authenticate()


@pytest.mark.asyncio
async def test_easternspirit_search_logs_in_and_marks_series_as_packs():
    site = EasternSpiritSite()
    provider = EasternSpiritProvider("user", "pass", transport=httpx.MockTransport(site))
    try:
        results = await provider.search(None, EPISODE_REQUEST)
    finally:
        await provider.aclose()

    assert site.logins == 1
    assert len(results) == 1
    assert results[0].name == "Breaking Bad"
    assert results[0].native_id == "321"
    assert results[0].season == 1
    assert results[0].url.endswith("?/files/file/321-breaking-bad/&do=download")


@pytest.mark.asyncio
async def test_easternspirit_guest_search_signals_expired_session():
    site = EasternSpiritSite(logged_in=False)
    provider = EasternSpiritProvider("user", "pass", transport=httpx.MockTransport(site))
    try:
        with pytest.raises(UpstreamAuthExpired):
            await provider.search(None, MOVIE_REQUEST)
        with pytest.raises(ProviderUnavailable):
            await call_with_reauth(provider, lambda: provider.search(None, MOVIE_REQUEST))
    finally:
        await provider.aclose()
    # every guest answer drops the session, so each search logs in again
    assert site.logins == 3


@pytest.mark.asyncio
async def test_easternspirit_resolves_episode_by_revision_order():
    site = EasternSpiritSite()
    provider = EasternSpiritProvider("user", "pass", transport=httpx.MockTransport(site))
    page_url = "https://www.easternspirit.org/forum/index.php?/files/file/321-breaking-bad/&do=download"
    pack = Candidate("easternspirit", "Breaking Bad", page_url, 7.0, True, native_id="321", detail_url=page_url)
    try:
        raw = await provider.resolve_episode(None, pack, 1, 2)
        beyond = await provider.resolve_episode(None, pack, 1, 7)
        data = await provider.download(None, raw.url)
    finally:
        await provider.aclose()

    assert raw.name == "Breaking Bad S01E02"
    assert raw.url == page_url + "&r=12"
    assert raw.native_id == "321_r12"
    assert beyond is None
    assert data == ZIP_BYTES
    assert site.requests[-1][1].endswith("&r=12&csrfKey=def456")


@pytest.mark.asyncio
async def test_easternspirit_download_without_revision_takes_latest():
    site = EasternSpiritSite()
    provider = EasternSpiritProvider("user", "pass", transport=httpx.MockTransport(site))
    page_url = "https://www.easternspirit.org/forum/index.php?/files/file/321-breaking-bad/&do=download"
    try:
        data = await provider.download(None, page_url)
    finally:
        await provider.aclose()
    assert data == ZIP_BYTES
    assert "&r=13" in site.requests[-1][1]


@pytest.mark.asyncio
async def test_easternspirit_html_instead_of_file_is_auth_expiry():
    site = EasternSpiritSite()
    provider = EasternSpiritProvider("user", "pass", transport=httpx.MockTransport(site))
    try:
        await provider.authenticate()
        site.logged_in = False
        with pytest.raises(UpstreamAuthExpired):
            await provider.download(None, "https://www.easternspirit.org/forum/index.php?/files/file/1-x/&do=download&r=5")
    finally:
        await provider.aclose()


# -- shared helpers ------------------------------------------------------------


def test_find_episode_link_matches_text_or_href():
    soup = BeautifulSoup(
        '<a href="/dl/1">Show S01E01</a><a href="/dl/show.s01e02.zip">download</a><a href="/x">Show S01E10</a>',
        "html.parser",
    )
    assert find_episode_link(soup, "https://site.example", 1, 2) == ("download", "https://site.example/dl/show.s01e02.zip")
    assert find_episode_link(soup, "https://site.example", 1, 1) == ("Show S01E01", "https://site.example/dl/1")
    assert find_episode_link(soup, "https://site.example", 2, 1) is None


def test_build_providers_without_credentials_has_no_fallback():
    primaries, fallback = build_providers(Settings(easternspirit_username=None, easternspirit_password=None))
    assert [p.tag for p in primaries] == ["subsunacs", "subssab", "subsland"]
    assert fallback is None


def test_build_providers_with_credentials_enables_fallback():
    primaries, fallback = build_providers(Settings(easternspirit_username="u", easternspirit_password="p"))
    assert fallback is not None
    assert fallback.tag == "easternspirit"
