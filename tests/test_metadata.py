from pathlib import Path
import sys

SRC_DIR = str((Path(__file__).resolve().parents[1] / "src").resolve())
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

import requests  # noqa: E402

from subs_relay import metadata  # noqa: E402
from subs_relay.models import MediaInfo  # noqa: E402


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


def test_cinemeta_falls_through_to_live_mirror(monkeypatch):
    seen = []

    def fake_get(url, headers=None, timeout=None, params=None):
        seen.append(url)
        if url.startswith("https://v3-cinemeta"):
            return FakeResponse(404)
        return FakeResponse(200, {"meta": {"name": "Breaking Bad", "releaseInfo": "2008–2013"}})

    monkeypatch.setattr(metadata.requests, "get", fake_get)

    info = metadata.lookup_media("series", "tt0903747")

    assert info == MediaInfo(title="Breaking Bad", year="2008")
    assert seen == [
        "https://v3-cinemeta.strem.io/meta/series/tt0903747.json",
        "https://cinemeta-live.strem.io/meta/series/tt0903747.json",
    ]


def test_tmdb_is_used_when_cinemeta_fails(monkeypatch):
    def fake_get(url, headers=None, timeout=None, params=None):
        if "cinemeta" in url:
            raise requests.ConnectionError("down")
        assert params["api_key"] == "secret"
        assert params["external_source"] == "imdb_id"
        return FakeResponse(
            200,
            {"movie_results": [{"title": "Inception", "release_date": "2010-07-16", "original_title": "Inception"}]},
        )

    monkeypatch.setattr(metadata.requests, "get", fake_get)

    info = metadata.lookup_media("movie", "tt1375666", tmdb_api_key="secret")

    assert info.title == "Inception"
    assert info.year == "2010"
    assert info.original_title == "Inception"


def test_no_metadata_without_tmdb_key(monkeypatch):
    calls = []

    def fake_get(url, headers=None, timeout=None, params=None):
        calls.append(url)
        raise requests.Timeout("slow")

    monkeypatch.setattr(metadata.requests, "get", fake_get)

    assert metadata.lookup_media("movie", "tt0000001") is None
    assert len(calls) == len(metadata.CINEMETA_BASES)


def test_meta_without_name_is_ignored(monkeypatch):
    monkeypatch.setattr(
        metadata.requests,
        "get",
        lambda url, headers=None, timeout=None, params=None: FakeResponse(200, {"meta": {"year": "1999"}}),
    )
    assert metadata.fetch_cinemeta_meta("movie", "tt0133093") is None
