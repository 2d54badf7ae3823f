from pathlib import Path
import json
import logging
import sys

SRC_DIR = str((Path(__file__).resolve().parents[1] / "src").resolve())
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

import pytest  # noqa: E402

from subs_relay.logging_setup import REQUEST_ID, JSONFormatter  # noqa: E402
from subs_relay.models import Identifier, SubtitleRef  # noqa: E402
from subs_relay.settings import Settings  # noqa: E402


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("tt0903747:1:2", Identifier("tt0903747", 1, 2)),
        ("tt0903747%3A1%3A2", Identifier("tt0903747", 1, 2)),
        ("tt0903747%253A1%253A2", Identifier("tt0903747", 1, 2)),
        ("tt1375666.json", Identifier("tt1375666")),
        ("tt0903747:0:x", Identifier("tt0903747")),
    ],
)
def test_identifier_parse(raw, expected):
    assert Identifier.parse(raw) == expected


def test_identifier_properties():
    episode = Identifier.parse("tt0903747:1:2")
    assert episode.is_imdb and episode.is_episode
    assert episode.cache_key() == "tt0903747:1:2"
    movie = Identifier.parse("tt1375666")
    assert not movie.is_episode
    assert movie.cache_key() == "tt1375666::"
    assert not Identifier.parse("kitsu:1").is_imdb


def test_subtitle_ref_wire_shape():
    ref = SubtitleRef("subsunacs_0", "bul", "http://relay.test/proxy?url=x", label="Heat")
    assert ref.to_stremio() == {"id": "subsunacs_0", "lang": "bul", "url": "http://relay.test/proxy?url=x"}


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("BG_SUBS_IP_RATE_LIMIT_MAX", "3")
    monkeypatch.setenv("BG_SUBS_EASTERNSPIRIT_USERNAME", "user")
    monkeypatch.setenv("BG_SUBS_EASTERNSPIRIT_PASSWORD", "pass")
    settings = Settings()
    assert settings.ip_rate_limit_max == 3
    assert settings.easternspirit_enabled


def test_json_formatter_includes_request_id():
    record = logging.LogRecord("subs_relay.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    token = REQUEST_ID.set("rid-1")
    try:
        payload = json.loads(JSONFormatter().format(record))
    finally:
        REQUEST_ID.reset(token)
    assert payload["msg"] == "hello world"
    assert payload["rid"] == "rid-1"
    assert payload["level"] == "INFO"
