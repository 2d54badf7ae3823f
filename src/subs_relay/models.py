from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import unquote

_IMDB_RE = re.compile(r"^tt\d+$")


def _positive_int(value: object) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if not text.isdigit():
        return None
    number = int(text)
    return number if number > 0 else None


@dataclass(frozen=True)
class Identifier:
    """Media id plus optional 1-based season/episode."""

    media_id: str
    season: Optional[int] = None
    episode: Optional[int] = None

    @classmethod
    def parse(cls, raw: str) -> "Identifier":
        """Parse a Stremio id such as ``tt0369179:1:2``.

        Clients sometimes encode the colons once or twice (``%3A`` / ``%253A``).
        """
        value = (raw or "").strip()
        for _ in range(3):
            decoded = unquote(value)
            if decoded == value:
                break
            value = decoded
        if value.endswith(".json"):
            value = value[: -len(".json")]
        parts = value.split(":")
        media_id = parts[0]
        season = _positive_int(parts[1]) if len(parts) > 1 else None
        episode = _positive_int(parts[2]) if len(parts) > 2 else None
        return cls(media_id=media_id, season=season, episode=episode)

    @property
    def is_imdb(self) -> bool:
        return bool(_IMDB_RE.match(self.media_id))

    @property
    def is_episode(self) -> bool:
        return self.season is not None and self.episode is not None

    def cache_key(self) -> str:
        season = "" if self.season is None else str(self.season)
        episode = "" if self.episode is None else str(self.episode)
        return f"{self.media_id}:{season}:{episode}"


@dataclass(frozen=True)
class MediaInfo:
    title: str
    year: Optional[str] = None
    original_title: Optional[str] = None


@dataclass(frozen=True)
class SearchRequest:
    """What a provider is asked to look for."""

    title: str
    year: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    kind: str = "movie"

    @property
    def is_series(self) -> bool:
        return self.kind == "series" or self.season is not None


@dataclass(frozen=True)
class RawCandidate:
    name: str
    url: str
    native_id: Optional[str] = None
    detail_url: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None


@dataclass(frozen=True)
class Candidate:
    source_tag: str
    raw_name: str
    url: str
    rank_score: float
    is_season_pack: bool = False
    native_id: Optional[str] = None
    detail_url: Optional[str] = field(default=None, compare=False)
    # Page-structure markers carried through for season-pack expansion.
    season: Optional[int] = field(default=None, compare=False)
    episode: Optional[int] = field(default=None, compare=False)

    @property
    def identity(self) -> str:
        return f"{self.source_tag}|{self.native_id or self.url}"


@dataclass(frozen=True)
class SubtitleRef:
    composite_id: str
    language: str
    download_url: str
    label: str = ""

    def to_stremio(self) -> dict:
        return {"id": self.composite_id, "lang": self.language, "url": self.download_url}


@dataclass(frozen=True)
class DownloadResult:
    text: str
    filename: str = "subtitle.srt"
    confident: bool = True


__all__ = [
    "Candidate",
    "DownloadResult",
    "Identifier",
    "MediaInfo",
    "RawCandidate",
    "SearchRequest",
    "SubtitleRef",
]
