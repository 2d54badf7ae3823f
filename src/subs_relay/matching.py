"""Relevance decisions for one subtitle listing against the requested title.

Structural markers (season/episode numbers) are checked before anything else;
token overlap decides the rest and the fuzzy scorer only rescues near-miss
transliterations and typos for movies.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern

from .fuzzy import fuzzy_match
from .normalize import normalize, significant_tokens, tokens
from .year_filter import extract_years, is_year_match

log = logging.getLogger("subs_relay.matching")

EPISODE_BONUS = 10
SEASON_PACK_BONUS = 5
SERIES_MIN_OVERLAP = 0.6
MOVIE_MIN_OVERLAP = 0.5
SHORT_TITLE_TOKENS = 2

RELEASE_TERMS = {
    "720p", "1080p", "2160p", "480p", "4k", "uhd",
    "bluray", "bdrip", "brrip", "hdrip", "webrip", "web", "webdl", "dvdrip", "dvdscr", "hdtv", "remux",
    "proper", "repack", "extended", "unrated", "directors", "remastered", "limited",
    "x264", "x265", "h264", "h265", "hevc", "xvid", "aac", "dts", "ac3",
}
YEAR_TOKEN_RE = re.compile(r"^(?:19|20)\d{2}$")
NUMBER_TOKEN_RE = re.compile(r"^\d+$")
EPISODE_TOKEN_RE = re.compile(r"^(?:\d{1,2}x\d{1,3}|s\d{1,2}e\d{1,3})$")
SEASON_TOKEN_RE = re.compile(r"^(?:season|сезон|s\d{1,2})$")


@dataclass(frozen=True)
class MatchResult:
    match: bool
    score: float = 0.0
    is_season_pack: bool = False


NO_MATCH = MatchResult(match=False, score=0.0)


def episode_patterns(season: int, episode: int) -> List[Pattern[str]]:
    """Markers naming exactly this season and episode."""
    s, e = int(season), int(episode)
    return [
        re.compile(rf"(?<![a-z0-9])s0*{s}[\s._-]*e0*{e}(?!\d)", re.IGNORECASE),
        re.compile(rf"(?<![0-9])0*{s}x0*{e}(?!\d)", re.IGNORECASE),
        re.compile(rf"season\s*0*{s}(?!\d).*?episode\s*0*{e}(?!\d)", re.IGNORECASE),
        re.compile(rf"сезон\s*0*{s}(?!\d).*?еп(?:изод)?\.?\s*0*{e}(?!\d)", re.IGNORECASE),
    ]


def season_pack_patterns(season: int) -> List[Pattern[str]]:
    """Markers naming the whole season; only consulted when no episode marker matched."""
    s = int(season)
    return [
        re.compile(rf"(?<![a-z0-9])s0*{s}(?!\d)(?![\s._-]*e\d)", re.IGNORECASE),
        re.compile(rf"\bseason[\s._-]*0*{s}(?!\d)(?!.*?\bepisode[\s._-]*\d)", re.IGNORECASE),
        re.compile(rf"\bs0*{s}[\s._-]*(?:complete|full|all)\b", re.IGNORECASE),
        re.compile(rf"\b(?:complete|full)\b.*\bs0*{s}(?!\d)", re.IGNORECASE),
        re.compile(rf"(?<![0-9])0*{s}[\s._-]*(?:complete|full|season)\b", re.IGNORECASE),
        re.compile(rf"сезон[\s._-]*0*{s}(?!\d)(?!.*?еп(?:изод)?\.?[\s._-]*\d)", re.IGNORECASE),
        re.compile(r"\bcomplete[\s._-]+series\b", re.IGNORECASE),
    ]


def has_episode_marker(name: str, season: int, episode: int) -> bool:
    return any(pattern.search(name or "") for pattern in episode_patterns(season, episode))


def is_season_pack_name(name: str, season: int, episode: Optional[int] = None) -> bool:
    if episode is not None and has_episode_marker(name, season, episode):
        return False
    return any(pattern.search(name or "") for pattern in season_pack_patterns(season))


def _overlap(title_words: List[str], normalized_name: str) -> int:
    return sum(1 for word in title_words if word in normalized_name)


def _required(total: int, ratio: float) -> int:
    return max(1, math.ceil(total * ratio))


def _is_continuation(word: str) -> bool:
    return bool(
        YEAR_TOKEN_RE.match(word)
        or word in RELEASE_TERMS
        or word in {"aka", "a"}
        or NUMBER_TOKEN_RE.match(word)
        or EPISODE_TOKEN_RE.match(word)
        or SEASON_TOKEN_RE.match(word)
    )


def _evaluate_series(name: str, normalized_name: str, title: str, season: int, episode: int) -> MatchResult:
    has_episode = has_episode_marker(name, season, episode)
    is_pack = not has_episode and is_season_pack_name(name, season)
    if not has_episode and not is_pack:
        log.debug("series listing %r has no S%02dE%02d or season-pack marker", name, season, episode)
        return NO_MATCH

    title_words = significant_tokens(title)
    overlap = _overlap(title_words, normalized_name)
    if overlap < _required(len(title_words), SERIES_MIN_OVERLAP):
        log.debug("series listing %r does not carry title %r", name, title)
        return NO_MATCH

    bonus = SEASON_PACK_BONUS if is_pack else EPISODE_BONUS
    return MatchResult(match=True, score=float(overlap + bonus), is_season_pack=is_pack)


def _evaluate_movie(name: str, normalized_name: str, title: str, year: Optional[str]) -> MatchResult:
    if year:
        title_years = extract_years(title)
        if not is_year_match(year, text=name, ignore=title_years):
            log.debug("listing %r rejected by year filter (want %s)", name, year)
            return NO_MATCH

    title_words = significant_tokens(title)
    if len(title_words) <= SHORT_TITLE_TOKENS:
        all_title_words = tokens(title)
        name_words = tokens(name)
        if name_words[: len(all_title_words)] != all_title_words:
            return NO_MATCH
        if len(name_words) > len(all_title_words):
            following = name_words[len(all_title_words)]
            if not _is_continuation(following):
                log.debug("%r after %r looks like a different title", following, normalize(title))
                return NO_MATCH

    overlap = _overlap(title_words, normalized_name)
    if overlap >= _required(len(title_words), MOVIE_MIN_OVERLAP):
        return MatchResult(match=True, score=float(overlap))

    fuzzy = fuzzy_match(name, title)
    if fuzzy.match:
        log.debug("fuzzy accepted %r lev=%.2f overlap=%.2f score=%.2f", name, fuzzy.lev, fuzzy.overlap, fuzzy.score)
        return MatchResult(match=True, score=float(round(fuzzy.score * 10)))
    return NO_MATCH


def evaluate(
    name: str,
    title: str,
    year: Optional[str] = None,
    season: Optional[int] = None,
    episode: Optional[int] = None,
) -> MatchResult:
    """Decide whether ``name`` is a subtitle for ``title`` and how well it ranks."""
    normalized_name = normalize(name)
    if not normalized_name or not normalize(title):
        return NO_MATCH
    if season is not None and episode is not None:
        return _evaluate_series(name, normalized_name, title, int(season), int(episode))
    return _evaluate_movie(name, normalized_name, title, year)


__all__ = [
    "EPISODE_BONUS",
    "MatchResult",
    "SEASON_PACK_BONUS",
    "episode_patterns",
    "evaluate",
    "has_episode_marker",
    "is_season_pack_name",
    "season_pack_patterns",
]
