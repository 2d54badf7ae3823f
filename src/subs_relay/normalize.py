"""Title folding shared by the matcher, the fuzzy scorer and the providers."""

from __future__ import annotations

import re
import unicodedata
from typing import List

_DISALLOWED_RE = re.compile(r"[^a-z0-9\u0400-\u04ff\s]+")
_WHITESPACE_RE = re.compile(r"\s+")
_SEARCH_PUNCT_RE = re.compile(r"[:\-\u2013\u2014,./\\()\[\]\"'`]+")


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return unicodedata.normalize("NFKC", stripped)


def normalize(text: object) -> str:
    """Lower-case, fold diacritics and keep only Latin/Cyrillic letters, digits and spaces."""
    if text is None:
        return ""
    value = _strip_marks(str(text)).lower()
    value = _DISALLOWED_RE.sub(" ", value)
    return _WHITESPACE_RE.sub(" ", value).strip()


def tokens(text: object) -> List[str]:
    value = normalize(text)
    return value.split(" ") if value else []


def significant_tokens(text: object, min_length: int = 3) -> List[str]:
    """Tokens long enough to carry meaning; falls back to every token for titles like "Up"."""
    words = tokens(text)
    long_words = [word for word in words if len(word) >= min_length]
    return long_words or words


def search_query(text: str) -> str:
    """Strip punctuation that the upstream search forms choke on."""
    value = _SEARCH_PUNCT_RE.sub(" ", text or "")
    return _WHITESPACE_RE.sub(" ", value).strip()


__all__ = ["normalize", "tokens", "significant_tokens", "search_query"]
