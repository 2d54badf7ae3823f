"""Recover readable text from subtitle bytes of unknown encoding."""

from __future__ import annotations

import logging
import re
from typing import Optional

from charset_normalizer import from_bytes

log = logging.getLogger("subs_relay.encoding")

FALLBACK_ENCODING = "cp1251"
_SUSPECT_RE = re.compile("[\ufffd\x80-\x9f]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def decode_subtitle(data: bytes) -> str:
    """Decode as UTF-8; replacement characters or C1 controls mean it was cp1251."""
    text = data.decode("utf-8", errors="replace")
    if _SUSPECT_RE.search(text):
        log.debug("utf-8 decode looked wrong, retrying as %s", FALLBACK_ENCODING)
        return data.decode(FALLBACK_ENCODING, errors="replace")
    return text


def clean_subtitle_text(text: str) -> str:
    if text.startswith("\ufeff"):
        text = text[1:]
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _CONTROL_RE.sub("", text)


def decode_html(data: bytes, declared: Optional[str] = None) -> str:
    """Decode an HTML page whose charset may be missing or wrong.

    Bulgarian sites commonly serve windows-1251 without saying so.
    """
    if declared:
        try:
            return data.decode(declared)
        except (LookupError, UnicodeDecodeError):
            log.debug("declared charset %s failed, guessing", declared)
    best = from_bytes(data).best()
    if best is not None:
        return str(best)
    return data.decode(FALLBACK_ENCODING, errors="replace")


__all__ = ["FALLBACK_ENCODING", "clean_subtitle_text", "decode_html", "decode_subtitle"]
