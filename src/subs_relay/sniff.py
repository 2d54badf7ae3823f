"""Classify downloaded bytes before anything tries to open them."""

from __future__ import annotations

import enum
import re

ZIP_MAGIC = b"PK"
RAR_MAGIC = b"Rar!"
SEVEN_ZIP_MAGIC = b"7z\xbc\xaf\x27\x1c"

_HEAD_BYTES = 2048
_TIMESTAMP_RE = re.compile(r"(?m)^\s*\d+\s*\r?\n\s*\d{1,2}:\d{2}:\d{2}")
_MICRODVD_RE = re.compile(r"(?m)^\s*\{\d+\}\{\d*\}")
_MARKUP_MARKERS = ("<!doctype", "<html", "<head", "<body")
_ERROR_WORDS = ("error", "not found", "forbidden", "access denied")


class ContainerFormat(enum.Enum):
    ZIP = "zip"
    RAR = "rar"
    SEVEN_ZIP = "7z"
    TEXT = "text"
    ERROR_PAGE = "error_page"
    EMPTY = "empty"
    UNKNOWN = "unknown"

    @property
    def is_archive(self) -> bool:
        return self in (ContainerFormat.ZIP, ContainerFormat.RAR, ContainerFormat.SEVEN_ZIP)


def _head_text(data: bytes) -> str:
    return data[:_HEAD_BYTES].decode("latin-1").lstrip("\xef\xbb\xbf \t\r\n")


def looks_like_subtitle_text(text: str) -> bool:
    if "-->" in text:
        return True
    if _TIMESTAMP_RE.search(text):
        return True
    if _MICRODVD_RE.search(text):
        return True
    stripped = text.lstrip()
    return stripped.startswith("WEBVTT") or "[Script Info]" in text


def looks_like_error_page(data: bytes) -> bool:
    """Markup is always an error page; error words only when no subtitle markers exist."""
    head = _head_text(data)
    lowered = head[:200].lower()
    if any(marker in lowered for marker in _MARKUP_MARKERS):
        return True
    if looks_like_subtitle_text(head):
        return False
    return any(word in lowered[:100] for word in _ERROR_WORDS)


def sniff(data: bytes | None) -> ContainerFormat:
    if not data or not data.strip():
        return ContainerFormat.EMPTY
    if data.startswith(ZIP_MAGIC):
        return ContainerFormat.ZIP
    if data.startswith(RAR_MAGIC):
        return ContainerFormat.RAR
    if data.startswith(SEVEN_ZIP_MAGIC):
        return ContainerFormat.SEVEN_ZIP
    if looks_like_error_page(data):
        return ContainerFormat.ERROR_PAGE
    if looks_like_subtitle_text(_head_text(data)):
        return ContainerFormat.TEXT
    return ContainerFormat.UNKNOWN


__all__ = ["ContainerFormat", "looks_like_error_page", "looks_like_subtitle_text", "sniff"]
