from __future__ import annotations

import io
import logging
import os
import re
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

import py7zr
import rarfile
from py7zr.exceptions import ArchiveError, Bad7zFile
from rarfile import Error as RarError, RarCannotExec

from .errors import ArchiveCorrupt, UnsupportedContainer
from .sniff import ContainerFormat

log = logging.getLogger("subs_relay.extract")

SUBTITLE_EXTENSIONS = {".srt", ".sub", ".ssa", ".ass", ".vtt", ".smi"}


@dataclass(frozen=True)
class ExtractedEntry:
    name: str
    data: bytes
    confident: bool = True


def is_subtitle_entry(path: str) -> bool:
    normalized = path.replace("\\", "/")
    if normalized.startswith("__MACOSX/") or "/__MACOSX/" in normalized:
        return False
    base = os.path.basename(normalized)
    if not base or base.startswith("."):
        return False
    return os.path.splitext(base)[1].lower() in SUBTITLE_EXTENSIONS


def entry_patterns(season: int, episode: int) -> List[Pattern[str]]:
    s, e = int(season), int(episode)
    return [
        re.compile(rf"(?:s0*{s}[\s._-]*e0*{e}|(?<!\d)0*{s}x0*{e})(?!\d)", re.IGNORECASE),
        re.compile(rf"(?:^|[._\-\s])0*{e}[._\-\s]", re.IGNORECASE),
        re.compile(rf"(?<![a-z])(?:e|ep|episode)[\s._-]*0*{e}(?!\d)", re.IGNORECASE),
    ]


def select_entry(
    names: Sequence[str],
    season: Optional[int] = None,
    episode: Optional[int] = None,
) -> Optional[Tuple[str, bool]]:
    """Pick the archive entry to serve.

    Returns ``(name, confident)`` or ``None`` when no entry looks like a subtitle.
    """
    candidates = [name for name in names if is_subtitle_entry(name)]
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0], True

    if season is not None and episode is not None:
        for index, pattern in enumerate(entry_patterns(season, episode)):
            for name in candidates:
                # The bare-number pattern only looks at the file name, not the folder.
                subject = os.path.basename(name.replace("\\", "/")) if index == 1 else name
                if pattern.search(subject):
                    log.debug("picked %s for S%02dE%02d", name, season, episode)
                    return name, True
        log.warning(
            "no entry matches S%02dE%02d among %d files, falling back to %s",
            season,
            episode,
            len(candidates),
            candidates[0],
        )
    else:
        log.info("archive has %d subtitle files, serving %s", len(candidates), candidates[0])
    return candidates[0], False


def _extract_zip(data: bytes, season: Optional[int], episode: Optional[int]) -> Optional[ExtractedEntry]:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = [info.filename for info in archive.infolist() if not info.is_dir()]
            picked = select_entry(names, season, episode)
            if picked is None:
                return None
            name, confident = picked
            return ExtractedEntry(os.path.basename(name), archive.read(name), confident)
    # RuntimeError: encrypted entries need a password
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, NotImplementedError, RuntimeError, OSError, EOFError) as exc:
        raise ArchiveCorrupt(f"ZIP archive could not be read: {exc}") from exc


def _extract_rar(data: bytes, season: Optional[int], episode: Optional[int]) -> Optional[ExtractedEntry]:
    try:
        with rarfile.RarFile(io.BytesIO(data)) as archive:
            names = [info.filename for info in archive.infolist() if not info.isdir()]
            picked = select_entry(names, season, episode)
            if picked is None:
                return None
            name, confident = picked
            return ExtractedEntry(os.path.basename(name), archive.read(name), confident)
    except RarCannotExec as exc:
        raise ArchiveCorrupt(
            "RAR archive extraction failed. Install 'unrar', 'unar', or 'bsdtar' on the host."
        ) from exc
    except (RarError, OSError) as exc:
        raise ArchiveCorrupt(f"RAR archive could not be read: {exc}") from exc


def _extract_7z(data: bytes, season: Optional[int], episode: Optional[int]) -> Optional[ExtractedEntry]:
    try:
        with py7zr.SevenZipFile(io.BytesIO(data)) as archive:
            names = [info.filename for info in archive.list() if not info.is_directory]
            picked = select_entry(names, season, episode)
            if picked is None:
                return None
            name, confident = picked
            with tempfile.TemporaryDirectory(prefix="subs_relay_7z_") as tmpdir:
                archive.extract(path=tmpdir, targets=[name])
                with open(os.path.join(tmpdir, name), "rb") as handle:
                    payload = handle.read()
            return ExtractedEntry(os.path.basename(name), payload, confident)
    except (Bad7zFile, ArchiveError, OSError, EOFError) as exc:
        raise ArchiveCorrupt(f"7z archive could not be read: {exc}") from exc


_EXTRACTORS = {
    ContainerFormat.ZIP: _extract_zip,
    ContainerFormat.RAR: _extract_rar,
    ContainerFormat.SEVEN_ZIP: _extract_7z,
}


def extract_subtitle(
    data: bytes,
    container: ContainerFormat,
    season: Optional[int] = None,
    episode: Optional[int] = None,
) -> Optional[ExtractedEntry]:
    """Return the subtitle entry to serve from ``data``.

    ``None`` means the archive opened fine but holds nothing subtitle-like.
    """
    if container == ContainerFormat.TEXT:
        return ExtractedEntry("subtitle.srt", data, True)
    extractor = _EXTRACTORS.get(container)
    if extractor is None:
        raise UnsupportedContainer(f"Unsupported subtitle container: {container.value}")
    return extractor(data, season, episode)


__all__ = ["ExtractedEntry", "SUBTITLE_EXTENSIONS", "entry_patterns", "extract_subtitle", "is_subtitle_entry", "select_entry"]
