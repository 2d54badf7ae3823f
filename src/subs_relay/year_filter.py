"""Release-year hints in listing names.

Listings rarely say which year they are for, so a missing year never rejects
anything; only a year that contradicts the requested one does.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import List, Optional, Union

YEAR_PATTERN = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")
MIN_YEAR, MAX_YEAR = 1900, 2099

TextLike = Union[str, bytes, Iterable[Union[str, bytes]], None]


def _as_text(text: TextLike) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        return text.decode("utf-8", "ignore")
    if isinstance(text, str):
        return text
    return " | ".join(_as_text(part) for part in text if part is not None)


def extract_years(text: TextLike) -> List[int]:
    """Distinct years in order of appearance."""
    years: List[int] = []
    for match in YEAR_PATTERN.finditer(_as_text(text)):
        year = int(match.group(0))
        if year not in years:
            years.append(year)
    return years


def extract_year(text: TextLike) -> Optional[str]:
    years = extract_years(text)
    return str(years[0]) if years else None


def coerce_year(value: object) -> Optional[int]:
    """Turn ``2010``, ``"2010"`` or ``"released 2010-07-16"`` into an int year."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        year = value
    else:
        found = extract_years(str(value).strip())
        if not found:
            return None
        year = found[0]
    return year if MIN_YEAR <= year <= MAX_YEAR else None


def normalize_year(raw: object) -> str:
    year = coerce_year(raw) if raw else None
    return str(year) if year else ""


def is_year_match(
    target_year: Union[str, int, None],
    candidate_year: Union[str, int, None] = None,
    *,
    text: TextLike = None,
    tolerance: int = 0,
    ignore: Iterable[int] = (),
) -> bool:
    """Whether the listing's years are compatible with ``target_year``.

    ``ignore`` holds numbers that belong to the title itself ("1917", "2049")
    and therefore say nothing about the release.
    """
    target = coerce_year(target_year)
    if target is None:
        return True

    skipped = set(ignore)
    seen = [year for year in extract_years(text) if year not in skipped]
    explicit = coerce_year(candidate_year)
    if explicit is not None:
        seen.insert(0, explicit)
    if not seen:
        return True
    return any(abs(year - target) <= tolerance for year in seen)


__all__ = ["YEAR_PATTERN", "coerce_year", "extract_year", "extract_years", "is_year_match", "normalize_year"]
