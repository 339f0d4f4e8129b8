"""Utility helpers for the FilmDex collections service."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable


WHITESPACE_RE = re.compile(r"\s+")


def normalize_name(value: str | None) -> str:
    """Return a collection name with collapsed, trimmed whitespace."""

    if not value:
        return ""
    value = unicodedata.normalize("NFC", value)
    return WHITESPACE_RE.sub(" ", value).strip()


def unique_names(values: Iterable[str | None]) -> list[str]:
    """Normalise names, drop blanks and keep the first occurrence of each."""

    cleaned: list[str] = []
    seen: set[str] = set()
    for value in values:
        name = normalize_name(value)
        if not name or name in seen:
            continue
        seen.add(name)
        cleaned.append(name)
    return cleaned


def clamp_index(index: int, length: int) -> int:
    """Clamp ``index`` into ``[0, length - 1]`` (``0`` for empty sequences)."""

    if length <= 0:
        return 0
    return max(0, min(index, length - 1))
