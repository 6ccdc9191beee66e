"""Canonical comparison form for answers and player guesses."""

from __future__ import annotations

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


def normalize_answer(value: str) -> str:
    """Return the comparison form of ``value``.

    Accented characters are decomposed and their combining marks dropped,
    every character that is not an ASCII letter or digit is removed and the
    remainder is lowercased. ``"Café au lait!"`` becomes ``"cafeaulait"``.
    """

    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", stripped).lower()


def normalize_all(values) -> list[str]:
    """Normalize every entry of an iterable of strings."""

    return [normalize_answer(value) for value in values]
