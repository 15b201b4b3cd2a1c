"""
Token-overlap name matching for verifier results.

A verifier lookup by name + address can return a neighbouring business. The
matcher compares the significant words of the searched and found names and
decides whether the result can be trusted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

# Generic filler that says nothing about which organisation this is
STOP_WORDS = frozenset({
    "food", "pantry", "bank",
    "the", "a", "an", "and", "or", "of", "at", "in", "for", "to",
    "community", "center", "program",
})

# Substrings that mark a provider place as food assistance regardless of name
FOOD_PLACE_KEYWORDS = (
    "food pantry",
    "food bank",
    "food distribution",
    "food center",
    "meal site",
    "soup kitchen",
    "feeding",
    "hunger",
    "pantry",
    "meals on wheels",
    "loaves",
    "fishes",
    "harvest",
    "storehouse",
    "cupboard",
)

MATCH_THRESHOLD = 0.5
CLOSE_MATCH_THRESHOLD = 0.3

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class MatchResult:
    is_match: bool
    is_close_match: bool
    ratio: float


def normalize_name(value: str | None) -> str:
    lowered = (value or "").lower()
    return _WHITESPACE_RE.sub(" ", _NON_ALNUM_RE.sub("", lowered)).strip()


def significant_tokens(value: str | None) -> set[str]:
    return {
        token
        for token in normalize_name(value).split(" ")
        if len(token) > 2 and token not in STOP_WORDS
    }


def match_names(searched_name: str | None, found_name: str | None) -> MatchResult:
    searched = significant_tokens(searched_name)
    found = significant_tokens(found_name)

    # Nothing left to compare: accept rather than reject on no evidence.
    if not searched or not found:
        return MatchResult(is_match=True, is_close_match=False, ratio=1.0)

    overlap = len(searched & found)
    ratio = overlap / min(len(searched), len(found))
    return MatchResult(
        is_match=ratio >= MATCH_THRESHOLD,
        is_close_match=CLOSE_MATCH_THRESHOLD <= ratio < MATCH_THRESHOLD,
        ratio=ratio,
    )


def is_food_related_place(name: str | None, types: Iterable[str] | None = None) -> bool:
    lowered = (name or "").lower()
    if any(keyword in lowered for keyword in FOOD_PLACE_KEYWORDS):
        return True
    return "food" in set(types or ())
