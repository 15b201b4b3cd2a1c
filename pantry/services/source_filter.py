"""
Source filtering for discovery candidates.

Drops candidates that come from unreliable origins (social networks, review
sites), that are clearly not food-assistance sites by name, or that point at
directory / generic government pages instead of a single location.
"""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urlsplit

from loguru import logger

from pantry.models import CandidateResource

BLOCKED_DOMAINS = (
    "nextdoor.com",
    "facebook.com",
    "fb.com",
    "reddit.com",
    "twitter.com",
    "x.com",
    "instagram.com",
    "tiktok.com",
    "yelp.com",
)

_FOOD = r"(?!.*\b(food|pantry|bank|donation|feeding)\b)"

BLOCKED_NAME_PATTERNS = [
    # Directory / listing pages
    re.compile(r"\b(food\s+)?assistance\s+director(y|ies)\b", re.I),
    re.compile(r"\bfood\s+bank\s+director(y|ies)\b", re.I),
    re.compile(r"\bfood\s+pantry\s+director(y|ies)\b", re.I),
    re.compile(r"\bresource\s+director(y|ies)\b", re.I),
    re.compile(r"\b(food\s+)?resources?\s+list(ing)?s?\b", re.I),
    re.compile(r"\bfood\s+locator\b", re.I),
    re.compile(r"\bfood\s+finder\b", re.I),
    re.compile(r"\bmember\s+(organizations?|agencies)\b(?!.*\b(food pantry|food bank)\b)", re.I),
    re.compile(r"\bpartner\s+(organizations?|agencies)\b(?!.*\b(food pantry|food bank)\b)", re.I),
    # Schools, unless they explicitly run a pantry
    re.compile(r"\b(elementary|middle|high|junior high|senior high)\s+school\b(?!.*\b(food pantry|food bank|pantry)\b)", re.I),
    re.compile(r"\b(university|college)\b(?!.*\b(food pantry|food bank|pantry)\b)", re.I),
    re.compile(r"\bschool\b(?!.*\b(food pantry|food bank|pantry)\b)", re.I),
    # Commercial businesses
    re.compile(r"\b(meal prep|restaurant|cafe|grocery|market|store)\b", re.I),
    # Law enforcement
    re.compile(r"\bsheriff'?s?\s+(office|department|dept)\b" + _FOOD, re.I),
    re.compile(r"\bpolice\s+(department|dept|station|office)\b" + _FOOD, re.I),
    re.compile(r"\blaw\s+enforcement\b" + _FOOD, re.I),
    re.compile(r"\bcorrections\s+(department|facility|office)\b", re.I),
    re.compile(r"\bjail\b(?!.*\b(food|pantry|bank)\b)", re.I),
    re.compile(r"\bdetention\s+center\b(?!.*\b(food|pantry|bank)\b)", re.I),
    # Government offices
    re.compile(r"\b(city hall|county office|dmv|department of)\b(?!.*\b(food|nutrition|wic|pantry|bank)\b)", re.I),
    re.compile(r"\b(borough office|municipal office)\b(?!.*\b(food|pantry|bank|distribution)\b)", re.I),
    re.compile(r"\b(procurement|public works|administration)\b(?!.*\b(food|pantry|bank|nutrition|wic|meal|feeding)\b)", re.I),
    re.compile(r"\b(senior citizen center|senior services)\b(?!.*\b(food|pantry|bank|meal|nutrition)\b)", re.I),
    re.compile(r"\b(emergency management|housing authority)\b(?!.*\b(food|pantry|bank|nutrition|wic|meal|feeding|distribution)\b)", re.I),
    # National umbrella organisations
    re.compile(r"^feeding\s?america$", re.I),
]

BLOCKED_URL_PATTERNS = [
    re.compile(r"/(directory|directories)\b", re.I),
    re.compile(r"/(list|listing|listings)\b", re.I),
    re.compile(r"/(locator|finder)\b(?!.*\b(pantry|bank)\b)", re.I),
    re.compile(r"/(resources|members|partners|organizations)\b(?!.*\b(pantry|bank|food)\b)", re.I),
    # Bare or generic pages on .gov domains
    re.compile(r"\.gov/?$", re.I),
    re.compile(r"\.gov/(about|contact|home|index)/?$", re.I),
]

FOOD_PATH_RE = re.compile(r"/(food|pantry|bank|nutrition|wic|snap|assistance|feeding)", re.I)


def _host_is_blocked(hostname: str) -> bool:
    return any(
        hostname == blocked or hostname.endswith(f".{blocked}")
        for blocked in BLOCKED_DOMAINS
    )


def rejection_reason(candidate: CandidateResource) -> str | None:
    """Return why a candidate is rejected, or None when it passes."""
    for pattern in BLOCKED_NAME_PATTERNS:
        if pattern.search(candidate.name or ""):
            return "blocked_name"

    source_url = (candidate.source_url or "").strip()
    if not source_url:
        return None

    try:
        parts = urlsplit(source_url)
        hostname = (parts.hostname or "").lower()
    except ValueError:
        return "invalid_url"
    if not parts.scheme or not hostname:
        return "invalid_url"

    if _host_is_blocked(hostname):
        return "blocked_domain"

    lowered = source_url.lower()
    for pattern in BLOCKED_URL_PATTERNS:
        if pattern.search(lowered) and not FOOD_PATH_RE.search(parts.path):
            return "generic_url"
    return None


def filter_by_source(candidates: Iterable[CandidateResource]) -> list[CandidateResource]:
    kept: list[CandidateResource] = []
    for candidate in candidates:
        reason = rejection_reason(candidate)
        if reason:
            logger.info(f"Filtering out {candidate.name} ({reason}): {candidate.source_url}")
            continue
        kept.append(candidate)
    return kept
