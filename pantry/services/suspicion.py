"""
False-positive triage for stored resources.

Scores how likely a record is *not* a food-assistance site (0 = clean,
100 = almost certainly wrong) so reviewers can work the worst rows first.
Pattern checks run in a fixed precedence; the first match names the
category while every match still contributes to the score.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping


class SuspicionCategory(str, Enum):
    DIRECTORY_PAGE = "directory_page"
    DIRECTORY_URL = "directory_url"
    FINANCIAL_BANK = "financial_bank"
    WRONG_BANK_TYPE = "wrong_bank_type"
    LAW_ENFORCEMENT = "law_enforcement"
    GOVERNMENT_OFFICE = "government_office"
    COMMUNITY_CENTER = "community_center"
    SCHOOL = "school"
    GENERIC_LISTING = "generic_listing"
    MISSING_VERIFICATION = "missing_verification"
    UNCLEAR = "unclear"


@dataclass(frozen=True, slots=True)
class SuspicionScore:
    score: int
    reasons: tuple[str, ...] = ()
    category: SuspicionCategory = SuspicionCategory.UNCLEAR

    def as_dict(self) -> dict[str, Any]:
        return {"score": self.score, "reasons": list(self.reasons), "category": self.category.value}


@dataclass(slots=True)
class AnalyzedResource:
    resource: Any
    suspicion: SuspicionScore


FINANCIAL_PATTERNS = [
    re.compile(r"\b(atm|credit union|savings|loan|mortgage|investment|checking account)\b", re.I),
    re.compile(r"\b(wells fargo|chase|bank of america|citibank|us bank|pnc bank|td bank|capital one)\b", re.I),
    re.compile(r"\bfederal reserve\b", re.I),
    re.compile(r"\bbanking center\b", re.I),
    re.compile(r"\b(branch|atm) location\b", re.I),
]

WRONG_BANK_PATTERNS = [
    re.compile(rf"\b{kind}\s+bank\b", re.I)
    for kind in ("blood", "milk", "tissue", "eye", "organ", "seed", "gene", "sperm")
]

LAW_ENFORCEMENT_PATTERNS = [
    re.compile(r"\bsheriff'?s?\s+(office|department|dept)\b(?!.*\b(food|pantry|bank|donation|feeding)\b)", re.I),
    re.compile(r"\bpolice\s+(department|dept|station|office)\b(?!.*\b(food|pantry|bank|donation|feeding)\b)", re.I),
    re.compile(r"\blaw\s+enforcement\b(?!.*\b(food|pantry|bank|donation|feeding)\b)", re.I),
    re.compile(r"\bcorrections\s+(department|facility|office)\b", re.I),
    re.compile(r"\bjail\b(?!.*\b(food|pantry|bank)\b)", re.I),
    re.compile(r"\bdetention\s+center\b(?!.*\b(food|pantry|bank)\b)", re.I),
]

GOVERNMENT_OFFICE_PATTERNS = [
    re.compile(r"\b(department of|dept of|division of)\b(?!.*\b(food|nutrition|agriculture|health|human services|social services)\b)", re.I),
    re.compile(r"\b(city hall|town hall|county clerk|registrar)\b", re.I),
    re.compile(r"\b(tax office|revenue|treasury|finance department)\b", re.I),
    re.compile(r"\b(planning commission|zoning|building department)\b", re.I),
    re.compile(r"\b(public works|sanitation|utilities)\b", re.I),
]

GENERIC_COMMUNITY_PATTERNS = [
    re.compile(r"\bcommunity center\b(?!.*\b(food|pantry|bank|meal|nutrition|feeding)\b)", re.I),
    re.compile(r"\b(church|cathedral|temple|mosque|synagogue)\b(?!.*\b(food|pantry|bank|meal|feeding|distribution)\b)", re.I),
    re.compile(r"\brec center\b(?!.*\b(food|pantry|meal)\b)", re.I),
    re.compile(r"\byouth center\b(?!.*\b(food|pantry|meal)\b)", re.I),
]

SCHOOL_PATTERNS = [
    re.compile(r"\b(elementary|middle|high school|university|college)\b(?!.*\b(food pantry|food bank)\b)", re.I),
]

GENERIC_NAME_PATTERNS = [
    re.compile(r"^food bank$", re.I),
    re.compile(r"^pantry$", re.I),
    re.compile(r"^community food$", re.I),
    re.compile(r"^free food$", re.I),
]

DIRECTORY_NAME_PATTERNS = [
    re.compile(r"\b(food\s+)?assistance\s+director(y|ies)\b", re.I),
    re.compile(r"\bfood\s+bank\s+director(y|ies)\b", re.I),
    re.compile(r"\bfood\s+pantry\s+director(y|ies)\b", re.I),
    re.compile(r"\bdirector(y|ies)\b(?!.*\b(director|executive)\b)", re.I),
    re.compile(r"\bresource\s+director(y|ies)\b", re.I),
    re.compile(r"\b(food\s+)?resources?\s+list(ing)?s?\b", re.I),
    re.compile(r"\bfood\s+locator\b", re.I),
    re.compile(r"\bfind\s+food\b(?!.*\b(pantry|bank)\b)", re.I),
    re.compile(r"\bfood\s+finder\b", re.I),
    re.compile(r"\bmember\s+(organizations?|agencies)\b", re.I),
    re.compile(r"\bpartner\s+(organizations?|agencies)\b", re.I),
]

DIRECTORY_URL_PATTERNS = [
    re.compile(r"/(directory|directories)\b", re.I),
    re.compile(r"/(list|listing|listings)\b", re.I),
    re.compile(r"/(locator|finder)\b", re.I),
    re.compile(r"/(resources|assistance)\b(?!.*/(pantry|bank|food)\b)", re.I),
    re.compile(r"/(find-food|food-finder)\b", re.I),
    re.compile(r"/(members|partners|organizations)\b", re.I),
]

FOOD_ASSISTANCE_INDICATORS = [
    re.compile(r"\bfood pantry\b", re.I),
    re.compile(r"\bfood bank\b", re.I),
    re.compile(r"\bfood distribution\b", re.I),
    re.compile(r"\bfeeding america\b", re.I),
    re.compile(r"\bemergency food\b", re.I),
    re.compile(r"\bfood shelf\b", re.I),
    re.compile(r"\bfood ministry\b", re.I),
    re.compile(r"\bfood cupboard\b", re.I),
    re.compile(r"\bfood closet\b", re.I),
    re.compile(r"\bsoup kitchen\b", re.I),
    re.compile(r"\bmeal program\b", re.I),
    re.compile(r"\bfeeding program\b", re.I),
    re.compile(r"\bnutrition program\b", re.I),
    re.compile(r"\bharvest\b.*\b(food|pantry)\b", re.I),
]

POSITIVE_INDICATOR_DISCOUNT = 40
DEFAULT_REVIEW_THRESHOLD = 50


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _text(record: Any, name: str) -> str:
    value = _field(record, name)
    return value if isinstance(value, str) else ""


def _first_match(patterns: Iterable[re.Pattern[str]], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def score_resource(record: Any) -> SuspicionScore:
    """Score one resource (ORM row, mapping or model). Never raises."""
    score = 0
    reasons: list[str] = []
    category = SuspicionCategory.UNCLEAR

    def flag(points: int, reason: str, matched: SuspicionCategory | None = None) -> None:
        nonlocal score, category
        score += points
        reasons.append(reason)
        if matched is not None and category is SuspicionCategory.UNCLEAR:
            category = matched

    name = _text(record, "name")
    notes = _text(record, "notes")
    verification_notes = _text(record, "verification_notes")
    source_url = _text(record, "source_url")
    resource_category = _field(record, "category")
    resource_category = getattr(resource_category, "value", resource_category)
    search_text = f"{name} {notes} {verification_notes}".lower()

    has_positive_indicator = _first_match(FOOD_ASSISTANCE_INDICATORS, search_text)

    if _first_match(DIRECTORY_NAME_PATTERNS, name):
        flag(85, "Name indicates a directory/listing page, not an actual location",
             SuspicionCategory.DIRECTORY_PAGE)
    elif source_url and _first_match(DIRECTORY_URL_PATTERNS, source_url):
        flag(75, "URL path suggests a directory/listing page", SuspicionCategory.DIRECTORY_URL)

    if resource_category == "bank":
        if _first_match(FINANCIAL_PATTERNS, search_text):
            flag(80, "Contains financial institution keywords", SuspicionCategory.FINANCIAL_BANK)
        elif not has_positive_indicator and category is SuspicionCategory.UNCLEAR:
            flag(40, "Category 'bank' but no clear food assistance indicators",
                 SuspicionCategory.FINANCIAL_BANK)

    if _first_match(WRONG_BANK_PATTERNS, search_text):
        flag(90, "Not a food bank (blood bank, milk bank, etc.)", SuspicionCategory.WRONG_BANK_TYPE)

    if _first_match(LAW_ENFORCEMENT_PATTERNS, search_text):
        flag(90, "Law enforcement facility, not a food distribution site",
             SuspicionCategory.LAW_ENFORCEMENT)

    if _first_match(GOVERNMENT_OFFICE_PATTERNS, search_text):
        flag(60, "Appears to be a government office, not a food distribution site",
             SuspicionCategory.GOVERNMENT_OFFICE)

    if _first_match(GENERIC_COMMUNITY_PATTERNS, search_text):
        flag(50, "Generic community center/church without food service indicators",
             SuspicionCategory.COMMUNITY_CENTER)

    if _first_match(SCHOOL_PATTERNS, search_text):
        flag(70, "Appears to be a school without a dedicated food pantry", SuspicionCategory.SCHOOL)

    if _first_match(GENERIC_NAME_PATTERNS, name.strip()):
        flag(30, "Very generic name, needs verification", SuspicionCategory.GENERIC_LISTING)

    if not _field(record, "is_verified"):
        flag(20, "Not verified", SuspicionCategory.MISSING_VERIFICATION)

    if not _field(record, "phone") and not _field(record, "hours") and not source_url:
        flag(30, "Missing contact information (phone, hours, source URL)")

    if verification_notes and len(verification_notes) < 20:
        flag(15, "Very brief verification notes")

    if not _field(record, "place_id") and _field(record, "needs_enrichment"):
        flag(10, "Pending enrichment without an external place id")

    failure_count = _field(record, "enrichment_failure_count")
    if isinstance(failure_count, int) and failure_count > 2:
        flag(25, f"Failed enrichment {failure_count} times")

    failure_reason = _text(record, "enrichment_failure_reason").lower()
    if "permanently closed" in failure_reason:
        flag(100, "Marked as permanently closed")
    elif "temporarily closed" in failure_reason:
        flag(50, "Marked as temporarily closed")

    if has_positive_indicator:
        score = max(0, score - POSITIVE_INDICATOR_DISCOUNT)
        if score < 30:
            reasons.append("Has clear food assistance indicators")

    return SuspicionScore(score=min(100, score), reasons=tuple(reasons), category=category)


def analyze_resources(records: Iterable[Any]) -> list[AnalyzedResource]:
    return [AnalyzedResource(resource=record, suspicion=score_resource(record)) for record in records]


def filter_by_suspicion(
    analyzed: Iterable[AnalyzedResource],
    min_score: int = DEFAULT_REVIEW_THRESHOLD,
) -> list[AnalyzedResource]:
    return [item for item in analyzed if item.suspicion.score >= min_score]


def group_by_category(analyzed: Iterable[AnalyzedResource]) -> dict[str, list[AnalyzedResource]]:
    grouped: dict[str, list[AnalyzedResource]] = defaultdict(list)
    for item in analyzed:
        grouped[item.suspicion.category.value].append(item)
    return dict(grouped)
