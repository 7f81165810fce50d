"""
"Similar projects" ranking for the property detail page.

Candidates are scored against a reference listing on two axes, budget
proximity and location proximity, with a small same-developer bonus:

    Budget (average of min/max configuration price):
        within ±30%          +50  (budget match)
        30% - 50% apart      30 -> 0 linearly
        50% - 70% apart      15 -> 0 linearly
    Location ("area, city, state"):
        identical string     +50  (location match)
        same area            +40  (location match)
        same city            +35  (location match)
        same state           +20
        token overlap        up to +30 (location match with 2+ tokens)
    Same developer           +10  (only on top of a budget/location match)

Anything under 30 points, or with neither match, is dropped. Deterministic
for identical input, so it is unit-testable without a database.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from khareedo.services.inventory import price_range
from khareedo.services.pricing import normalize_price

logger = logging.getLogger(__name__)

STRONG_BUDGET_WINDOW = 0.30
PARTIAL_BUDGET_WINDOW = 0.50
WIDE_BUDGET_WINDOW = 0.70
MIN_SIMILARITY_SCORE = 30
MIN_LOCATION_TOKEN_LENGTH = 3


@dataclass
class SimilarMatch:
    property: Any
    score: float
    budget_match: bool
    location_match: bool
    signals: list[str] = field(default_factory=list)

    @property
    def both_match(self) -> bool:
        return self.budget_match and self.location_match


def average_price(prop) -> float:
    """(min + max) / 2 over configuration prices, falling back to listing prices."""
    low, high = price_range(getattr(prop, "configurations", None))
    if high > 0:
        return (low + high) / 2
    return float(
        normalize_price(getattr(prop, "offer_price", None))
        or normalize_price(getattr(prop, "developer_price", None))
    )


def _budget_score(reference_avg: float, candidate_avg: float) -> tuple[float, bool]:
    if reference_avg <= 0 or candidate_avg <= 0:
        return 0.0, False

    diff_ratio = abs(candidate_avg - reference_avg) / reference_avg
    if diff_ratio <= STRONG_BUDGET_WINDOW:
        return 50.0, True
    if diff_ratio <= PARTIAL_BUDGET_WINDOW:
        span = PARTIAL_BUDGET_WINDOW - STRONG_BUDGET_WINDOW
        return 30.0 * (PARTIAL_BUDGET_WINDOW - diff_ratio) / span, False
    if diff_ratio <= WIDE_BUDGET_WINDOW:
        span = WIDE_BUDGET_WINDOW - PARTIAL_BUDGET_WINDOW
        return 15.0 * (WIDE_BUDGET_WINDOW - diff_ratio) / span, False
    return 0.0, False


def _location_parts(location: Optional[str]) -> list[str]:
    return [p.strip().lower() for p in (location or "").split(",") if p.strip()]


def _part(parts: list[str], index: int) -> Optional[str]:
    return parts[index] if len(parts) > index else None


def _location_score(reference: Optional[str], candidate: Optional[str]) -> tuple[float, bool, str]:
    ref = (reference or "").strip().lower()
    cand = (candidate or "").strip().lower()
    if not ref or not cand:
        return 0.0, False, ""

    if ref == cand:
        return 50.0, True, "same location"

    ref_parts = _location_parts(ref)
    cand_parts = _location_parts(cand)
    for index, points, is_match, label in (
        (0, 40.0, True, "same area"),
        (1, 35.0, True, "same city"),
        (2, 20.0, False, "same state"),
    ):
        ref_part = _part(ref_parts, index)
        if ref_part and ref_part == _part(cand_parts, index):
            return points, is_match, label

    tokens = {t for t in re.split(r"[\s,]+", ref) if len(t) >= MIN_LOCATION_TOKEN_LENGTH}
    if not tokens:
        return 0.0, False, ""
    matched = [t for t in tokens if t in cand]
    if not matched:
        return 0.0, False, ""
    return 30.0 * len(matched) / len(tokens), len(matched) >= 2, f"{len(matched)} location tokens"


def score_candidate(reference, candidate, reference_avg: Optional[float] = None) -> SimilarMatch:
    """Score one candidate against the reference listing."""
    if reference_avg is None:
        reference_avg = average_price(reference)

    score = 0.0
    signals = []

    # Budget proximity (+50 strong, partial otherwise)
    budget_points, budget_match = _budget_score(reference_avg, average_price(candidate))
    if budget_points:
        score += budget_points
        signals.append("budget match" if budget_match else "near budget")

    # Location proximity (+50 / +40 / +35 / +20 / token overlap up to +30)
    location_points, location_match, label = _location_score(
        getattr(reference, "location", None), getattr(candidate, "location", None)
    )
    if location_points:
        score += location_points
        signals.append(label)

    # Same developer (+10 on top of an existing match)
    same_developer = (
        getattr(reference, "developer_id", None) is not None
        and getattr(reference, "developer_id", None) == getattr(candidate, "developer_id", None)
    )
    if same_developer and (budget_match or location_match):
        score += 10
        signals.append("same developer")

    return SimilarMatch(
        property=candidate,
        score=round(score, 2),
        budget_match=budget_match,
        location_match=location_match,
        signals=signals,
    )


def rank_similar(reference, candidates: Sequence, limit: int = 3) -> list[SimilarMatch]:
    """Top ``limit`` candidates: both-match first, then by score."""
    reference_avg = average_price(reference)
    reference_id = getattr(reference, "id", None)

    matches = []
    for candidate in candidates:
        if reference_id is not None and getattr(candidate, "id", None) == reference_id:
            continue
        match = score_candidate(reference, candidate, reference_avg)
        if match.score < MIN_SIMILARITY_SCORE or not (match.budget_match or match.location_match):
            continue
        matches.append(match)

    matches.sort(key=lambda m: (m.both_match, m.score), reverse=True)
    logger.debug(f"Similarity: {len(matches)} of {len(candidates)} candidates kept")
    return matches[:max(limit, 0)]
