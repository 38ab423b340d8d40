# ============================================================================
# src/care_ingestion/recommendations/classifier.py
# ============================================================================
"""
Recommendation Classifier

Maps free-text recommendation hints onto the closed type/priority
vocabulary. Rules are ordered (pattern, category) tables; the first
matching pattern wins.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence, Tuple

from ..constants import RecommendationPriority, RecommendationType

TITLE_MAX_CHARS = 60

TYPE_RULES: Sequence[Tuple[Pattern, RecommendationType]] = (
    (re.compile(r"medic|drug|prescri"), RecommendationType.MEDICATION),
    (re.compile(r"exercis|physical activity|walk"), RecommendationType.EXERCISE),
    (re.compile(r"diet|nutrition|food"), RecommendationType.DIET),
    (re.compile(r"therap|\bpt\b|\bot\b"), RecommendationType.THERAPY),
    (re.compile(r"monitor|track|measure"), RecommendationType.MONITORING),
    (re.compile(r"follow|appointment|visit"), RecommendationType.FOLLOWUP),
    (re.compile(r"test|\blabs?\b|imaging|x-?ray|\bmri\b"), RecommendationType.TESTS),
)

PRIORITY_RULES: Sequence[Tuple[Pattern, RecommendationPriority]] = (
    (re.compile(r"urgent|critical|immediate"), RecommendationPriority.URGENT),
    (re.compile(r"high|important"), RecommendationPriority.HIGH),
    (re.compile(r"\blow\b"), RecommendationPriority.LOW),
)


@dataclass(frozen=True)
class Classification:
    type: RecommendationType
    priority: RecommendationPriority
    title: str


def classify_type(type_hint: Optional[str], text: Optional[str] = None) -> RecommendationType:
    """
    Type from the model's hint; with no hint the recommendation text is
    scanned instead. Defaults to LIFESTYLE.
    """
    source = type_hint if type_hint and type_hint.strip() else text
    if not source:
        return RecommendationType.LIFESTYLE
    lowered = source.lower()
    for pattern, category in TYPE_RULES:
        if pattern.search(lowered):
            return category
    return RecommendationType.LIFESTYLE


def classify_priority(priority_hint: Optional[str]) -> RecommendationPriority:
    if not priority_hint:
        return RecommendationPriority.MEDIUM
    lowered = priority_hint.lower()
    for pattern, priority in PRIORITY_RULES:
        if pattern.search(lowered):
            return priority
    return RecommendationPriority.MEDIUM


def make_title(text: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """Text itself when short enough, else cut and ellipsized to max_chars."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars - 3] + "..."


def classify(
    text: str,
    priority_hint: Optional[str] = None,
    type_hint: Optional[str] = None,
) -> Classification:
    return Classification(
        type=classify_type(type_hint, text),
        priority=classify_priority(priority_hint),
        title=make_title(text),
    )
