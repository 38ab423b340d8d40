# ============================================================================
# src/care_ingestion/constants/medications.py
# ============================================================================
"""
Medication name tables and string distance helpers.

Tables are plain data so they can be extended without touching the
matching or reconciliation control flow.
"""

import re
from typing import Tuple

# Substring match against the lowercased mention name
CRITICAL_MEDICATIONS: Tuple[str, ...] = (
    "insulin",
    "warfarin",
    "coumadin",
    "digoxin",
    "nitroglycerin",
    "epinephrine",
    "prednisone",
)

HIGH_PRIORITY_MEDICATIONS: Tuple[str, ...] = (
    "lisinopril",
    "atorvastatin",
    "metformin",
    "levothyroxine",
    "amlodipine",
    "metoprolol",
    "losartan",
    "simvastatin",
)

# Generic first, then brand names
BRAND_GENERIC_GROUPS: Tuple[Tuple[str, ...], ...] = (
    ("lisinopril", "zestril", "prinivil"),
    ("atorvastatin", "lipitor"),
    ("metformin", "glucophage"),
    ("omeprazole", "prilosec"),
    ("amlodipine", "norvasc"),
    ("simvastatin", "zocor"),
    ("levothyroxine", "synthroid"),
    ("azithromycin", "zithromax"),
    ("amoxicillin", "amoxil"),
    ("furosemide", "lasix"),
    ("metoprolol", "lopressor", "toprol"),
    ("hydrochlorothiazide", "microzide"),
    ("losartan", "cozaar"),
    ("gabapentin", "neurontin"),
    ("sertraline", "zoloft"),
)

# Dosage-form and unit words dropped before name comparison
FORM_AND_UNIT_PATTERN = re.compile(
    r"\b(tablets?|capsules?|pills?|mg|mcg|ml|extended release|er|xr|sr)\b"
)

# Mention status text that means the patient is not taking it
DISCONTINUED_STATUS_WORDS: Tuple[str, ...] = ("not", "discontinued", "stopped")


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein edit distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = range(len(s2) + 1)
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def string_similarity(s1: str, s2: str) -> float:
    """Edit-distance similarity in [0, 1]; two empty strings are identical."""
    longer = max(len(s1), len(s2))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(s1, s2)) / longer


def is_brand_generic_pair(name1: str, name2: str) -> bool:
    """True if both names mention members of the same brand/generic group."""
    n1 = name1.lower()
    n2 = name2.lower()
    return any(
        any(med in n1 for med in group) and any(med in n2 for med in group)
        for group in BRAND_GENERIC_GROUPS
    )


def medication_priority_rank(name: str) -> str:
    """
    Classify a medication name as 'critical', 'high' or 'standard'.
    """
    lowered = name.lower()
    if any(med in lowered for med in CRITICAL_MEDICATIONS):
        return "critical"
    if any(med in lowered for med in HIGH_PRIORITY_MEDICATIONS):
        return "high"
    return "standard"
