"""Organization name normalization for entity matching."""

import re
from typing import Optional


# Legal-form suffixes dropped before comparison
LEGAL_SUFFIXES = re.compile(
    r"\b(l\.?l\.?c|inc|incorporated|corp|corporation|co|company|ltd|limited|"
    r"l\.?l\.?p|l\.?p|p\.?l\.?l\.?c|p\.?c)\b\.?",
    flags=re.IGNORECASE,
)

# Filler words that don't help matching
REMOVE_WORDS = {
    "the", "of", "and", "for", "a", "an",
}

ABBREVIATIONS = {
    "intl": "INTERNATIONAL",
    "natl": "NATIONAL",
    "svcs": "SERVICES",
    "svc": "SERVICE",
    "mgmt": "MANAGEMENT",
    "mgt": "MANAGEMENT",
    "assoc": "ASSOCIATES",
    "grp": "GROUP",
    "sys": "SYSTEMS",
    "tech": "TECHNOLOGY",
    "techs": "TECHNOLOGIES",
    "govt": "GOVERNMENT",
    "univ": "UNIVERSITY",
    "ctr": "CENTER",
}

# Recipient names are matched on this many leading characters
MATCH_PREFIX_LENGTH = 20


def normalize_entity_name(name: Optional[str]) -> Optional[str]:
    """
    Normalize an organization name for fuzzy comparison.

    Uppercases, drops legal-form suffixes and punctuation, expands common
    abbreviations and removes filler words (unless that would empty the name).

    Returns:
        Normalized name, or None if input is None/empty
    """
    if not name:
        return None

    normalized = LEGAL_SUFFIXES.sub(" ", name)
    normalized = re.sub(r"\s*&\s*", " and ", normalized)
    normalized = re.sub(r"[.,;:!?\"'()\[\]{}/]", " ", normalized)

    words = [ABBREVIATIONS.get(w.lower(), w.upper()) for w in normalized.split()]
    if len(words) > 1:
        kept = [w for w in words if w.lower() not in REMOVE_WORDS]
        words = kept or words

    normalized = " ".join(words).strip()
    return normalized if normalized else None


def match_prefix(name: Optional[str]) -> Optional[str]:
    """Leading slice of a recipient name used for substring lookups."""
    if not name:
        return None
    prefix = name.strip()[:MATCH_PREFIX_LENGTH].strip()
    return prefix or None
