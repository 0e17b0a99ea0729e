"""
Contract classification.

Deterministic keyword + NAICS classifier that tags a contract with a primary
category, up to three secondary categories and a set of capabilities.
Nothing is learned: the same inputs always yield the same result.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from entityintel.database import get_session, Contract, ContractClassification

log = logging.getLogger(__name__)


DEFAULT_CATEGORY = "Professional Services"
NAICS_BOOST = 3
MAX_SECONDARY = 3
MAX_CONFIDENCE = 0.95

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "IT Services": [
        "software", "computer", "technology", "data", "cyber", "network", "cloud",
        "digital", "system", "IT", "information technology", "programming",
        "database", "web", "application",
    ],
    "Healthcare": [
        "health", "medical", "hospital", "clinical", "pharmaceutical", "patient",
        "care", "treatment", "diagnostic", "biomedical", "nursing",
    ],
    "Construction": [
        "construction", "building", "infrastructure", "renovation", "maintenance",
        "facility", "engineering", "architectural", "repair", "HVAC",
    ],
    "Professional Services": [
        "consulting", "advisory", "management", "analysis", "support", "training",
        "professional", "administrative", "technical assistance",
    ],
    "Manufacturing": [
        "manufacturing", "production", "equipment", "machinery", "parts",
        "supplies", "materials", "fabrication", "assembly",
    ],
    "Transportation": [
        "transportation", "logistics", "vehicle", "shipping", "freight",
        "aircraft", "automotive", "fleet", "delivery",
    ],
    "Defense": [
        "defense", "military", "weapon", "tactical", "combat", "security",
        "intelligence", "surveillance", "ammunition",
    ],
    "Research": [
        "research", "development", "R&D", "scientific", "laboratory", "study",
        "analysis", "investigation", "experiment",
    ],
    "Education": [
        "education", "training", "learning", "curriculum", "instruction",
        "academic", "school", "university", "teaching",
    ],
    "Environmental": [
        "environmental", "waste", "remediation", "cleanup", "pollution",
        "conservation", "sustainability", "green", "ecology",
    ],
}

# 2-digit NAICS sector -> category
NAICS_CATEGORIES: dict[str, str] = {
    "23": "Construction",
    "31": "Manufacturing",
    "32": "Manufacturing",
    "33": "Manufacturing",
    "48": "Transportation",
    "49": "Transportation",
    "51": "IT Services",
    "54": "Professional Services",
    "56": "Professional Services",
    "61": "Education",
    "62": "Healthcare",
}

CAPABILITY_PATTERNS: dict[str, re.Pattern] = {
    "Cloud Computing": re.compile(r"cloud|aws|azure|gcp|saas|paas|iaas", re.IGNORECASE),
    "Cybersecurity": re.compile(r"cyber|security|infosec|vulnerability|threat|encryption", re.IGNORECASE),
    "Data Analytics": re.compile(r"analytics|data analysis|business intelligence|reporting|dashboard", re.IGNORECASE),
    "AI/ML": re.compile(r"artificial intelligence|machine learning|ai|ml|neural|deep learning", re.IGNORECASE),
    "Project Management": re.compile(r"project management|program management|pmp|agile|scrum", re.IGNORECASE),
    "Software Development": re.compile(r"software development|programming|coding|application development", re.IGNORECASE),
    "Systems Integration": re.compile(r"integration|interoperability|api|middleware", re.IGNORECASE),
    "Technical Support": re.compile(r"support|helpdesk|maintenance|troubleshooting", re.IGNORECASE),
    "Training & Education": re.compile(r"training|education|curriculum|instruction|certification", re.IGNORECASE),
    "Quality Assurance": re.compile(r"quality|qa|testing|validation|verification", re.IGNORECASE),
}


@dataclass
class ClassificationResult:
    """Category and capability tags for one transactional record."""
    primary_category: str
    secondary_categories: list[str] = field(default_factory=list)
    capabilities: list[str] = field(default_factory=list)
    confidence: float = 0.3

    def to_dict(self) -> dict:
        return {
            "primary_category": self.primary_category,
            "secondary_categories": list(self.secondary_categories),
            "capabilities": list(self.capabilities),
            "confidence": self.confidence,
        }


def classify(
    text: Optional[str],
    naics_code: Optional[str] = None,
    psc_code: Optional[str] = None,
) -> ClassificationResult:
    """
    Classify free text plus optional structured codes.

    Args:
        text: Description of the award (may be empty)
        naics_code: NAICS code; its 2-digit sector adds a fixed boost
        psc_code: Product/service code (accepted for interface parity, unused)

    Returns:
        ClassificationResult with confidence in [0, 0.95]
    """
    lowered = (text or "").lower()
    scores: Counter = Counter()

    for category, keywords in CATEGORY_KEYWORDS.items():
        hits = sum(1 for keyword in keywords if keyword.lower() in lowered)
        if hits:
            scores[category] = hits

    if naics_code:
        category = NAICS_CATEGORIES.get(str(naics_code).strip()[:2])
        if category:
            scores[category] += NAICS_BOOST

    # Counter.most_common is stable for ties (insertion order)
    ranked = scores.most_common()
    primary = ranked[0][0] if ranked else DEFAULT_CATEGORY
    secondary = [category for category, _ in ranked[1:1 + MAX_SECONDARY]]

    capabilities = [
        capability
        for capability, pattern in CAPABILITY_PATTERNS.items()
        if pattern.search(lowered)
    ]

    top_score = ranked[0][1] if ranked else 0
    confidence = min(MAX_CONFIDENCE, 0.3 + top_score * 0.1 + len(capabilities) * 0.05)

    return ClassificationResult(
        primary_category=primary,
        secondary_categories=secondary,
        capabilities=capabilities,
        confidence=round(confidence, 2),
    )


def _store_classification(session, contract_id: int, result: ClassificationResult) -> None:
    """Upsert a classification row keyed by contract id."""
    existing = session.query(ContractClassification).filter(
        ContractClassification.contract_id == contract_id
    ).first()

    if existing:
        existing.primary_category = result.primary_category
        existing.secondary_categories = result.secondary_categories
        existing.capabilities = result.capabilities
        existing.confidence = result.confidence
    else:
        session.add(ContractClassification(
            contract_id=contract_id,
            primary_category=result.primary_category,
            secondary_categories=result.secondary_categories,
            capabilities=result.capabilities,
            confidence=result.confidence,
        ))


def _pending_query(exclude_ids: set[int]):
    classified = select(ContractClassification.contract_id)
    query = select(
        Contract.id, Contract.description, Contract.naics_code, Contract.psc_code
    ).where(Contract.id.not_in(classified))
    if exclude_ids:
        query = query.where(Contract.id.not_in(exclude_ids))
    return query.order_by(Contract.id)


def count_unclassified() -> int:
    """Number of contracts without a classification row."""
    with get_session() as session:
        classified = select(ContractClassification.contract_id)
        return session.scalar(
            select(func.count(Contract.id)).where(Contract.id.not_in(classified))
        ) or 0


def classify_all_pending(batch_size: int = 100, limit: Optional[int] = None) -> dict:
    """
    Classify contracts that have no classification yet.

    Args:
        batch_size: Contracts read and written per page
        limit: Stop after this many contracts (None = all pending)

    Returns:
        Dict with 'classified' and 'errors' counts.
    """
    classified = 0
    errors = 0
    failed_ids: set[int] = set()

    while limit is None or classified + errors < limit:
        page_size = batch_size if limit is None else min(batch_size, limit - classified - errors)

        try:
            with get_session() as session:
                rows = session.execute(_pending_query(failed_ids).limit(page_size)).all()
        except SQLAlchemyError as e:
            log.error("Could not read pending contracts: %s", e)
            break

        if not rows:
            break

        results = {
            row.id: classify(row.description or "", row.naics_code, row.psc_code)
            for row in rows
        }

        try:
            with get_session() as session:
                for contract_id, result in results.items():
                    _store_classification(session, contract_id, result)
            classified += len(results)
        except SQLAlchemyError as e:
            log.error("Classification write failed for %d contracts: %s", len(results), e)
            errors += len(results)
            failed_ids.update(results)

        if len(rows) < page_size:
            break

    log.info("Classified %d contracts (%d errors)", classified, errors)
    return {"classified": classified, "errors": errors}


def classify_contract(contract_id: int) -> Optional[ClassificationResult]:
    """Classify and store a single contract."""
    with get_session() as session:
        contract = session.get(Contract, contract_id)
        if not contract:
            return None
        result = classify(contract.description or "", contract.naics_code, contract.psc_code)
        _store_classification(session, contract.id, result)
        return result


def get_contract_classification(contract_id: int) -> Optional[ClassificationResult]:
    """Return the stored classification for a contract, if any."""
    with get_session() as session:
        row = session.query(ContractClassification).filter(
            ContractClassification.contract_id == contract_id
        ).first()

        if not row:
            return None

        return ClassificationResult(
            primary_category=row.primary_category,
            secondary_categories=row.secondary_categories or [],
            capabilities=row.capabilities or [],
            confidence=row.confidence if row.confidence is not None else 0.5,
        )


def get_category_distribution() -> dict[str, int]:
    """Count stored classifications per primary category."""
    with get_session() as session:
        rows = session.query(
            ContractClassification.primary_category,
            func.count(ContractClassification.id),
        ).group_by(ContractClassification.primary_category).all()

        return {category: count for category, count in rows}
