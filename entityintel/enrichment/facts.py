"""
Typed entity facts.

Every fact_type has its own value class so the payload shape is known at
the call site; ``record_facts`` serializes them into the facts table and
skips any fact whose content key is already stored.
"""

import hashlib
import json
from dataclasses import asdict, dataclass
from typing import ClassVar, Iterable, Optional, Union

from sqlalchemy import select

from entityintel.database import Fact


@dataclass(frozen=True)
class JurisdictionFact:
    jurisdiction: str

    fact_type: ClassVar[str] = "jurisdiction"


@dataclass(frozen=True)
class CompanyTypeFact:
    company_type: str

    fact_type: ClassVar[str] = "company_type"


@dataclass(frozen=True)
class IncorporationDateFact:
    incorporation_date: str

    fact_type: ClassVar[str] = "incorporation_date"


@dataclass(frozen=True)
class ContractDescriptionFact:
    text: str
    award_id: str
    source: str = "usaspending_api"

    fact_type: ClassVar[str] = "contract_description"


@dataclass(frozen=True)
class GrantProjectFact:
    project: str
    amount: Optional[float] = None

    fact_type: ClassVar[str] = "grant_project"


FactValue = Union[
    JurisdictionFact,
    CompanyTypeFact,
    IncorporationDateFact,
    ContractDescriptionFact,
    GrantProjectFact,
]

FACT_TYPES: dict[str, type] = {
    cls.fact_type: cls
    for cls in (
        JurisdictionFact,
        CompanyTypeFact,
        IncorporationDateFact,
        ContractDescriptionFact,
        GrantProjectFact,
    )
}


def fact_key(entity_id: int, value: FactValue, source_name: str) -> str:
    """Content hash identifying a fact regardless of when it was written."""
    payload = json.dumps(asdict(value), sort_keys=True, default=str)
    raw = f"{entity_id}|{value.fact_type}|{source_name}|{payload}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def parse_fact(fact: Fact) -> Optional[FactValue]:
    """Rebuild the typed value of a stored fact (None for unknown types)."""
    cls = FACT_TYPES.get(fact.fact_type)
    if cls is None or not isinstance(fact.fact_value, dict):
        return None
    return cls(**fact.fact_value)


def has_fact(session, entity_id: int, fact_type: str, source_name: str) -> bool:
    """Whether any fact of this type from this source exists for the entity."""
    return session.execute(
        select(Fact.id).where(
            Fact.entity_id == entity_id,
            Fact.fact_type == fact_type,
            Fact.source_name == source_name,
        ).limit(1)
    ).first() is not None


def record_facts(
    session,
    entity_id: int,
    values: Iterable[FactValue],
    source_name: str,
    confidence: float,
) -> int:
    """
    Add facts for an entity in one batch.

    Returns:
        Number of new facts added (already-known facts are skipped).
    """
    pending: dict[str, FactValue] = {}
    for value in values:
        pending.setdefault(fact_key(entity_id, value, source_name), value)

    if not pending:
        return 0

    existing = set(session.scalars(
        select(Fact.fact_key).where(Fact.fact_key.in_(list(pending)))
    ))

    new_facts = [
        Fact(
            entity_id=entity_id,
            fact_type=value.fact_type,
            fact_value=asdict(value),
            source_name=source_name,
            confidence=max(0.0, min(1.0, confidence)),
            fact_key=key,
        )
        for key, value in pending.items()
        if key not in existing
    ]
    session.add_all(new_facts)
    return len(new_facts)
