"""
Relationship intelligence.

Three independent analyses per entity:
- Teaming partners: other recipients working the same agencies, weighted by
  NAICS overlap, persisted as ``teaming_partner`` edges
- Market shift: agencies gained and lost between two consecutive 90-day windows
- Competitors: same-state entities ranked by contract value

Missing or empty transaction history yields empty results, never an error.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select

from entityintel.database import (
    get_session,
    Entity,
    Contract,
    Relationship,
    MarketTrend,
    RelationshipType,
    utcnow,
)

log = logging.getLogger(__name__)


PARTNER_CANDIDATE_LIMIT = 200
MAX_PARTNERS = 15
MIN_PARTNER_STRENGTH = 0.1
AGENCY_WEIGHT = 0.15
NAICS_WEIGHT = 0.10
PARTNER_CONFIDENCE = 0.8

SHIFT_WINDOW_DAYS = 90

COMPETITOR_CANDIDATE_LIMIT = 50
MAX_COMPETITORS = 10
COMPETITOR_VALUE_SCALE = 100_000_000


@dataclass
class PartnerScore:
    """Candidate partner or competitor with its ranking strength."""
    entity_id: int
    entity_name: str
    shared_agencies: int
    shared_naics: int
    strength_score: float

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "shared_agencies": self.shared_agencies,
            "shared_naics": self.shared_naics,
            "strength_score": self.strength_score,
        }


@dataclass
class MarketShift:
    """Agency market movement between the recent and prior windows."""
    new_markets: list[str] = field(default_factory=list)
    lost_markets: list[str] = field(default_factory=list)
    contract_velocity_change: int = 0
    trend: MarketTrend = MarketTrend.STABLE

    def to_dict(self) -> dict:
        return {
            "new_markets": list(self.new_markets),
            "lost_markets": list(self.lost_markets),
            "contract_velocity_change": self.contract_velocity_change,
            "trend": self.trend.value,
        }


@dataclass
class NetworkAnalysis:
    """All three analyses for one entity."""
    teaming_partners: list[PartnerScore]
    competitors: list[PartnerScore]
    market_shift: MarketShift

    @property
    def network_strength(self) -> float:
        """Mean teaming partner strength (0 when there are none)."""
        if not self.teaming_partners:
            return 0.0
        return sum(p.strength_score for p in self.teaming_partners) / len(self.teaming_partners)

    def to_dict(self) -> dict:
        return {
            "teaming_partners": [p.to_dict() for p in self.teaming_partners],
            "competitors": [c.to_dict() for c in self.competitors],
            "market_shift": self.market_shift.to_dict(),
            "network_strength": self.network_strength,
        }


def partner_strength(shared_agencies: int, shared_naics: int) -> float:
    """Strength of a teaming candidate, capped at 1."""
    return min(shared_agencies * AGENCY_WEIGHT + shared_naics * NAICS_WEIGHT, 1.0)


def rank_partners(
    candidates: Iterable[tuple],
    own_naics: set[str],
) -> list[PartnerScore]:
    """
    Aggregate candidate contract rows into ranked partners.

    Args:
        candidates: (entity_id, recipient_name, awarding_agency, naics_code) rows
        own_naics: NAICS codes from the subject entity's own contracts

    Returns:
        Partners with strength > 0.1, strongest first, at most 15
    """
    names: dict[int, str] = {}
    agencies: dict[int, set] = defaultdict(set)
    naics: dict[int, set] = defaultdict(set)

    for entity_id, name, agency, naics_code in candidates:
        if entity_id is None:
            continue
        names.setdefault(entity_id, name)
        if agency:
            agencies[entity_id].add(agency)
        if naics_code:
            naics[entity_id].add(naics_code)

    partners = []
    for entity_id, name in names.items():
        shared_agencies = len(agencies[entity_id])
        shared_naics = len(naics[entity_id] & own_naics)
        strength = partner_strength(shared_agencies, shared_naics)
        if strength > MIN_PARTNER_STRENGTH:
            partners.append(PartnerScore(
                entity_id=entity_id,
                entity_name=name,
                shared_agencies=shared_agencies,
                shared_naics=shared_naics,
                strength_score=strength,
            ))

    partners.sort(key=lambda p: p.strength_score, reverse=True)
    return partners[:MAX_PARTNERS]


def _upsert_edge(
    session,
    from_id: int,
    to_id: int,
    relationship_type: str,
    strength: float,
    confidence: float,
    evidence: list,
) -> None:
    """Insert or refresh an edge keyed on (from, to, type)."""
    existing = session.query(Relationship).filter(
        Relationship.from_entity_id == from_id,
        Relationship.to_entity_id == to_id,
        Relationship.relationship_type == relationship_type,
    ).first()

    if existing:
        existing.strength = strength
        existing.confidence = confidence
        existing.evidence = evidence
    else:
        session.add(Relationship(
            from_entity_id=from_id,
            to_entity_id=to_id,
            relationship_type=relationship_type,
            strength=strength,
            confidence=confidence,
            evidence=evidence,
        ))


def discover_teaming_partners(entity_id: int) -> list[PartnerScore]:
    """
    Find entities that win work from the same agencies and store the edges.

    Re-running refreshes strength and evidence on existing edges.
    """
    with get_session() as session:
        own = session.execute(
            select(Contract.awarding_agency, Contract.naics_code).where(
                Contract.recipient_entity_id == entity_id
            )
        ).all()

        if not own:
            return []

        agencies = {agency for agency, _ in own if agency}
        own_naics = {code for _, code in own if code}

        if not agencies:
            return []

        candidates = session.execute(
            select(
                Contract.recipient_entity_id,
                Contract.recipient_name,
                Contract.awarding_agency,
                Contract.naics_code,
            ).where(
                Contract.awarding_agency.in_(agencies),
                Contract.recipient_entity_id.isnot(None),
                Contract.recipient_entity_id != entity_id,
            ).limit(PARTNER_CANDIDATE_LIMIT)
        ).all()

        partners = rank_partners(candidates, own_naics)

        for partner in partners:
            _upsert_edge(
                session,
                entity_id,
                partner.entity_id,
                RelationshipType.TEAMING_PARTNER.value,
                strength=partner.strength_score,
                confidence=PARTNER_CONFIDENCE,
                evidence=[{
                    "type": "shared_agencies",
                    "count": partner.shared_agencies,
                    "naics_overlap": partner.shared_naics,
                }],
            )

    log.debug("Entity %s: %d teaming partners", entity_id, len(partners))
    return partners


def compare_markets(
    recent_agencies: Iterable[str],
    previous_agencies: Iterable[str],
    recent_count: int,
    previous_count: int,
) -> MarketShift:
    """Classify the movement between two windows of awarding agencies."""
    recent = {a for a in recent_agencies if a}
    previous = {a for a in previous_agencies if a}

    new_markets = sorted(recent - previous)
    lost_markets = sorted(previous - recent)
    velocity_change = recent_count - previous_count

    if len(new_markets) > len(lost_markets) and velocity_change > 0:
        trend = MarketTrend.EXPANDING
    elif len(lost_markets) > len(new_markets) or velocity_change < -2:
        trend = MarketTrend.CONTRACTING
    else:
        trend = MarketTrend.STABLE

    return MarketShift(
        new_markets=new_markets,
        lost_markets=lost_markets,
        contract_velocity_change=velocity_change,
        trend=trend,
    )


def detect_market_shift(entity_id: int, now: Optional[datetime] = None) -> MarketShift:
    """Compare the last 90 days of awards against the 90 days before that."""
    now = now or utcnow()
    recent_start = (now - timedelta(days=SHIFT_WINDOW_DAYS)).date()
    previous_start = (now - timedelta(days=SHIFT_WINDOW_DAYS * 2)).date()

    with get_session() as session:
        recent = session.scalars(
            select(Contract.awarding_agency).where(
                Contract.recipient_entity_id == entity_id,
                Contract.award_date >= recent_start,
            )
        ).all()
        previous = session.scalars(
            select(Contract.awarding_agency).where(
                Contract.recipient_entity_id == entity_id,
                Contract.award_date >= previous_start,
                Contract.award_date < recent_start,
            )
        ).all()

    return compare_markets(recent, previous, len(recent), len(previous))


def find_competitors(entity_id: int) -> list[PartnerScore]:
    """
    Rank same-state entities by contract value.

    Coarse proxy: NAICS overlap with the subject entity is not checked.
    """
    with get_session() as session:
        entity = session.get(Entity, entity_id)
        if not entity or not entity.state:
            return []

        rows = session.execute(
            select(Entity.id, Entity.canonical_name, Entity.total_contract_value).where(
                Entity.state == entity.state,
                Entity.id != entity_id,
            ).limit(COMPETITOR_CANDIDATE_LIMIT)
        ).all()

    competitors = [
        PartnerScore(
            entity_id=row.id,
            entity_name=row.canonical_name,
            shared_agencies=0,
            shared_naics=1,
            strength_score=min((row.total_contract_value or 0) / COMPETITOR_VALUE_SCALE, 1.0),
        )
        for row in rows
    ]
    competitors.sort(key=lambda c: c.strength_score, reverse=True)
    return competitors[:MAX_COMPETITORS]


def analyze_network(entity_id: int, now: Optional[datetime] = None) -> NetworkAnalysis:
    """Run all three analyses for one entity."""
    return NetworkAnalysis(
        teaming_partners=discover_teaming_partners(entity_id),
        competitors=find_competitors(entity_id),
        market_shift=detect_market_shift(entity_id, now=now),
    )
