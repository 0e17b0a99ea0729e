"""
Insight generation engine.

Gathers a freshly computed health score, the 90-day market shift and the
agency concentration for an entity, runs the rule table and persists the
matches.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from tqdm import tqdm

from entityintel.database import get_session, Entity, Contract, utcnow
from entityintel.intelligence.health import calculate_and_store_health_score
from entityintel.intelligence.relationships import detect_market_shift
from .manager import create_insight
from .rules import Concentration, InsightDraft, evaluate_rules

log = logging.getLogger(__name__)


CONCENTRATION_SAMPLE = 100
UNKNOWN_AGENCY = "Unknown"


def analyze_concentration(entity_id: int) -> Concentration:
    """Sum contract value per awarding agency over a bounded sample."""
    with get_session() as session:
        rows = session.execute(
            select(Contract.awarding_agency, Contract.award_amount).where(
                Contract.recipient_entity_id == entity_id
            ).order_by(Contract.id).limit(CONCENTRATION_SAMPLE)
        ).all()

    totals: dict[str, float] = defaultdict(float)
    total = 0.0
    for agency, amount in rows:
        amount = amount or 0
        totals[agency or UNKNOWN_AGENCY] += amount
        total += amount

    return Concentration(agency_totals=dict(totals), total_value=total)


def _generate(
    entity_id: int,
    now: datetime,
    dedupe: Optional[bool],
) -> tuple[list[InsightDraft], int]:
    with get_session() as session:
        if session.get(Entity, entity_id) is None:
            return [], 0

    health = calculate_and_store_health_score(entity_id, now=now)
    shift = detect_market_shift(entity_id, now=now)
    concentration = analyze_concentration(entity_id)

    drafts = evaluate_rules(entity_id, health, shift, concentration)

    stored = 0
    for draft in drafts:
        if create_insight(draft, now=now, dedupe=dedupe) is not None:
            stored += 1

    log.info(
        "Entity %s: %d insights matched, %d stored", entity_id, len(drafts), stored
    )
    return drafts, stored


def generate_entity_insights(
    entity_id: int,
    now: Optional[datetime] = None,
    dedupe: Optional[bool] = None,
) -> list[InsightDraft]:
    """
    Evaluate every insight rule for one entity and persist the matches.

    Returns:
        The matched insights (empty if the entity does not exist).
    """
    drafts, _ = _generate(entity_id, now or utcnow(), dedupe)
    return drafts


def generate_insights_batch(
    limit: int = 50,
    now: Optional[datetime] = None,
    progress: bool = False,
) -> dict:
    """
    Generate insights for a page of canonical entities.

    Returns:
        Dict with 'processed', 'insights_matched', 'insights_generated'
        (rows actually stored) and 'errors'.
    """
    now = now or utcnow()

    with get_session() as session:
        entity_ids = list(session.scalars(
            select(Entity.id).where(Entity.is_canonical.is_(True))
            .order_by(Entity.id).limit(limit)
        ))

    processed = 0
    matched = 0
    generated = 0
    errors = 0

    for entity_id in tqdm(entity_ids, desc="Insights", disable=not progress):
        try:
            drafts, stored = _generate(entity_id, now, dedupe=None)
            matched += len(drafts)
            generated += stored
            processed += 1
        except SQLAlchemyError as e:
            log.error("Insight generation failed for entity %s: %s", entity_id, e)
            errors += 1

    return {
        "processed": processed,
        "insights_matched": matched,
        "insights_generated": generated,
        "errors": errors,
    }
