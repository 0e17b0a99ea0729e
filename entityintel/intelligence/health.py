"""
Entity health scores.

A pure calculator turns an entity's aggregate statistics into a 0-100
composite plus four sub-scores and a trend label; the stateful wrappers
gather the inputs from the database and upsert one row per entity.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from entityintel.database import (
    get_session,
    Entity,
    Contract,
    Relationship,
    HealthScore,
    TrendDirection,
    utcnow,
)

log = logging.getLogger(__name__)


WEIGHTS = {
    "contract_velocity": 0.35,
    "grant_success": 0.20,
    "relationship_density": 0.25,
    "market_diversification": 0.20,
}

# (threshold, bonus) steps, checked highest first
CONTRACT_VALUE_STEPS = ((100_000_000, 30), (10_000_000, 20), (1_000_000, 10))
GRANT_VALUE_STEPS = ((10_000_000, 30), (1_000_000, 20), (100_000, 10))

RECENT_WINDOW_DAYS = 182

DISTRIBUTION_BUCKETS = (
    ("0-20", 0, 20),
    ("21-40", 21, 40),
    ("41-60", 41, 60),
    ("61-80", 61, 80),
    ("81-100", 81, 100),
)


class EntityStats(Protocol):
    """Aggregate attributes the calculator reads from an entity."""
    contract_count: Optional[int]
    grant_count: Optional[int]
    total_contract_value: Optional[float]
    total_grant_value: Optional[float]
    naics_codes: Optional[Sequence[str]]
    business_types: Optional[Sequence[str]]


@dataclass(frozen=True)
class HealthScoreMetrics:
    """Result of one health score computation."""
    overall_score: int
    contract_velocity: int
    grant_success: int
    relationship_density: int
    market_diversification: int
    trend_direction: TrendDirection

    def to_dict(self) -> dict:
        return {
            "overall_score": self.overall_score,
            "contract_velocity": self.contract_velocity,
            "grant_success": self.grant_success,
            "relationship_density": self.relationship_density,
            "market_diversification": self.market_diversification,
            "trend_direction": self.trend_direction.value,
        }


def _value_bonus(value: float, steps: tuple) -> int:
    for threshold, bonus in steps:
        if value > threshold:
            return bonus
    return 0


def _clamp(value: float) -> int:
    # half-up rounding
    return int(math.floor(max(0, min(100, value)) + 0.5))


def compute_health_score(
    entity: EntityStats,
    relationship_count: int,
    recent_count: int,
) -> HealthScoreMetrics:
    """
    Compute health metrics from aggregate statistics.

    Pure function: identical inputs always yield identical output.

    Args:
        entity: Object exposing the EntityStats attributes
        relationship_count: Relationship edges touching the entity
        recent_count: Contracts awarded within the recent window

    Returns:
        HealthScoreMetrics with every score in [0, 100]
    """
    contract_count = entity.contract_count or 0
    contract_value = entity.total_contract_value or 0
    grant_count = entity.grant_count or 0
    grant_value = entity.total_grant_value or 0
    naics_count = len(entity.naics_codes or [])
    business_type_count = len(entity.business_types or [])

    contract_velocity = _clamp(
        contract_count * 5
        + _value_bonus(contract_value, CONTRACT_VALUE_STEPS)
        + recent_count * 10
    )
    grant_success = _clamp(grant_count * 8 + _value_bonus(grant_value, GRANT_VALUE_STEPS))
    relationship_density = _clamp(relationship_count * 10)
    market_diversification = _clamp(naics_count * 15 + business_type_count * 10)

    overall = _clamp(
        contract_velocity * WEIGHTS["contract_velocity"]
        + grant_success * WEIGHTS["grant_success"]
        + relationship_density * WEIGHTS["relationship_density"]
        + market_diversification * WEIGHTS["market_diversification"]
    )

    if recent_count >= 3:
        trend = TrendDirection.UP
    elif recent_count == 0 and contract_count > 5:
        trend = TrendDirection.DOWN
    else:
        trend = TrendDirection.STABLE

    return HealthScoreMetrics(
        overall_score=overall,
        contract_velocity=contract_velocity,
        grant_success=grant_success,
        relationship_density=relationship_density,
        market_diversification=market_diversification,
        trend_direction=trend,
    )


def count_relationships(session, entity_id: int) -> int:
    """Count edges touching an entity in either direction."""
    return session.scalar(
        select(func.count(Relationship.id)).where(
            or_(
                Relationship.from_entity_id == entity_id,
                Relationship.to_entity_id == entity_id,
            )
        )
    ) or 0


def count_recent_contracts(session, entity_id: int, now: datetime) -> int:
    """Count contracts awarded to an entity within the recent window."""
    since = (now - timedelta(days=RECENT_WINDOW_DAYS)).date()
    return session.scalar(
        select(func.count(Contract.id)).where(
            Contract.recipient_entity_id == entity_id,
            Contract.award_date >= since,
        )
    ) or 0


def _store(session, entity_id: int, metrics: HealthScoreMetrics, now: datetime) -> None:
    row = session.query(HealthScore).filter(HealthScore.entity_id == entity_id).first()
    if row is None:
        row = HealthScore(entity_id=entity_id)
        session.add(row)

    row.overall_score = metrics.overall_score
    row.contract_velocity = metrics.contract_velocity
    row.grant_success = metrics.grant_success
    row.relationship_density = metrics.relationship_density
    row.market_diversification = metrics.market_diversification
    row.trend_direction = metrics.trend_direction
    row.calculated_at = now


def calculate_and_store_health_score(
    entity_id: int, now: Optional[datetime] = None
) -> Optional[HealthScoreMetrics]:
    """
    Recompute an entity's health score and upsert it.

    Returns:
        The new metrics, or None if the entity does not exist.
    """
    now = now or utcnow()

    with get_session() as session:
        entity = session.get(Entity, entity_id)
        if not entity:
            return None

        metrics = compute_health_score(
            entity,
            count_relationships(session, entity_id),
            count_recent_contracts(session, entity_id, now),
        )
        _store(session, entity_id, metrics, now)

    return metrics


def _metrics_from_row(row: HealthScore) -> HealthScoreMetrics:
    return HealthScoreMetrics(
        overall_score=row.overall_score,
        contract_velocity=row.contract_velocity or 0,
        grant_success=row.grant_success or 0,
        relationship_density=row.relationship_density or 0,
        market_diversification=row.market_diversification or 0,
        trend_direction=row.trend_direction or TrendDirection.STABLE,
    )


def get_or_compute_health_score(
    entity_id: int, now: Optional[datetime] = None
) -> Optional[HealthScoreMetrics]:
    """Return the stored score, computing and storing it on first access."""
    with get_session() as session:
        row = session.query(HealthScore).filter(HealthScore.entity_id == entity_id).first()
        if row is not None:
            return _metrics_from_row(row)

    return calculate_and_store_health_score(entity_id, now=now)


def _unscored_query():
    scored = select(HealthScore.entity_id)
    return select(Entity.id).where(
        Entity.is_canonical.is_(True),
        Entity.id.not_in(scored),
    ).order_by(Entity.id)


def unscored_entity_ids(limit: int) -> list[int]:
    """Canonical entities that have no stored health score."""
    with get_session() as session:
        return list(session.scalars(_unscored_query().limit(limit)))


def count_unscored() -> int:
    with get_session() as session:
        return session.scalar(
            select(func.count()).select_from(_unscored_query().subquery())
        ) or 0


def _score_each(entity_ids, now: Optional[datetime]) -> dict:
    calculated = 0
    errors = 0
    for entity_id in entity_ids:
        try:
            if calculate_and_store_health_score(entity_id, now=now):
                calculated += 1
        except SQLAlchemyError as e:
            log.error("Health score failed for entity %s: %s", entity_id, e)
            errors += 1
    return {"calculated": calculated, "errors": errors}


def score_pending(limit: int = 25, now: Optional[datetime] = None) -> dict:
    """
    Score up to ``limit`` canonical entities that lack a stored score.

    Returns:
        Dict with 'calculated' and 'errors' counts.
    """
    return _score_each(unscored_entity_ids(limit), now)


def calculate_all_health_scores(batch_size: int = 50, now: Optional[datetime] = None) -> dict:
    """Recompute scores for every canonical entity, paging by id."""
    totals = {"calculated": 0, "errors": 0}
    last_id = 0

    while True:
        with get_session() as session:
            ids = list(session.scalars(
                select(Entity.id).where(
                    Entity.is_canonical.is_(True),
                    Entity.id > last_id,
                ).order_by(Entity.id).limit(batch_size)
            ))

        if not ids:
            break

        result = _score_each(ids, now)
        totals["calculated"] += result["calculated"]
        totals["errors"] += result["errors"]
        last_id = ids[-1]

        if len(ids) < batch_size:
            break

    return totals


def get_health_score_distribution() -> list[dict]:
    """Count stored scores per 20-point bucket."""
    with get_session() as session:
        scores = session.scalars(select(HealthScore.overall_score)).all()

    distribution = []
    for label, low, high in DISTRIBUTION_BUCKETS:
        count = sum(1 for score in scores if score is not None and low <= score <= high)
        distribution.append({"range": label, "count": count})
    return distribution
