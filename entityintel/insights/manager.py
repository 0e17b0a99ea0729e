"""Insight persistence."""

import hashlib
from datetime import datetime
from typing import Optional

from entityintel.config import config
from entityintel.database import get_session, Insight, utcnow
from .rules import InsightDraft, HealthSupport

SCORE_BUCKET = 10


def insight_key(draft: InsightDraft, day: datetime) -> str:
    """
    Content-derived key for an insight.

    Same entity, type, title, score bucket and calendar day produce the same
    key, so a repeated run on unchanged data maps onto the existing row.
    """
    bucket = ""
    if isinstance(draft.support, HealthSupport):
        bucket = str(draft.support.overall_score // SCORE_BUCKET)

    raw = "|".join([
        str(draft.entity_id),
        draft.insight_type.value,
        draft.title,
        bucket,
        day.strftime("%Y-%m-%d"),
    ])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class InsightManager:
    """Manages insight creation."""

    @staticmethod
    def create(draft: InsightDraft, dedup_key: Optional[str] = None) -> int:
        """
        Insert an insight row.

        Returns:
            ID of the created insight.
        """
        with get_session() as session:
            insight = Insight(
                scope_type="entity",
                scope_value=str(draft.entity_id),
                insight_type=draft.insight_type,
                title=draft.title,
                description=draft.description,
                severity=draft.severity,
                supporting_data=draft.supporting_data(),
                related_entities=[draft.entity_id],
                dedup_key=dedup_key,
            )
            session.add(insight)
            session.flush()
            insight_id = insight.id

        return insight_id

    @staticmethod
    def check_duplicate(dedup_key: str) -> bool:
        """Return True if an insight with this content key already exists."""
        with get_session() as session:
            existing = session.query(Insight.id).filter(
                Insight.dedup_key == dedup_key
            ).first()
            return existing is not None


def create_insight(
    draft: InsightDraft,
    now: Optional[datetime] = None,
    dedupe: Optional[bool] = None,
) -> Optional[int]:
    """
    Persist a draft.

    Returns insight ID if created, None if an identical insight exists.
    With dedup disabled every call appends a new row.
    """
    manager = InsightManager()
    dedupe = config.insight_dedupe if dedupe is None else dedupe

    if not dedupe:
        return manager.create(draft)

    key = insight_key(draft, now or utcnow())
    if manager.check_duplicate(key):
        return None

    return manager.create(draft, dedup_key=key)


def list_insights(entity_id: Optional[int] = None, limit: int = 20) -> list[Insight]:
    """Most recent insights, optionally for one entity."""
    with get_session() as session:
        query = session.query(Insight).order_by(Insight.created_at.desc(), Insight.id.desc())
        if entity_id is not None:
            query = query.filter(
                Insight.scope_type == "entity",
                Insight.scope_value == str(entity_id),
            )
        return query.limit(limit).all()
