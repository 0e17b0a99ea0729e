"""
Data quality audit.

Runs a fixed sequence of repair and audit passes over the whole entity
population:

1. Orphan repair - link contracts/grants with no entity reference
2. Staleness scan - report entities the flywheel has not refreshed
3. Classification backfill - classify a bounded slice of contracts
4. Score backfill - score a bounded slice of unscored entities
5. Freshness check - flag the dataset if nothing new arrived in 24 hours

Each pass returns an AuditResult; a failing pass is reported and the
remaining passes still run.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from rapidfuzz import fuzz
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from entityintel.config import config
from entityintel.database import (
    get_session,
    Entity,
    Contract,
    Grant,
    Fact,
    HealthScore,
    ContractClassification,
    utcnow,
)
from entityintel.normalization import normalize_entity_name, match_prefix
from .classifier import classify_all_pending, count_unclassified
from .health import score_pending

log = logging.getLogger(__name__)


MATCH_CANDIDATE_LIMIT = 25
FRESHNESS_WINDOW_HOURS = 24
FIXED_ORPHAN_DENOMINATOR = 1000
FIXED_CLASSIFIED_DENOMINATOR = 500

QUALITY_WEIGHTS = {
    "scoring": 40,
    "linkage": 30,
    "classification": 30,
}


@dataclass
class AuditResult:
    """Outcome of one audit pass."""
    type: str
    found: int
    fixed: int
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "found": self.found,
            "fixed": self.fixed,
            "details": self.details,
        }


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def match_entity(session, recipient_name: Optional[str], threshold: Optional[int] = None) -> Optional[int]:
    """
    Find the single canonical entity a recipient name refers to.

    Candidates are canonical entities whose name contains the first 20
    characters of the recipient name (case-insensitive). One candidate is a
    match; several are narrowed with rapidfuzz and only a lone survivor above
    the threshold counts. Anything else is no match.
    """
    prefix = match_prefix(recipient_name)
    if not prefix:
        return None

    candidates = session.execute(
        select(Entity.id, Entity.canonical_name).where(
            Entity.is_canonical.is_(True),
            Entity.canonical_name.ilike(f"%{_escape_like(prefix)}%", escape="\\"),
        ).order_by(Entity.id).limit(MATCH_CANDIDATE_LIMIT)
    ).all()

    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0].id

    threshold = config.orphan_match_threshold if threshold is None else threshold
    target = normalize_entity_name(recipient_name) or ""
    survivors = [
        c.id for c in candidates
        if fuzz.token_sort_ratio(target, normalize_entity_name(c.canonical_name) or "") >= threshold
    ]
    return survivors[0] if len(survivors) == 1 else None


def _link_orphans(model, batch_size: int) -> tuple[int, int, int, list[str]]:
    """Returns (found, fixed, errors, sample names) for one record table."""
    with get_session() as session:
        found = session.scalar(
            select(func.count(model.id)).where(model.recipient_entity_id.is_(None))
        ) or 0
        orphans = session.execute(
            select(model.id, model.recipient_name).where(
                model.recipient_entity_id.is_(None)
            ).order_by(model.id).limit(batch_size)
        ).all()

        matches = {
            row.id: match_entity(session, row.recipient_name)
            for row in orphans
        }

    fixed = 0
    errors = 0
    for record_id, entity_id in matches.items():
        if entity_id is None:
            continue
        try:
            with get_session() as session:
                # Guarded on NULL so an already-linked record is never overwritten
                result = session.execute(
                    update(model)
                    .where(model.id == record_id, model.recipient_entity_id.is_(None))
                    .values(recipient_entity_id=entity_id)
                )
                fixed += result.rowcount or 0
        except SQLAlchemyError as e:
            log.error("Could not link %s %s: %s", model.__tablename__, record_id, e)
            errors += 1

    sample = [row.recipient_name for row in orphans[:5]]
    return found, fixed, errors, sample


def repair_orphans(batch_size: Optional[int] = None) -> AuditResult:
    """Link orphaned contracts and grants to canonical entities by name."""
    batch_size = batch_size or config.audit_batch_sizes["orphans"]
    details = {}
    found = fixed = 0

    for model in (Contract, Grant):
        table_found, table_fixed, table_errors, sample = _link_orphans(model, batch_size)
        found += table_found
        fixed += table_fixed
        details[model.__tablename__] = {
            "found": table_found,
            "fixed": table_fixed,
            "errors": table_errors,
            "sample": sample,
        }

    return AuditResult(type="orphaned_records", found=found, fixed=fixed, details=details)


def scan_stale_entities(now: Optional[datetime] = None, sample_size: Optional[int] = None) -> AuditResult:
    """Report entities not updated within the staleness threshold."""
    now = now or utcnow()
    sample_size = sample_size or config.audit_batch_sizes["stale_sample"]
    cutoff = now - timedelta(days=config.stale_days)

    with get_session() as session:
        count = session.scalar(
            select(func.count(Entity.id)).where(Entity.updated_at < cutoff)
        ) or 0
        sample = session.scalars(
            select(Entity.canonical_name).where(Entity.updated_at < cutoff)
            .order_by(Entity.updated_at).limit(sample_size)
        ).all()

    # Refreshing is the flywheel's job; this pass only reports
    return AuditResult(
        type="stale_entities",
        found=count,
        fixed=0,
        details={"stale_threshold_days": config.stale_days, "sample": list(sample[:5])},
    )


def backfill_classifications(limit: Optional[int] = None) -> AuditResult:
    """Classify a bounded slice of unclassified contracts."""
    limit = limit or config.audit_batch_sizes["classification"]
    unclassified = count_unclassified()

    if unclassified <= 0:
        return AuditResult(type="contract_classification", found=0, fixed=0)

    slice_size = min(unclassified, limit)
    result = classify_all_pending(batch_size=slice_size, limit=slice_size)
    return AuditResult(
        type="contract_classification",
        found=unclassified,
        fixed=result["classified"],
        details={"errors": result["errors"]},
    )


def backfill_scores(limit: Optional[int] = None, now: Optional[datetime] = None) -> AuditResult:
    """Score a bounded slice of canonical entities without a stored score."""
    limit = limit or config.audit_batch_sizes["scoring"]

    with get_session() as session:
        total = session.scalar(
            select(func.count(Entity.id)).where(Entity.is_canonical.is_(True))
        ) or 0
        scored = session.scalar(select(func.count(HealthScore.id))) or 0

    unscored = total - scored
    if unscored <= 0:
        return AuditResult(type="entity_scoring", found=0, fixed=0)

    result = score_pending(min(unscored, limit), now=now)
    return AuditResult(
        type="entity_scoring",
        found=unscored,
        fixed=result["calculated"],
        details={"errors": result["errors"]},
    )


def check_freshness(now: Optional[datetime] = None) -> AuditResult:
    """Healthy iff any record or fact was created in the last 24 hours."""
    now = now or utcnow()
    since = now - timedelta(hours=FRESHNESS_WINDOW_HOURS)

    with get_session() as session:
        recent_contracts = session.scalar(
            select(func.count(Contract.id)).where(Contract.created_at >= since)
        ) or 0
        recent_grants = session.scalar(
            select(func.count(Grant.id)).where(Grant.created_at >= since)
        ) or 0
        recent_facts = session.scalar(
            select(func.count(Fact.id)).where(Fact.created_at >= since)
        ) or 0

    healthy = (recent_contracts + recent_grants + recent_facts) > 0
    return AuditResult(
        type="data_freshness",
        found=0 if healthy else 1,
        fixed=0,
        details={
            "recent_contracts": recent_contracts,
            "recent_grants": recent_grants,
            "recent_facts": recent_facts,
            "status": "healthy" if healthy else "stale",
        },
    )


def _get_passes(now: Optional[datetime]) -> list[tuple[str, Callable[[], AuditResult]]]:
    return [
        ("orphaned_records", repair_orphans),
        ("stale_entities", lambda: scan_stale_entities(now=now)),
        ("contract_classification", backfill_classifications),
        ("entity_scoring", lambda: backfill_scores(now=now)),
        ("data_freshness", lambda: check_freshness(now=now)),
    ]


def run_daily_audit(now: Optional[datetime] = None) -> list[AuditResult]:
    """Run every audit pass in order and return their results."""
    log.info("Starting data quality audit")
    results = []

    for name, audit_pass in _get_passes(now):
        try:
            result = audit_pass()
        except SQLAlchemyError as e:
            log.error("Audit pass %s failed: %s", name, e)
            result = AuditResult(type=name, found=0, fixed=0, details={"error": str(e)})
        log.info("  %s: found %d, fixed %d", result.type, result.found, result.fixed)
        results.append(result)

    log.info("Data quality audit complete")
    return results


def get_data_quality_score(normalization: Optional[str] = None) -> int:
    """
    Aggregate quality score in [0, 100].

    40% scoring coverage, 30% linkage coverage, 30% classification coverage.
    ``normalization='ratio'`` divides by real record counts; ``'fixed'`` uses
    constant denominators (1000 orphans, 500 classifications).
    """
    normalization = normalization or config.quality_normalization

    with get_session() as session:
        total_entities = session.scalar(
            select(func.count(Entity.id)).where(Entity.is_canonical.is_(True))
        ) or 0
        scored = session.scalar(select(func.count(HealthScore.id))) or 0
        total_contracts = session.scalar(select(func.count(Contract.id))) or 0
        total_grants = session.scalar(select(func.count(Grant.id))) or 0
        orphan_contracts = session.scalar(
            select(func.count(Contract.id)).where(Contract.recipient_entity_id.is_(None))
        ) or 0
        orphan_grants = session.scalar(
            select(func.count(Grant.id)).where(Grant.recipient_entity_id.is_(None))
        ) or 0
        classified = session.scalar(select(func.count(ContractClassification.id))) or 0

    scoring_coverage = min(scored / max(total_entities, 1), 1.0)

    if normalization == "fixed":
        linkage_coverage = 1 - orphan_contracts / FIXED_ORPHAN_DENOMINATOR
        classification_coverage = min(classified / FIXED_CLASSIFIED_DENOMINATOR, 1.0)
    else:
        total_records = total_contracts + total_grants
        orphans = orphan_contracts + orphan_grants
        linkage_coverage = 1 - orphans / total_records if total_records else 1.0
        classification_coverage = (
            min(classified / total_contracts, 1.0) if total_contracts else 1.0
        )

    score = (
        scoring_coverage * QUALITY_WEIGHTS["scoring"]
        + linkage_coverage * QUALITY_WEIGHTS["linkage"]
        + classification_coverage * QUALITY_WEIGHTS["classification"]
    )
    return min(max(int(math.floor(score + 0.5)), 0), 100)
