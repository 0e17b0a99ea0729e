"""
Enrichment flywheel.

A recurring job that keeps entity data fresh. Each cycle:

1. Picks up to 5 entities not updated within the staleness threshold
2. Enriches each one in parallel (registry profile, contract awards,
   grant projects), with every source failing independently
3. Marks each picked entity as updated, whatever the enrichment outcome
4. Scores up to 10 canonical entities that have no health score yet
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from entityintel.config import config
from entityintel.database import get_session, Entity, Contract, Grant, utcnow
from entityintel.intelligence.health import (
    calculate_and_store_health_score,
    unscored_entity_ids,
)
from .facts import GrantProjectFact, record_facts
from .opencorporates import OpenCorporatesClient
from .usaspending import USASpendingClient

log = logging.getLogger(__name__)

JOB_ID = "enrichment_cycle"
GRANT_SOURCE = "grants_analysis"
GRANT_CONFIDENCE = 0.9


@dataclass
class CycleSummary:
    """Result of a completed (or skipped) enrichment cycle."""
    entities_enriched: int = 0
    health_scores_calculated: int = 0
    duration_ms: int = 0
    enrichment_failures: int = 0
    skipped: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CycleError:
    """A cycle that aborted with an unexpected error."""
    error: str
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


CycleResult = Union[CycleSummary, CycleError]


@dataclass
class EnrichmentOutcome:
    """Per-source results of enriching one entity."""
    entity_id: int
    profile_found: bool = False
    contracts_enriched: int = 0
    grant_facts: int = 0
    errors: dict[str, str] = field(default_factory=dict)


class EnrichmentFlywheel:
    """Owns the recurring enrichment job and its run state."""

    def __init__(
        self,
        scheduler=None,
        clock: Optional[Callable[[], datetime]] = None,
        profile_client: Optional[OpenCorporatesClient] = None,
        awards_client: Optional[USASpendingClient] = None,
    ):
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self.clock = clock or utcnow
        self.profile_client = profile_client or OpenCorporatesClient()
        self.awards_client = awards_client or USASpendingClient()

        self.interval_minutes = config.flywheel_interval_minutes
        self.stale_days = config.stale_days
        self.batch_sizes = config.flywheel_batch_sizes
        self.max_workers = config.flywheel_max_workers

        self.is_running = False
        self.last_cycle: Optional[CycleResult] = None
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()

    @property
    def scheduler(self):
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler()
        return self._scheduler

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """
        Schedule the recurring cycle, with the first run due immediately.

        Returns False if the flywheel was already running.
        """
        with self._state_lock:
            if self.is_running:
                log.info("Enrichment flywheel already running")
                return False

            scheduler = self.scheduler
            scheduler.add_job(
                self.run_cycle,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=JOB_ID,
                name="Enrichment flywheel",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
                next_run_time=datetime.now(timezone.utc),
            )
            if self._owns_scheduler and not scheduler.running:
                scheduler.start()
            self.is_running = True

        log.info("Enrichment flywheel started (every %d minutes)", self.interval_minutes)
        return True

    def stop(self) -> bool:
        """Remove the recurring job. Returns False if it was not running."""
        with self._state_lock:
            if not self.is_running:
                return False

            try:
                self.scheduler.remove_job(JOB_ID)
            except JobLookupError:
                pass

            if self._owns_scheduler:
                if self.scheduler.running:
                    self.scheduler.shutdown(wait=False)
                self._scheduler = None

            self.is_running = False

        log.info("Enrichment flywheel stopped")
        return True

    def status(self) -> dict:
        return {
            "is_running": self.is_running,
            "message": "Flywheel is spinning" if self.is_running else "Flywheel is stopped",
            "last_cycle": self.last_cycle.to_dict() if self.last_cycle else None,
        }

    def trigger(self) -> Optional[CycleResult]:
        """
        Request an immediate cycle.

        While running, the scheduled job is pulled forward and None is
        returned; otherwise a cycle runs inline and its result is returned.
        """
        if self.is_running:
            self.scheduler.modify_job(JOB_ID, next_run_time=datetime.now(timezone.utc))
            return None
        return self.run_cycle()

    # =========================================================================
    # Cycle
    # =========================================================================

    def run_cycle(self) -> CycleResult:
        """Run one enrichment cycle. Never raises."""
        if not self._cycle_lock.acquire(blocking=False):
            log.warning("Enrichment cycle already in progress, skipping")
            return CycleSummary(skipped=True)

        started = time.monotonic()
        try:
            stale = self.select_stale_entities()
            log.info("Enrichment cycle: %d stale entities", len(stale))

            failures = 0
            for entity_id in stale:
                outcome = self.enrich_entity(entity_id)
                failures += len(outcome.errors)

            scored = self.score_unscored()

            result: CycleResult = CycleSummary(
                entities_enriched=len(stale),
                health_scores_calculated=scored,
                duration_ms=int((time.monotonic() - started) * 1000),
                enrichment_failures=failures,
            )
            log.info(
                "Enrichment cycle complete: %d enriched, %d scored in %d ms",
                result.entities_enriched, result.health_scores_calculated, result.duration_ms,
            )
        except Exception as e:
            log.exception("Enrichment cycle failed")
            result = CycleError(
                error=str(e),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        finally:
            self._cycle_lock.release()

        self.last_cycle = result
        return result

    def select_stale_entities(self) -> list[int]:
        cutoff = self.clock() - timedelta(days=self.stale_days)
        with get_session() as session:
            return list(session.scalars(
                select(Entity.id).where(Entity.updated_at < cutoff)
                .order_by(Entity.updated_at, Entity.id)
                .limit(self.batch_sizes["stale_entities"])
            ))

    def enrich_entity(self, entity_id: int) -> EnrichmentOutcome:
        """Run all enrichment sources for one entity, then mark it updated."""
        outcome = EnrichmentOutcome(entity_id=entity_id)
        sources = {
            "profile": lambda: self.profile_client.enrich_entity(entity_id),
            "contracts": lambda: self.enrich_from_contracts(entity_id),
            "grants": lambda: self.enrich_from_grants(entity_id),
        }

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(fn): name for name, fn in sources.items()}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    value = future.result()
                except Exception as e:
                    log.warning("Enrichment source %s failed for entity %s: %s", name, entity_id, e)
                    outcome.errors[name] = str(e)
                    continue

                if name == "profile":
                    outcome.profile_found = bool(value)
                elif name == "contracts":
                    outcome.contracts_enriched = value
                else:
                    outcome.grant_facts = value

        try:
            with get_session() as session:
                session.execute(
                    update(Entity).where(Entity.id == entity_id).values(updated_at=self.clock())
                )
        except SQLAlchemyError as e:
            log.error("Could not mark entity %s as updated: %s", entity_id, e)
            outcome.errors["touch"] = str(e)

        return outcome

    def enrich_from_contracts(self, entity_id: int) -> int:
        """Re-enrich linked contracts through the awards API; returns successes."""
        with get_session() as session:
            contract_ids = list(session.scalars(
                select(Contract.id).where(Contract.recipient_entity_id == entity_id)
                .order_by(Contract.id)
                .limit(self.batch_sizes["contracts_per_entity"])
            ))

        if not contract_ids:
            return 0

        # One entity's contracts run in order so the first description wins.
        enriched = 0
        for cid in contract_ids:
            try:
                if self.awards_client.enrich_contract(cid):
                    enriched += 1
            except Exception as e:
                log.warning("Contract %s enrichment failed: %s", cid, e)

        return enriched

    def enrich_from_grants(self, entity_id: int) -> int:
        """Record one grant_project fact per titled grant; returns facts added."""
        with get_session() as session:
            grants = session.execute(
                select(Grant.project_title, Grant.award_amount).where(
                    Grant.recipient_entity_id == entity_id,
                    Grant.project_title.is_not(None),
                ).order_by(Grant.id).limit(self.batch_sizes["grants_per_entity"])
            ).all()

            values = [
                GrantProjectFact(project=title, amount=amount)
                for title, amount in grants
                if title
            ]
            return record_facts(session, entity_id, values, GRANT_SOURCE, GRANT_CONFIDENCE)

    def score_unscored(self) -> int:
        scored = 0
        now = self.clock()
        for entity_id in unscored_entity_ids(self.batch_sizes["unscored_entities"]):
            try:
                if calculate_and_store_health_score(entity_id, now=now):
                    scored += 1
            except SQLAlchemyError as e:
                log.error("Health score failed for entity %s: %s", entity_id, e)
        return scored
