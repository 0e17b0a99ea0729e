"""Tests for the enrichment flywheel and the scheduler wiring."""

import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from entityintel.database import get_session, Entity, Fact, HealthScore
from entityintel.enrichment import CycleError, CycleSummary, EnrichmentFlywheel, USASpendingClient
from entityintel.enrichment.flywheel import JOB_ID

NOW = datetime(2026, 6, 1, 12, 0, 0)


@pytest.fixture
def clients():
    profile = MagicMock()
    profile.enrich_entity.return_value = True
    awards = MagicMock()
    awards.enrich_contract.return_value = True
    return profile, awards


@pytest.fixture
def flywheel(clients):
    profile, awards = clients
    return EnrichmentFlywheel(
        scheduler=MagicMock(),
        clock=lambda: NOW,
        profile_client=profile,
        awards_client=awards,
    )


@pytest.fixture
def population(make_entity, make_contract, make_grant):
    stale = make_entity("STALE CO", updated_at=NOW - timedelta(days=30))
    fresh = make_entity("FRESH CO", updated_at=NOW - timedelta(days=1))
    make_contract(stale, "STALE CO", award_id="A1")
    make_contract(stale, "STALE CO", award_id="A2")
    make_grant(stale, "STALE CO", project_title="Wetland restoration", award_amount=75_000.0)
    make_grant(stale, "STALE CO", project_title=None)
    return {"stale": stale, "fresh": fresh}


def _updated_at(entity_id):
    with get_session() as session:
        return session.get(Entity, entity_id).updated_at


# =============================================================================
# Cycle
# =============================================================================

def test_cycle_enriches_stale_entities(flywheel, clients, population):
    profile, awards = clients

    result = flywheel.run_cycle()

    assert isinstance(result, CycleSummary)
    assert result.entities_enriched == 1
    assert result.health_scores_calculated == 2
    assert result.enrichment_failures == 0
    assert result.skipped is False

    profile.enrich_entity.assert_called_once_with(population["stale"])
    assert awards.enrich_contract.call_count == 2
    assert _updated_at(population["stale"]) == NOW
    assert _updated_at(population["fresh"]) == NOW - timedelta(days=1)

    with get_session() as session:
        [fact] = session.query(Fact).all()
        assert fact.fact_type == "grant_project"
        assert fact.fact_value == {"project": "Wetland restoration", "amount": 75_000.0}
        assert fact.source_name == "grants_analysis"
        assert session.query(HealthScore).count() == 2


def test_second_cycle_finds_nothing_stale(flywheel, population):
    flywheel.run_cycle()
    result = flywheel.run_cycle()

    assert result.entities_enriched == 0
    assert result.health_scores_calculated == 0


def test_failing_source_is_isolated(flywheel, clients, population):
    profile, awards = clients
    profile.enrich_entity.side_effect = RuntimeError("registry down")
    awards.enrich_contract.side_effect = [True, RuntimeError("timeout")]

    result = flywheel.run_cycle()

    assert isinstance(result, CycleSummary)
    assert result.enrichment_failures == 1
    assert _updated_at(population["stale"]) == NOW
    with get_session() as session:
        assert session.query(Fact).count() == 1


def test_enrich_entity_outcome(flywheel, population):
    outcome = flywheel.enrich_entity(population["stale"])

    assert outcome.profile_found is True
    assert outcome.contracts_enriched == 2
    assert outcome.grant_facts == 1
    assert outcome.errors == {}


def test_contract_descriptions_keep_first_per_entity(make_entity, make_contract):
    entity_id = make_entity("SLOW AWARDS CO", updated_at=NOW - timedelta(days=30))
    for i in range(3):
        make_contract(entity_id, "SLOW AWARDS CO", award_id=f"AWD_{i}")

    def slow_award(method, url, **kwargs):
        time.sleep(0.05)
        response = MagicMock()
        response.json.return_value = {"description": f"WORK UNDER {url.rstrip('/').rsplit('/', 1)[-1]}"}
        return response

    http = MagicMock()
    http.headers = {}
    http.request.side_effect = slow_award
    wheel = EnrichmentFlywheel(
        scheduler=MagicMock(),
        clock=lambda: NOW,
        profile_client=MagicMock(),
        awards_client=USASpendingClient(session=http),
    )

    assert wheel.enrich_from_contracts(entity_id) == 3
    wheel.enrich_from_contracts(entity_id)

    with get_session() as session:
        facts = session.query(Fact).filter(Fact.fact_type == "contract_description").all()
        assert len(facts) == 1
        assert facts[0].fact_value["award_id"] == "AWD_0"


def test_stale_selection_is_bounded(flywheel, make_entity):
    for i in range(4):
        make_entity(f"OLD {i}", updated_at=NOW - timedelta(days=10 + i))
    flywheel.batch_sizes = {**flywheel.batch_sizes, "stale_entities": 3}

    selected = flywheel.select_stale_entities()

    assert len(selected) == 3
    # oldest first
    assert selected[0] == 4


def test_reentrant_cycle_is_skipped(flywheel, clients, population):
    profile, _ = clients
    nested = []
    profile.enrich_entity.side_effect = lambda entity_id: nested.append(flywheel.run_cycle())

    outer = flywheel.run_cycle()

    assert isinstance(outer, CycleSummary) and not outer.skipped
    assert len(nested) == 1
    assert nested[0].skipped is True


def test_unexpected_error_becomes_cycle_error(flywheel, db, monkeypatch):
    def boom():
        raise RuntimeError("select failed")

    monkeypatch.setattr(flywheel, "select_stale_entities", boom)

    result = flywheel.run_cycle()

    assert isinstance(result, CycleError)
    assert result.error == "select failed"
    assert flywheel.status()["last_cycle"]["error"] == "select failed"
    # lock released after a failure
    monkeypatch.undo()
    assert isinstance(flywheel.run_cycle(), CycleSummary)


# =============================================================================
# Lifecycle
# =============================================================================

def test_start_is_idempotent(flywheel):
    assert flywheel.start() is True
    assert flywheel.start() is False

    flywheel.scheduler.add_job.assert_called_once()
    kwargs = flywheel.scheduler.add_job.call_args.kwargs
    assert kwargs["id"] == JOB_ID
    assert kwargs["max_instances"] == 1
    assert kwargs["coalesce"] is True
    assert kwargs["next_run_time"] is not None
    assert flywheel.status()["is_running"] is True


def test_stop(flywheel):
    assert flywheel.stop() is False

    flywheel.start()
    assert flywheel.stop() is True

    flywheel.scheduler.remove_job.assert_called_once_with(JOB_ID)
    status = flywheel.status()
    assert status["is_running"] is False
    assert status["message"] == "Flywheel is stopped"


def test_trigger_while_running_pulls_job_forward(flywheel):
    flywheel.start()

    assert flywheel.trigger() is None
    flywheel.scheduler.modify_job.assert_called_once()
    assert flywheel.scheduler.modify_job.call_args.args == (JOB_ID,)


def test_trigger_while_stopped_runs_inline(flywheel, population):
    result = flywheel.trigger()

    assert isinstance(result, CycleSummary)
    assert flywheel.status()["last_cycle"]["entities_enriched"] == 1


def test_owned_scheduler_is_started_and_shut_down(clients):
    profile, awards = clients
    scheduler = MagicMock()
    scheduler.running = False

    with patch("entityintel.enrichment.flywheel.BackgroundScheduler", return_value=scheduler):
        wheel = EnrichmentFlywheel(clock=lambda: NOW, profile_client=profile, awards_client=awards)
        wheel.start()
        scheduler.start.assert_called_once()

        scheduler.running = True
        wheel.stop()
        scheduler.shutdown.assert_called_once_with(wait=False)


# =============================================================================
# Scheduler process
# =============================================================================

def test_start_scheduler_background(db):
    from entityintel import scheduler as scheduler_module

    background = MagicMock()
    with patch.object(scheduler_module, "BackgroundScheduler", return_value=background), \
            patch.object(scheduler_module.signal, "signal") as install_handler:
        returned, wheel = scheduler_module.start_scheduler(foreground=False)

    assert returned is background
    job_ids = [c.kwargs["id"] for c in background.add_job.call_args_list]
    assert job_ids == [JOB_ID, "audit_job"]
    assert wheel.is_running is True
    assert install_handler.call_count == 2
    background.start.assert_called_once()
