"""Tests for relationship intelligence."""

from datetime import datetime, timedelta

import pytest

from entityintel.database import get_session, MarketTrend, Relationship
from entityintel.intelligence.relationships import (
    MAX_PARTNERS,
    MIN_PARTNER_STRENGTH,
    analyze_network,
    compare_markets,
    detect_market_shift,
    discover_teaming_partners,
    find_competitors,
    partner_strength,
    rank_partners,
)

NOW = datetime(2026, 6, 1, 12, 0, 0)


def _days_ago(days):
    return (NOW - timedelta(days=days)).date()


# =============================================================================
# Pure helpers
# =============================================================================

def test_market_shift_sets():
    shift = compare_markets({"A", "B"}, {"B", "C"}, 2, 2)
    assert shift.new_markets == ["A"]
    assert shift.lost_markets == ["C"]
    assert shift.trend == MarketTrend.STABLE


def test_market_shift_expanding():
    shift = compare_markets(["A", "B", "C"], ["A"], 5, 2)
    assert shift.trend == MarketTrend.EXPANDING
    assert shift.contract_velocity_change == 3


def test_market_shift_contracting_on_velocity_drop():
    shift = compare_markets(["A"], ["A"], 1, 4)
    assert shift.trend == MarketTrend.CONTRACTING


def test_market_shift_contracting_on_lost_markets():
    shift = compare_markets([], ["A", "B"], 0, 2)
    assert shift.lost_markets == ["A", "B"]
    assert shift.trend == MarketTrend.CONTRACTING


def test_partner_strength_caps_at_one():
    assert partner_strength(10, 10) == 1.0
    assert partner_strength(1, 1) == pytest.approx(0.25)


def test_rank_partners_sorted_bounded_and_above_floor():
    candidates = []
    for entity_id in range(1, 31):
        for n in range(entity_id % 5 + 1):
            candidates.append((entity_id, f"ENTITY {entity_id}", f"AGENCY {n}", "541512"))

    partners = rank_partners(candidates, own_naics={"541512"})

    assert len(partners) <= MAX_PARTNERS
    strengths = [p.strength_score for p in partners]
    assert strengths == sorted(strengths, reverse=True)
    assert all(s > MIN_PARTNER_STRENGTH for s in strengths)


def test_rank_partners_drops_floor_strength():
    # no shared agency, one NAICS overlap -> exactly 0.1
    candidates = [(7, "NAICS ONLY", None, "541512")]
    assert rank_partners(candidates, own_naics={"541512"}) == []


def test_rank_partners_ignores_unlinked_rows():
    candidates = [(None, "ORPHAN", "DOD", "541512")]
    assert rank_partners(candidates, own_naics=set()) == []


# =============================================================================
# Database-backed analyses
# =============================================================================

@pytest.fixture
def network(make_entity, make_contract):
    subject = make_entity("SUBJECT CO", state="TX")
    partner = make_entity("PARTNER CO", state="TX", total_contract_value=20_000_000)
    broad = make_entity("BROAD CO", state="TX", total_contract_value=500_000_000)
    outsider = make_entity("OUTSIDER CO", state="CA", total_contract_value=900_000_000)

    make_contract(subject, "SUBJECT CO", awarding_agency="DOD", naics_code="541512")
    make_contract(subject, "SUBJECT CO", awarding_agency="NASA", naics_code="541511")
    make_contract(partner, "PARTNER CO", awarding_agency="DOD", naics_code="541512")
    make_contract(broad, "BROAD CO", awarding_agency="DOD")
    make_contract(broad, "BROAD CO", awarding_agency="NASA")
    make_contract(outsider, "OUTSIDER CO", awarding_agency="EPA", naics_code="541512")

    return {"subject": subject, "partner": partner, "broad": broad, "outsider": outsider}


def test_discover_teaming_partners(network):
    partners = discover_teaming_partners(network["subject"])

    assert [p.entity_id for p in partners] == [network["broad"], network["partner"]]
    assert partners[0].strength_score == pytest.approx(0.3)
    assert partners[1].strength_score == pytest.approx(0.25)
    assert partners[1].shared_naics == 1

    with get_session() as session:
        edges = session.query(Relationship).filter_by(from_entity_id=network["subject"]).all()
        assert {e.to_entity_id for e in edges} == {network["broad"], network["partner"]}
        assert all(e.relationship_type == "teaming_partner" for e in edges)


def test_discover_teaming_partners_is_idempotent(network):
    discover_teaming_partners(network["subject"])
    discover_teaming_partners(network["subject"])

    with get_session() as session:
        assert session.query(Relationship).count() == 2


def test_no_history_yields_empty_results(make_entity):
    entity_id = make_entity("NEWCOMER")

    assert discover_teaming_partners(entity_id) == []
    shift = detect_market_shift(entity_id, now=NOW)
    assert shift.new_markets == []
    assert shift.lost_markets == []
    assert shift.trend == MarketTrend.STABLE


def test_detect_market_shift(make_entity, make_contract):
    entity_id = make_entity()
    make_contract(entity_id, awarding_agency="A", award_date=_days_ago(10))
    make_contract(entity_id, awarding_agency="B", award_date=_days_ago(20))
    make_contract(entity_id, awarding_agency="B", award_date=_days_ago(100))
    make_contract(entity_id, awarding_agency="C", award_date=_days_ago(120))
    make_contract(entity_id, awarding_agency="D", award_date=_days_ago(400))

    shift = detect_market_shift(entity_id, now=NOW)

    assert shift.new_markets == ["A"]
    assert shift.lost_markets == ["C"]
    assert shift.contract_velocity_change == 0


def test_find_competitors(network):
    competitors = find_competitors(network["subject"])

    assert [c.entity_id for c in competitors] == [network["broad"], network["partner"]]
    assert competitors[0].strength_score == 1.0
    assert competitors[1].strength_score == pytest.approx(0.2)


def test_find_competitors_without_state(make_entity):
    assert find_competitors(make_entity("NOWHERE")) == []


def test_analyze_network(network):
    analysis = analyze_network(network["subject"], now=NOW)

    assert len(analysis.teaming_partners) == 2
    assert len(analysis.competitors) == 2
    assert analysis.network_strength == pytest.approx(0.275)
    assert analysis.to_dict()["market_shift"]["trend"] == "stable"
