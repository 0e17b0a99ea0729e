"""Tests for insight rules and generation."""

from datetime import datetime, timedelta

import pytest

from entityintel.database import (
    get_session,
    Insight,
    InsightSeverity,
    InsightType,
    MarketTrend,
    TrendDirection,
)
from entityintel.insights import (
    Concentration,
    ConcentrationSupport,
    HealthSupport,
    analyze_concentration,
    create_insight,
    evaluate_rules,
    generate_entity_insights,
    generate_insights_batch,
    insight_key,
    list_insights,
)
from entityintel.insights.rules import concentration_insights, health_insights, market_insights
from entityintel.intelligence.health import HealthScoreMetrics
from entityintel.intelligence.relationships import MarketShift

NOW = datetime(2026, 6, 1, 12, 0, 0)


def _health(overall=50, velocity=50, density=50, diversification=50, trend=TrendDirection.STABLE):
    return HealthScoreMetrics(
        overall_score=overall,
        contract_velocity=velocity,
        grant_success=0,
        relationship_density=density,
        market_diversification=diversification,
        trend_direction=trend,
    )


def _titles(drafts):
    return [d.title for d in drafts]


# =============================================================================
# Concentration boundary
# =============================================================================

@pytest.mark.parametrize("top,other,fires", [
    (70, 30, False),
    (71, 29, True),
    (700_000.0, 300_000.0, False),
    (70.01, 29.99, True),
    (50, 50, False),
])
def test_concentration_boundary(top, other, fires):
    concentration = Concentration(
        agency_totals={"DOD": top, "NASA": other},
        total_value=top + other,
    )
    assert concentration.exceeds() is fires
    assert bool(concentration_insights(1, concentration)) is fires


def test_concentration_without_value_never_fires():
    assert not Concentration().exceeds()
    assert not Concentration(agency_totals={"DOD": 0.0}, total_value=0.0).exceeds()


def test_concentration_insight_content():
    concentration = Concentration(agency_totals={"DOD": 900.0, "NASA": 100.0}, total_value=1000.0)
    [draft] = concentration_insights(5, concentration)

    assert draft.title == "High Agency Concentration"
    assert draft.severity == InsightSeverity.HIGH
    assert draft.description.startswith("90% of contract value from DOD")
    assert isinstance(draft.support, ConcentrationSupport)
    assert draft.support.top_agency_share == 90.0


def test_concentration_share_rounds_half_up():
    concentration = Concentration(agency_totals={"DOD": 145.0, "NASA": 55.0}, total_value=200.0)
    [draft] = concentration_insights(5, concentration)

    assert draft.description.startswith("73% of contract value from DOD")
    assert draft.support.top_agency_share == 72.5


# =============================================================================
# Rule table
# =============================================================================

def test_declining_performance():
    drafts = health_insights(1, _health(trend=TrendDirection.DOWN))
    assert _titles(drafts) == ["Declining Performance Detected"]
    assert drafts[0].insight_type == InsightType.WARNING
    assert drafts[0].severity == InsightSeverity.HIGH


def test_strong_performance_threshold():
    assert "Strong Performance" in _titles(health_insights(1, _health(overall=80)))
    assert "Strong Performance" not in _titles(health_insights(1, _health(overall=79)))


def test_low_density_and_diversification():
    drafts = health_insights(1, _health(density=29, diversification=29))
    assert _titles(drafts) == ["Network Growth Opportunity", "Market Concentration Risk"]
    assert all(d.severity == InsightSeverity.MEDIUM for d in drafts)


def test_market_rules():
    shift = MarketShift(
        new_markets=["A", "B", "C", "D"],
        lost_markets=["E"],
        contract_velocity_change=4,
        trend=MarketTrend.EXPANDING,
    )
    drafts = market_insights(1, shift)

    assert _titles(drafts) == ["New Market Entry", "Market Position Loss", "Market Expansion Trend"]
    assert drafts[0].action_items == [
        "Strengthen A relationship",
        "Strengthen B relationship",
        "Strengthen C relationship",
    ]
    assert drafts[1].insight_type == InsightType.THREAT


def test_evaluate_rules_order_and_quiet_entity():
    shift = MarketShift(new_markets=["A"])
    concentration = Concentration(agency_totals={"A": 100.0}, total_value=100.0)
    drafts = evaluate_rules(1, _health(overall=85), shift, concentration)

    assert _titles(drafts) == ["Strong Performance", "New Market Entry", "High Agency Concentration"]
    assert evaluate_rules(1, _health(), MarketShift(), Concentration()) == []


def test_supporting_data_is_tagged():
    [draft] = health_insights(3, _health(overall=90))
    data = draft.supporting_data()

    assert data["kind"] == "health"
    assert data["overall_score"] == 90
    assert data["action_items"] == draft.action_items
    assert isinstance(draft.support, HealthSupport)


# =============================================================================
# Dedup keys
# =============================================================================

def test_insight_key_is_content_derived():
    [draft] = health_insights(3, _health(overall=90))
    [same_bucket] = health_insights(3, _health(overall=95))
    [other_bucket] = health_insights(3, _health(overall=82))

    assert insight_key(draft, NOW) == insight_key(same_bucket, NOW)
    assert insight_key(draft, NOW) != insight_key(other_bucket, NOW)
    assert insight_key(draft, NOW) != insight_key(draft, NOW + timedelta(days=1))


def test_create_insight_dedupes(db):
    [draft] = health_insights(3, _health(overall=90))

    assert create_insight(draft, now=NOW, dedupe=True) is not None
    assert create_insight(draft, now=NOW, dedupe=True) is None
    assert create_insight(draft, now=NOW + timedelta(days=1), dedupe=True) is not None
    assert create_insight(draft, now=NOW, dedupe=False) is not None

    with get_session() as session:
        assert session.query(Insight).count() == 3


# =============================================================================
# Generation
# =============================================================================

def test_analyze_concentration(make_entity, make_contract):
    entity_id = make_entity()
    make_contract(entity_id, awarding_agency="DOD", award_amount=800.0)
    make_contract(entity_id, awarding_agency=None, award_amount=200.0)

    concentration = analyze_concentration(entity_id)

    assert concentration.agency_totals == {"DOD": 800.0, "Unknown": 200.0}
    assert concentration.total_value == 1000.0
    assert concentration.exceeds()


def test_generate_entity_insights_for_quiet_entity(make_entity):
    entity_id = make_entity("QUIET CO")

    drafts = generate_entity_insights(entity_id, now=NOW)

    assert _titles(drafts) == ["Network Growth Opportunity", "Market Concentration Risk"]
    stored = list_insights(entity_id=entity_id)
    assert len(stored) == 2
    assert all(i.scope_type == "entity" and i.scope_value == str(entity_id) for i in stored)
    assert all(i.related_entities == [entity_id] for i in stored)


def test_generate_entity_insights_rerun_same_day(make_entity):
    entity_id = make_entity("QUIET CO")

    generate_entity_insights(entity_id, now=NOW)
    generate_entity_insights(entity_id, now=NOW)
    assert len(list_insights(entity_id=entity_id)) == 2

    generate_entity_insights(entity_id, now=NOW, dedupe=False)
    assert len(list_insights(entity_id=entity_id)) == 4


def test_generate_for_missing_entity(db):
    assert generate_entity_insights(404, now=NOW) == []


def test_generate_concentrated_entity(make_entity, make_contract):
    entity_id = make_entity("FOCUSED CO")
    make_contract(entity_id, awarding_agency="DOD", award_amount=950.0, award_date=(NOW - timedelta(days=5)).date())
    make_contract(entity_id, awarding_agency="NASA", award_amount=50.0, award_date=(NOW - timedelta(days=5)).date())

    titles = _titles(generate_entity_insights(entity_id, now=NOW))

    assert "High Agency Concentration" in titles
    assert "New Market Entry" in titles


def test_generate_insights_batch(make_entity):
    make_entity("ONE")
    make_entity("TWO")
    make_entity("ALIAS", is_canonical=False)

    result = generate_insights_batch(limit=10, now=NOW)

    assert result == {"processed": 2, "insights_matched": 4, "insights_generated": 4, "errors": 0}
    assert len(list_insights(limit=50)) == 4


def test_generate_insights_batch_counts_stored_rows(make_entity):
    make_entity("QUIET CO")

    first = generate_insights_batch(limit=10, now=NOW)
    second = generate_insights_batch(limit=10, now=NOW)

    assert first["insights_generated"] == 2
    assert second["insights_matched"] == 2
    assert second["insights_generated"] == 0
    assert len(list_insights(limit=50)) == 2
