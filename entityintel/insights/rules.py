"""
Insight rules.

Each rule inspects one signal (health score, market shift or agency
concentration) and yields an InsightDraft with a templated title,
description, severity and suggested action items. Rules are pure; the
engine gathers the signals and the manager persists the drafts.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Union

from entityintel.database import InsightType, InsightSeverity, MarketTrend, TrendDirection
from entityintel.intelligence.health import HealthScoreMetrics
from entityintel.intelligence.relationships import MarketShift


STRONG_SCORE = 80
LOW_DENSITY = 30
LOW_DIVERSIFICATION = 30
CONCENTRATION_THRESHOLD = 70  # percent of total contract value


@dataclass(frozen=True)
class HealthSupport:
    """Supporting data for health-derived insights."""
    overall_score: int
    contract_velocity: int
    relationship_density: int
    market_diversification: int
    trend_direction: str

    kind = "health"


@dataclass(frozen=True)
class MarketSupport:
    """Supporting data for market-shift insights."""
    new_markets: tuple[str, ...]
    lost_markets: tuple[str, ...]
    contract_velocity_change: int
    trend: str

    kind = "market_shift"


@dataclass(frozen=True)
class ConcentrationSupport:
    """Supporting data for agency concentration insights."""
    top_agency: str
    top_agency_value: float
    total_value: float
    top_agency_share: float

    kind = "concentration"


SupportingData = Union[HealthSupport, MarketSupport, ConcentrationSupport]


@dataclass
class Concentration:
    """Per-agency share of an entity's contract value."""
    agency_totals: dict[str, float] = field(default_factory=dict)
    total_value: float = 0.0

    @property
    def top(self) -> Optional[tuple[str, float]]:
        if not self.agency_totals:
            return None
        return max(self.agency_totals.items(), key=lambda item: item[1])

    @property
    def top_share(self) -> float:
        """Top agency's share of total value, in percent."""
        top = self.top
        if top is None or self.total_value <= 0:
            return 0.0
        return top[1] * 100 / self.total_value

    def exceeds(self, threshold: float = CONCENTRATION_THRESHOLD) -> bool:
        """True when the top agency's share is strictly above ``threshold`` percent."""
        top = self.top
        if top is None or self.total_value <= 0:
            return False
        # cross-multiplied to keep the boundary exact
        return top[1] * 100 > threshold * self.total_value


@dataclass
class InsightDraft:
    """A rule match waiting to be persisted."""
    entity_id: int
    insight_type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    action_items: list[str]
    support: SupportingData

    def supporting_data(self) -> dict:
        """Serialize the typed support payload plus action items."""
        payload = {
            key: list(value) if isinstance(value, tuple) else value
            for key, value in self.support.__dict__.items()
        }
        return {
            "kind": self.support.kind,
            "action_items": list(self.action_items),
            **payload,
        }

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "insight_type": self.insight_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "action_items": list(self.action_items),
            "supporting_data": self.supporting_data(),
        }


def health_insights(entity_id: int, health: HealthScoreMetrics) -> list[InsightDraft]:
    """Rules driven by the health score."""
    support = HealthSupport(
        overall_score=health.overall_score,
        contract_velocity=health.contract_velocity,
        relationship_density=health.relationship_density,
        market_diversification=health.market_diversification,
        trend_direction=health.trend_direction.value,
    )
    drafts = []

    if health.trend_direction == TrendDirection.DOWN:
        drafts.append(InsightDraft(
            entity_id=entity_id,
            insight_type=InsightType.WARNING,
            severity=InsightSeverity.HIGH,
            title="Declining Performance Detected",
            description=(
                f"Health score trending down. Current: {health.overall_score}/100. "
                f"Contract velocity at {health.contract_velocity}/100."
            ),
            action_items=[
                "Review recent contract performance",
                "Assess relationship density",
                "Consider market diversification strategies",
            ],
            support=support,
        ))

    if health.overall_score >= STRONG_SCORE:
        drafts.append(InsightDraft(
            entity_id=entity_id,
            insight_type=InsightType.SUCCESS,
            severity=InsightSeverity.LOW,
            title="Strong Performance",
            description=f"Health score: {health.overall_score}/100. Top tier performance maintained.",
            action_items=[
                "Maintain current strategy",
                "Document best practices",
                "Consider expansion",
            ],
            support=support,
        ))

    if health.relationship_density < LOW_DENSITY:
        drafts.append(InsightDraft(
            entity_id=entity_id,
            insight_type=InsightType.OPPORTUNITY,
            severity=InsightSeverity.MEDIUM,
            title="Network Growth Opportunity",
            description=(
                f"Relationship density is low ({health.relationship_density}/100). "
                f"Building partnerships could improve win rates."
            ),
            action_items=[
                "Identify potential teaming partners",
                "Attend industry events",
                "Join relevant industry associations",
            ],
            support=support,
        ))

    if health.market_diversification < LOW_DIVERSIFICATION:
        drafts.append(InsightDraft(
            entity_id=entity_id,
            insight_type=InsightType.WARNING,
            severity=InsightSeverity.MEDIUM,
            title="Market Concentration Risk",
            description=(
                f"Low market diversification ({health.market_diversification}/100). "
                f"Over-reliance on limited markets."
            ),
            action_items=[
                "Explore adjacent NAICS codes",
                "Target new agency relationships",
                "Diversify service offerings",
            ],
            support=support,
        ))

    return drafts


def market_insights(entity_id: int, shift: MarketShift) -> list[InsightDraft]:
    """Rules driven by the 90-day market shift."""
    support = MarketSupport(
        new_markets=tuple(shift.new_markets),
        lost_markets=tuple(shift.lost_markets),
        contract_velocity_change=shift.contract_velocity_change,
        trend=shift.trend.value,
    )
    drafts = []

    if shift.new_markets:
        drafts.append(InsightDraft(
            entity_id=entity_id,
            insight_type=InsightType.OPPORTUNITY,
            severity=InsightSeverity.MEDIUM,
            title="New Market Entry",
            description=(
                f"Entered {len(shift.new_markets)} new agency market(s): "
                f"{', '.join(shift.new_markets[:3])}"
            ),
            action_items=[f"Strengthen {m} relationship" for m in shift.new_markets[:3]],
            support=support,
        ))

    if shift.lost_markets:
        drafts.append(InsightDraft(
            entity_id=entity_id,
            insight_type=InsightType.THREAT,
            severity=InsightSeverity.HIGH,
            title="Market Position Loss",
            description=(
                f"Lost contracts with {len(shift.lost_markets)} agency(ies) "
                f"in the last 90 days."
            ),
            action_items=[
                f"Investigate {m} loss and recovery options" for m in shift.lost_markets[:3]
            ],
            support=support,
        ))

    if shift.trend == MarketTrend.EXPANDING:
        drafts.append(InsightDraft(
            entity_id=entity_id,
            insight_type=InsightType.SUCCESS,
            severity=InsightSeverity.LOW,
            title="Market Expansion Trend",
            description=(
                f"Contract velocity increasing with {shift.contract_velocity_change} "
                f"more contracts in recent period."
            ),
            action_items=["Continue growth momentum", "Scale operations as needed"],
            support=support,
        ))

    return drafts


def _half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def concentration_insights(entity_id: int, concentration: Concentration) -> list[InsightDraft]:
    """Rule driven by the top agency's share of contract value."""
    if not concentration.exceeds():
        return []

    agency, value = concentration.top
    share = concentration.top_share
    return [InsightDraft(
        entity_id=entity_id,
        insight_type=InsightType.WARNING,
        severity=InsightSeverity.HIGH,
        title="High Agency Concentration",
        description=(
            f"{_half_up(share)}% of contract value from {agency}. "
            f"Diversification recommended."
        ),
        action_items=[
            "Identify alternative agency targets",
            "Build relationships with secondary agencies",
            "Reduce single-agency dependency",
        ],
        support=ConcentrationSupport(
            top_agency=agency,
            top_agency_value=value,
            total_value=concentration.total_value,
            top_agency_share=round(share, 2),
        ),
    )]


def evaluate_rules(
    entity_id: int,
    health: Optional[HealthScoreMetrics],
    shift: MarketShift,
    concentration: Concentration,
) -> list[InsightDraft]:
    """Evaluate the whole rule table in a fixed order."""
    drafts = []
    if health is not None:
        drafts.extend(health_insights(entity_id, health))
    drafts.extend(market_insights(entity_id, shift))
    drafts.extend(concentration_insights(entity_id, concentration))
    return drafts
