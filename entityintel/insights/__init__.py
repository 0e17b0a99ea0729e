"""Insight generation for entityintel."""

from .engine import generate_entity_insights, generate_insights_batch, analyze_concentration
from .manager import InsightManager, create_insight, insight_key, list_insights
from .rules import (
    Concentration,
    InsightDraft,
    HealthSupport,
    MarketSupport,
    ConcentrationSupport,
    evaluate_rules,
)

__all__ = [
    "generate_entity_insights",
    "generate_insights_batch",
    "analyze_concentration",
    "InsightManager",
    "create_insight",
    "insight_key",
    "list_insights",
    "Concentration",
    "InsightDraft",
    "HealthSupport",
    "MarketSupport",
    "ConcentrationSupport",
    "evaluate_rules",
]
