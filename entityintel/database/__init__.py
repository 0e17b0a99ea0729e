"""Database layer for entityintel."""

from .connection import configure, get_engine, get_session, init_db, drop_db
from .models import (
    Base,
    Entity,
    Contract,
    Grant,
    Fact,
    Relationship,
    ContractClassification,
    HealthScore,
    Insight,
    TrendDirection,
    MarketTrend,
    InsightType,
    InsightSeverity,
    RelationshipType,
    utcnow,
)

__all__ = [
    "configure",
    "get_engine",
    "get_session",
    "init_db",
    "drop_db",
    "Base",
    "Entity",
    "Contract",
    "Grant",
    "Fact",
    "Relationship",
    "ContractClassification",
    "HealthScore",
    "Insight",
    "TrendDirection",
    "MarketTrend",
    "InsightType",
    "InsightSeverity",
    "RelationshipType",
    "utcnow",
]
