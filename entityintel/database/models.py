"""SQLAlchemy models for the entity intelligence database."""

from datetime import datetime, date, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    String,
    Text,
    Integer,
    Float,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    Enum,
    JSON,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TrendDirection(PyEnum):
    """Health score trend."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class MarketTrend(PyEnum):
    """Agency market trend over consecutive 90-day windows."""
    EXPANDING = "expanding"
    CONTRACTING = "contracting"
    STABLE = "stable"


class InsightType(PyEnum):
    """Insight categories."""
    WARNING = "warning"
    OPPORTUNITY = "opportunity"
    THREAT = "threat"
    SUCCESS = "success"
    INFO = "info"


class InsightSeverity(PyEnum):
    """Insight severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RelationshipType(PyEnum):
    """Known relationship edge types."""
    TEAMING_PARTNER = "teaming_partner"
    COMPETITOR = "competitor"


class Entity(Base):
    """Canonical organization record."""
    __tablename__ = "entities"

    id: Mapped[int] = mapped_column(primary_key=True)
    canonical_name: Mapped[str] = mapped_column(String(500), index=True)
    entity_type: Mapped[str] = mapped_column(String(50), default="organization")
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(2), index=True)
    contract_count: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    grant_count: Mapped[Optional[int]] = mapped_column(Integer, default=0)
    total_contract_value: Mapped[Optional[float]] = mapped_column(Float, default=0)
    total_grant_value: Mapped[Optional[float]] = mapped_column(Float, default=0)
    naics_codes: Mapped[Optional[list]] = mapped_column(
        JSONType, comment="NAICS codes the entity is registered under"
    )
    business_types: Mapped[Optional[list]] = mapped_column(
        JSONType, comment="Business type designations (small, 8a, etc.)"
    )
    is_canonical: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, index=True, comment="Staleness clock"
    )

    # Relationships
    contracts: Mapped[list["Contract"]] = relationship(back_populates="recipient")
    grants: Mapped[list["Grant"]] = relationship(back_populates="recipient")
    health_score: Mapped[Optional["HealthScore"]] = relationship(back_populates="entity")

    def __repr__(self) -> str:
        return f"<Entity {self.id}: {self.canonical_name}>"


class Contract(Base):
    """Contract award."""
    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(primary_key=True)
    award_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    recipient_name: Mapped[str] = mapped_column(String(500), index=True)
    recipient_entity_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("entities.id"), index=True, comment="NULL = orphan"
    )
    awarding_agency: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    award_amount: Mapped[Optional[float]] = mapped_column(Float)
    naics_code: Mapped[Optional[str]] = mapped_column(String(10))
    psc_code: Mapped[Optional[str]] = mapped_column(String(10))
    description: Mapped[Optional[str]] = mapped_column(Text)
    award_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    # Relationships
    recipient: Mapped[Optional["Entity"]] = relationship(back_populates="contracts")
    classification: Mapped[Optional["ContractClassification"]] = relationship(
        back_populates="contract"
    )

    __table_args__ = (
        Index("ix_contracts_recipient_date", "recipient_entity_id", "award_date"),
    )

    def __repr__(self) -> str:
        return f"<Contract {self.award_id or self.id}>"


class Grant(Base):
    """Grant award."""
    __tablename__ = "grants"

    id: Mapped[int] = mapped_column(primary_key=True)
    award_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    recipient_name: Mapped[str] = mapped_column(String(500), index=True)
    recipient_entity_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("entities.id"), index=True, comment="NULL = orphan"
    )
    awarding_agency: Mapped[Optional[str]] = mapped_column(String(255))
    award_amount: Mapped[Optional[float]] = mapped_column(Float)
    project_title: Mapped[Optional[str]] = mapped_column(String(1000))
    award_date: Mapped[Optional[date]] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    # Relationships
    recipient: Mapped[Optional["Entity"]] = relationship(back_populates="grants")

    def __repr__(self) -> str:
        return f"<Grant {self.award_id or self.id}>"


class Fact(Base):
    """Typed observation attached to an entity."""
    __tablename__ = "facts"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_id: Mapped[int] = mapped_column(ForeignKey("entities.id"), index=True)
    fact_type: Mapped[str] = mapped_column(String(100), index=True)
    fact_value: Mapped[dict] = mapped_column(JSONType)
    source_name: Mapped[Optional[str]] = mapped_column(String(100))
    confidence: Mapped[Optional[float]] = mapped_column(Float, comment="0-1")
    fact_key: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, comment="Content hash used to skip repeat writes"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_facts_entity_type_source", "entity_id", "fact_type", "source_name"),
    )

    def __repr__(self) -> str:
        return f"<Fact {self.fact_type} for entity {self.entity_id}>"


class Relationship(Base):
    """Directed, typed, strength-weighted edge between two entities."""
    __tablename__ = "relationships"

    id: Mapped[int] = mapped_column(primary_key=True)
    from_entity_id: Mapped[int] = mapped_column(ForeignKey("entities.id"), index=True)
    to_entity_id: Mapped[int] = mapped_column(ForeignKey("entities.id"), index=True)
    relationship_type: Mapped[str] = mapped_column(String(50), index=True)
    strength: Mapped[float] = mapped_column(Float, default=0, comment="0-1")
    confidence: Mapped[Optional[float]] = mapped_column(Float, comment="0-1")
    evidence: Mapped[Optional[list]] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "from_entity_id", "to_entity_id", "relationship_type",
            name="uq_relationships_edge",
        ),
    )

    def other_end(self, entity_id: int) -> int:
        """Return the endpoint that is not ``entity_id``."""
        return self.to_entity_id if self.from_entity_id == entity_id else self.from_entity_id

    def __repr__(self) -> str:
        return f"<Relationship {self.from_entity_id} -> {self.to_entity_id}: {self.relationship_type}>"


class ContractClassification(Base):
    """Category and capability tags for one contract."""
    __tablename__ = "contract_classifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    contract_id: Mapped[int] = mapped_column(
        ForeignKey("contracts.id"), unique=True, index=True
    )
    primary_category: Mapped[str] = mapped_column(String(100), index=True)
    secondary_categories: Mapped[Optional[list]] = mapped_column(JSONType)
    capabilities: Mapped[Optional[list]] = mapped_column(JSONType)
    confidence: Mapped[float] = mapped_column(Float, comment="0-0.95")
    classified_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    contract: Mapped["Contract"] = relationship(back_populates="classification")

    def __repr__(self) -> str:
        return f"<ContractClassification {self.contract_id}: {self.primary_category}>"


class HealthScore(Base):
    """Latest health score for an entity (no history kept)."""
    __tablename__ = "health_scores"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id"), unique=True, index=True
    )
    overall_score: Mapped[int] = mapped_column(Integer, index=True)
    contract_velocity: Mapped[int] = mapped_column(Integer, default=0)
    grant_success: Mapped[int] = mapped_column(Integer, default=0)
    relationship_density: Mapped[int] = mapped_column(Integer, default=0)
    market_diversification: Mapped[int] = mapped_column(Integer, default=0)
    trend_direction: Mapped[TrendDirection] = mapped_column(
        Enum(TrendDirection), default=TrendDirection.STABLE
    )
    calculated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    entity: Mapped["Entity"] = relationship(back_populates="health_score")

    def __repr__(self) -> str:
        return f"<HealthScore entity {self.entity_id}: {self.overall_score}>"


class Insight(Base):
    """Prioritized, human-readable insight about an entity."""
    __tablename__ = "insights"

    id: Mapped[int] = mapped_column(primary_key=True)
    scope_type: Mapped[str] = mapped_column(String(50), default="entity")
    scope_value: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    insight_type: Mapped[InsightType] = mapped_column(Enum(InsightType), index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str] = mapped_column(Text)
    severity: Mapped[InsightSeverity] = mapped_column(Enum(InsightSeverity), index=True)
    supporting_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    related_entities: Mapped[Optional[list]] = mapped_column(JSONType)
    dedup_key: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, comment="Content hash; NULL when dedup is off"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_insights_scope", "scope_type", "scope_value"),
    )

    def __repr__(self) -> str:
        return f"<Insight [{self.severity.value}] {self.title}>"
