"""External enrichment sources and the recurring enrichment flywheel."""

from .base import BaseAPIClient
from .facts import (
    FactValue,
    JurisdictionFact,
    CompanyTypeFact,
    IncorporationDateFact,
    ContractDescriptionFact,
    GrantProjectFact,
    fact_key,
    parse_fact,
    record_facts,
)
from .opencorporates import OpenCorporatesClient
from .usaspending import USASpendingClient
from .flywheel import EnrichmentFlywheel, CycleSummary, CycleError, EnrichmentOutcome

__all__ = [
    "BaseAPIClient",
    "FactValue",
    "JurisdictionFact",
    "CompanyTypeFact",
    "IncorporationDateFact",
    "ContractDescriptionFact",
    "GrantProjectFact",
    "fact_key",
    "parse_fact",
    "record_facts",
    "OpenCorporatesClient",
    "USASpendingClient",
    "EnrichmentFlywheel",
    "CycleSummary",
    "CycleError",
    "EnrichmentOutcome",
]
