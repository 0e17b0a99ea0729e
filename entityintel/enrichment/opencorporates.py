"""
OpenCorporates company registry client.

API Documentation: https://api.opencorporates.com/documentation/API-Reference
"""

import logging
from typing import Optional

from entityintel.config import config
from entityintel.database import get_session, Entity
from .base import BaseAPIClient
from .facts import (
    CompanyTypeFact,
    IncorporationDateFact,
    JurisdictionFact,
    record_facts,
)

log = logging.getLogger(__name__)

PROFILE_CONFIDENCE = 0.95


class OpenCorporatesClient(BaseAPIClient):
    """Looks up registered company profiles by name."""

    source_name = "opencorporates_api"

    def __init__(self, api_token: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_token = api_token or config.opencorporates_token

    def _default_base_url(self) -> str:
        return config.opencorporates_url

    def search_companies(self, query: str, jurisdiction: Optional[str] = None) -> list[dict]:
        """
        Search the registry by company name.

        Returns:
            List of ``{"company": {...}}`` records, empty on any failure.
        """
        params = {"q": query}
        if jurisdiction:
            params["jurisdiction_code"] = jurisdiction
        if self.api_token:
            params["api_token"] = self.api_token

        data = self._get("/companies/search", params=params)
        if not data:
            return []
        return (data.get("results") or {}).get("companies") or []

    def enrich_entity(self, entity_id: int) -> bool:
        """
        Attach registry facts from the best matching company.

        Records jurisdiction, company type and incorporation date when
        present. Returns False if the entity is unknown or nothing matched.
        """
        with get_session() as session:
            entity = session.get(Entity, entity_id)
            if entity is None:
                return False
            name = entity.canonical_name

        companies = self.search_companies(name)
        if not companies:
            log.debug("No registry match for %s", name)
            return False

        company = companies[0].get("company") or {}
        values = []
        if company.get("jurisdiction_code"):
            values.append(JurisdictionFact(company["jurisdiction_code"]))
        if company.get("company_type"):
            values.append(CompanyTypeFact(company["company_type"]))
        if company.get("incorporation_date"):
            values.append(IncorporationDateFact(company["incorporation_date"]))

        if values:
            with get_session() as session:
                added = record_facts(
                    session, entity_id, values, self.source_name, PROFILE_CONFIDENCE
                )
            log.info("Registry profile for %s: %d new facts", name, added)

        return True
