"""
USAspending.gov award lookup client.

API Documentation: https://api.usaspending.gov/docs/endpoints
"""

import logging
from typing import Optional

from entityintel.config import config
from entityintel.database import get_session, Contract
from .base import BaseAPIClient
from .facts import ContractDescriptionFact, has_fact, record_facts

log = logging.getLogger(__name__)

DESCRIPTION_CONFIDENCE = 0.95

# Definitive contracts, purchase orders, delivery orders, BPA calls
CONTRACT_AWARD_TYPES = ["A", "B", "C", "D"]

SEARCH_FIELDS = [
    "Award ID",
    "Recipient Name",
    "Award Amount",
    "Awarding Agency",
    "Description",
    "Start Date",
]


class USASpendingClient(BaseAPIClient):
    """Fetches federal award details."""

    source_name = "usaspending_api"

    def _default_base_url(self) -> str:
        return config.usaspending_url

    def get_award(self, award_id: str) -> Optional[dict]:
        """Fetch one award by its generated or PIID identifier."""
        return self._get(f"/awards/{award_id}/")

    def search_awards(self, query: str, limit: int = 10) -> list[dict]:
        """Keyword search over contract awards."""
        payload = {
            "filters": {
                "keywords": [query],
                "award_type_codes": CONTRACT_AWARD_TYPES,
            },
            "fields": SEARCH_FIELDS,
            "limit": limit,
            "page": 1,
        }
        data = self._post("/search/spending_by_award/", payload)
        if not data:
            return []
        return data.get("results") or []

    def enrich_contract(self, contract_id: int) -> bool:
        """
        Record the award description as a fact on the recipient entity.

        Only the first description per entity is kept. Returns False when the
        contract is unknown or the award lookup fails.
        """
        with get_session() as session:
            contract = session.get(Contract, contract_id)
            if contract is None or not contract.award_id:
                return False
            award_id = contract.award_id
            entity_id = contract.recipient_entity_id

        award = self.get_award(award_id)
        if award is None:
            return False

        description = award.get("description")
        if not description or entity_id is None:
            return True

        with get_session() as session:
            if has_fact(session, entity_id, ContractDescriptionFact.fact_type, self.source_name):
                return True
            record_facts(
                session,
                entity_id,
                [ContractDescriptionFact(text=description, award_id=award_id)],
                self.source_name,
                DESCRIPTION_CONFIDENCE,
            )

        return True
