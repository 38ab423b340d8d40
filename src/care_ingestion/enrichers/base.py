# ============================================================================
# src/care_ingestion/enrichers/base.py
# ============================================================================
"""
Base Enricher Interface

Enrichers take a validated ExtractionRecord and populate care-record
entities from it (provider contacts, journal entries). They do NOT
re-extract data and never touch the medication list.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..schemas.extraction import ExtractionRecord
from ..storage import CareStore


@dataclass
class EnrichmentContext:
    """Everything an enricher needs about the document being processed."""
    family_id: str
    patient_id: str
    user_id: str
    document_id: str
    record: ExtractionRecord
    provider_id: Optional[str] = None


@dataclass
class EnrichmentResult:
    """
    Outcome of one enricher.

    entity_id is None when the document had nothing to populate.
    """
    enrichment_type: str
    entity_id: Optional[str] = None
    created: bool = False
    enrichment_timestamp: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enrichment_type": self.enrichment_type,
            "entity_id": self.entity_id,
            "created": self.created,
            "enrichment_timestamp": (
                self.enrichment_timestamp.isoformat()
                if self.enrichment_timestamp else None
            ),
            "details": self.details,
        }


class EntityEnricher(ABC):
    """
    Base class for care-record enrichers.

    Subclasses:
    - ProviderEnricher: provider contact upsert
    - JournalEnricher: journal entry from the visit summary
    """

    def __init__(self, store: CareStore, config: Dict[str, Any] = None):
        self.store = store
        self.config = config or {}

    @property
    @abstractmethod
    def enricher_type(self) -> str:
        """Return the type of enricher (e.g., 'provider', 'journal')."""
        pass

    @abstractmethod
    async def enrich(self, context: EnrichmentContext) -> EnrichmentResult:
        """
        Populate entities from the document.

        Raises:
            PersistenceError: the care store rejected a write
        """
        pass

    def _create_result(
        self,
        entity_id: Optional[str] = None,
        created: bool = False,
        details: Dict[str, Any] = None
    ) -> EnrichmentResult:
        """Helper to create EnrichmentResult."""
        return EnrichmentResult(
            enrichment_type=self.enricher_type,
            entity_id=entity_id,
            created=created,
            enrichment_timestamp=datetime.now(timezone.utc),
            details=details or {},
        )
