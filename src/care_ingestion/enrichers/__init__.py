# ============================================================================
# src/care_ingestion/enrichers/__init__.py
# ============================================================================
"""
Care-record enrichers.

Populate provider contacts and journal entries from a validated
ExtractionRecord.
"""

from .base import EnrichmentContext, EnrichmentResult, EntityEnricher
from .journal_enricher import JournalEnricher
from .provider_enricher import ProviderEnricher, classify_provider_type, parse_address

__all__ = [
    "EnrichmentContext",
    "EnrichmentResult",
    "EntityEnricher",
    "JournalEnricher",
    "ProviderEnricher",
    "classify_provider_type",
    "parse_address",
]
