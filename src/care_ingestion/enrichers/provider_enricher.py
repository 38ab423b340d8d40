# ============================================================================
# src/care_ingestion/enrichers/provider_enricher.py
# ============================================================================
"""
Provider Enricher

Adds the visit's provider to the family's contacts, or fills the gaps of
a provider already on file.

Matching: active providers of the family whose name contains the
extracted name (case-insensitive). When the document gives a specialty,
only a provider with the same specialty counts as the same person.

Updates only fill blank fields; populated fields are never overwritten.
The stored type is kept unless it is OTHER.
"""

import logging
import re
from typing import Dict, Optional, Pattern, Sequence, Tuple

from ..constants import ProviderType
from ..schemas.extraction import ProviderInfo
from ..storage import Provider
from .base import EnrichmentContext, EnrichmentResult, EntityEnricher

logger = logging.getLogger(__name__)

# Ordered: first match wins
PROVIDER_TYPE_RULES: Sequence[Tuple[Pattern, ProviderType]] = (
    (re.compile(r"physical therapy|occupational therapy|speech therapy|\bpt\b|\bot\b|\bslp\b"), ProviderType.THERAPIST),
    (re.compile(r"pharmac"), ProviderType.PHARMACIST),
    (re.compile(r"hospital|clinic|center|facility"), ProviderType.FACILITY),
    (re.compile(
        r"cardio|neuro|oncol|ortho|urol|dermat|ophthalm|\bent\b|gastro|pulmon|endocrin|rheumato|nephro|hematol"
    ), ProviderType.SPECIALIST),
    (re.compile(r"primary|family|internal medicine|general practice"), ProviderType.PHYSICIAN),
)

_STATE_ZIP = re.compile(r"([A-Z]{2})\s+(\d{5}(-\d{4})?)")


def classify_provider_type(specialty: Optional[str]) -> ProviderType:
    """Provider type from specialty keywords; unrecognized specialties are SPECIALIST."""
    if not specialty or not specialty.strip():
        return ProviderType.PHYSICIAN
    lowered = specialty.lower()
    for pattern, provider_type in PROVIDER_TYPE_RULES:
        if pattern.search(lowered):
            return provider_type
    return ProviderType.SPECIALIST


def parse_address(address: str) -> Dict[str, Optional[str]]:
    """
    Best-effort split of a one-line address.

    1 segment  -> address_line1
    2 segments -> address_line1, city
    3+         -> address_line1, city (second to last), state/zip from the last
    """
    parts = [part.strip() for part in address.split(",")]

    if len(parts) == 1:
        return {"address_line1": address.strip()}

    if len(parts) == 2:
        return {"address_line1": parts[0], "city": parts[1]}

    state_zip = _STATE_ZIP.search(parts[-1])
    return {
        "address_line1": parts[0],
        "city": parts[-2],
        "state": state_zip.group(1) if state_zip else None,
        "zip_code": state_zip.group(2) if state_zip else None,
    }


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class ProviderEnricher(EntityEnricher):
    """Upserts the visit provider into the family's contacts."""

    @property
    def enricher_type(self) -> str:
        return "provider"

    async def enrich(self, context: EnrichmentContext) -> EnrichmentResult:
        provider_info = context.record.visit.provider
        if _blank(provider_info.name):
            logger.debug("No provider name found, skipping provider creation")
            return self._create_result()

        provider_id, created = self.upsert_provider(
            context.family_id,
            context.record.visit.facility,
            provider_info,
        )
        return self._create_result(
            entity_id=provider_id,
            created=created,
            details={"name": provider_info.name, "specialty": provider_info.specialty},
        )

    def find_matching_provider(self, family_id: str, info: ProviderInfo) -> Optional[Provider]:
        candidates = self.store.find_active_providers(family_id, info.name.strip())
        if not candidates:
            return None
        if _blank(info.specialty):
            return candidates[0]
        wanted = info.specialty.strip().lower()
        for candidate in candidates:
            if (candidate.specialty or "").strip().lower() == wanted:
                return candidate
        return None

    def upsert_provider(
        self,
        family_id: str,
        facility: Optional[str],
        info: ProviderInfo
    ) -> Tuple[str, bool]:
        """
        Returns:
            (provider_id, created)
        """
        provider_type = classify_provider_type(info.specialty)
        address = parse_address(info.address) if not _blank(info.address) else {}

        incoming = {
            "specialty": info.specialty,
            "phone": info.phone,
            "email": info.email,
            "fax": info.fax,
            "facility": facility,
            "department": info.department,
            **address,
        }

        existing = self.find_matching_provider(family_id, info)

        if existing is not None:
            updates = {
                column: value
                for column, value in incoming.items()
                if not _blank(value) and _blank(getattr(existing, column))
            }
            if existing.type == ProviderType.OTHER.value:
                updates["type"] = provider_type.value
            self.store.update_provider(existing.id, updates)
            logger.info(f"Updated existing provider: {existing.name} ({existing.id}), filled {sorted(updates)}")
            return existing.id, False

        provider_id = self.store.create_provider(
            family_id,
            info.name.strip(),
            type=provider_type.value,
            **{column: value for column, value in incoming.items() if not _blank(value)},
        )
        logger.info(f"Created new provider: {info.name} ({provider_id})")
        return provider_id, True
