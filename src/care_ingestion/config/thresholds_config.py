# ============================================================================
# src/care_ingestion/config/thresholds_config.py
# ============================================================================
"""
Matching Thresholds
- Medication fuzzy matching
- Activity matching
- PDF text-layer detection
- Stale document sweep
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class ThresholdSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    FUZZY_MATCH_THRESHOLD: float = Field(
        default=0.70,
        ge=0.0, le=1.0,
        description="Minimum similarity for a fuzzy medication match. Below this the mention is treated as new."
    )
    BRAND_MATCH_SCORE: float = Field(
        default=0.85,
        ge=0.0, le=1.0,
        description="Score floor applied when two names are a known brand/generic pair"
    )
    ACTIVITY_MATCH_THRESHOLD: float = Field(
        default=0.60,
        ge=0.0, le=1.0,
        description="Minimum similarity for matching an exercise recommendation to a checklist item"
    )
    ACTIVITY_EXACT_THRESHOLD: float = Field(
        default=0.85,
        ge=0.0, le=1.0,
    )
    PDF_TEXT_MIN_CHARS: int = Field(
        default=100,
        description="PDFs with more extracted characters than this are parsed as text, otherwise as page images"
    )
    STALE_PROCESSING_MINUTES: int = Field(
        default=30,
        description="Documents stuck in PROCESSING longer than this are marked FAILED by the sweep"
    )

threshold_settings = ThresholdSettings()
