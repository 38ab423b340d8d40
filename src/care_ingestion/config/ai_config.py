# ============================================================================
# src/care_ingestion/config/ai_config.py
# ============================================================================
"""
AI Extraction Settings
- Provider selection (OpenAI or Azure OpenAI)
- Generation limits
- Input size budgets (text truncation, rendered PDF pages)
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class AISettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    AI_PROVIDER: str = Field(
        default="openai",
        description="openai | azure"
    )
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_MODEL: str = Field(
        default="gpt-4o-mini",
        description="Vision-capable chat model used for document extraction"
    )
    AZURE_OPENAI_ENDPOINT: Optional[str] = Field(default=None)
    AZURE_OPENAI_API_KEY: Optional[str] = Field(default=None)
    AZURE_OPENAI_CHAT_MODEL_DEPLOYMENT: str = Field(default="gpt-4o")
    AZURE_OPENAI_API_VERSION: str = Field(default="2024-02-01")

    AI_MAX_TOKENS: int = Field(
        default=4096,
        description="Maximum tokens the model may generate per document"
    )
    AI_TEMPERATURE: float = Field(
        default=0.1,
        ge=0.0, le=2.0,
    )
    AI_TIMEOUT_SECONDS: float = Field(
        default=120.0,
        description="Request timeout for a single extraction call"
    )

    MAX_TEXT_CHARS: int = Field(
        default=60000,
        description="Text longer than this is truncated (head 70% + tail 10%)"
    )
    PDF_MAX_PAGES: int = Field(
        default=10,
        description="Pages rendered to images when a PDF has no text layer"
    )
    PDF_RENDER_DPI: int = Field(default=150)
    DOWNLOAD_TIMEOUT_SECONDS: float = Field(default=60.0)

ai_settings = AISettings()
