# ============================================================================
# src/care_ingestion/config/base_config.py
# ============================================================================
"""
Base Configuration
- Project root
- Data directory
- SQLite database used by the care store
"""

from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class BaseSettingsConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Root project directory
    PROJECT_ROOT: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent.parent.parent,
        description="Root directory of the project"
    )

    DATA_DIR: Path = Field(
        default=Path("data"),
        description="Directory holding the SQLite database"
    )

    DATABASE_PATH: Path = Field(
        default=Path("data/care.db"),
        description="SQLite database for care records"
    )

    def create_directories(self):
        """Create all necessary directories if they don't exist"""
        for directory in (self.DATA_DIR, self.DATABASE_PATH.parent):
            directory.mkdir(parents=True, exist_ok=True)

# Global instance
base_settings = BaseSettingsConfig()
