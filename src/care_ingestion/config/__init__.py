# ============================================================================
# src/care_ingestion/config/__init__.py
# ============================================================================
"""
Convenient imports for all settings
"""

from .base_config import base_settings
from .ai_config import ai_settings
from .thresholds_config import threshold_settings
from .queue_config import queue_settings
from .logging_config import logging_settings
