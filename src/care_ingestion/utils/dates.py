# ============================================================================
# src/care_ingestion/utils/dates.py
# ============================================================================
"""
Date parsing for model-extracted visit dates.
"""

import re
from datetime import date
from typing import Optional

_ISO = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_US = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})")


def parse_visit_date(value: Optional[str]) -> Optional[str]:
    """
    Parse YYYY-MM-DD or MM/DD/YYYY into an ISO date string.

    Anything else, including impossible dates, gives None.
    """
    if not value:
        return None
    value = value.strip()

    iso = _ISO.match(value)
    us = _US.match(value)
    try:
        if iso:
            year, month, day = (int(part) for part in iso.groups())
        elif us:
            month, day, year = (int(part) for part in us.groups())
        else:
            return None
        return date(year, month, day).isoformat()
    except ValueError:
        return None
