"""
Care document ingestion: AI extraction, medication reconciliation and
caregiver recommendations.
"""

__version__ = "0.1.0"
