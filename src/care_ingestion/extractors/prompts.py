# ============================================================================
# src/care_ingestion/extractors/prompts.py
# ============================================================================
"""
Prompts for care document extraction.

The schema block mirrors ExtractionRecord's camelCase aliases so the
model's answer validates without renaming.
"""

SYSTEM_PROMPT = """You are a careful medical information extractor. The input may be a scan, photo, printed report, clinician note, or AI-notetaker summary.
Extract as much clinically relevant information as is actually present. Populate the JSON schema fully where possible.
If a field is not present, set scalars to null and lists to []. Do not invent data. Use concise, normalized values when obvious (e.g., dates YYYY-MM-DD). Avoid any content beyond the requested fields.

You MUST respond with ONLY valid JSON. No markdown, no explanation, no extra text."""

_CLASSIFICATION_RULES = """FIRST, classify the document type:
- MEDICAL_RECORD: Medical records, doctor's notes, lab results, prescriptions, visit summaries, discharge notes, etc.
- FINANCIAL: Financial statements, bills, invoices, receipts, bank statements, etc.
- LEGAL: Legal documents, contracts, wills, power of attorney, advance directives, etc.
- INSURANCE: Insurance cards, policies, claims, explanation of benefits (EOB), etc.
- OTHER: Any document that doesn't fit the above categories
"""

_RECOMMENDATION_RULES = """IMPORTANT for recommendations: Extract EVERY recommendation as a SEPARATE array entry. Do NOT summarize or combine multiple recommendations into one.

For each recommendation entry:
- text: the complete recommendation text
- type: classify as medication, exercise, diet, therapy, lifestyle, monitoring, followup, or tests
- priority: classify as urgent, high, medium, or low if discernible
- frequency: e.g., "daily", "3x per week", "twice daily"
- duration: e.g., "ongoing", "6 weeks", "until next visit"

Example: "Start Metformin 500mg daily", "Increase exercise to 30min 3x/week" and "Follow up in 2 weeks" are 3 separate entries.
"""

_SCHEMA = """{
  "documentType": "MEDICAL_RECORD|FINANCIAL|LEGAL|INSURANCE|OTHER",
  "patient": { "name": null, "dateOfBirth": null, "mrn": null },
  "visit": {
    "dateOfService": null,
    "facility": null,
    "summary": null,
    "provider": { "name": null, "specialty": null, "phone": null, "email": null, "fax": null, "address": null, "department": null },
    "followUp": null,
    "nextAppointment": null
  },
  "diagnoses": [{ "name": "", "icd10": null }],
  "medications": [{ "name": "", "dosage": null, "frequency": null, "route": null, "startDate": null, "endDate": null, "status": null, "notes": null }],
  "allergies": [{ "substance": "", "reaction": null, "severity": null }],
  "procedures": [{ "name": "", "date": null, "cpt": null }],
  "recommendations": [{ "text": "", "type": null, "priority": null, "frequency": null, "duration": null }],
  "warnings": []
}"""


def build_extraction_instructions(domain_hint: str) -> str:
    """Build the user-turn instructions for a document of the given domain."""
    return (
        "Read the document and extract all relevant information available.\n"
        "The content might be free-form notes, bullet points, or structured fields.\n"
        f"Domain type hint: {domain_hint}.\n\n"
        f"{_CLASSIFICATION_RULES}\n"
        f"{_RECOMMENDATION_RULES}\n"
        "Output strictly minified JSON (no markdown, no code blocks) with these keys:\n"
        f"{_SCHEMA}"
    )


def build_text_instructions(domain_hint: str, text: str) -> str:
    """Instructions followed by the document text between <doc> tags."""
    return (
        f"{build_extraction_instructions(domain_hint)}\n\n"
        "Document text follows between <doc> tags. If fields are not present, set them to null or empty arrays.\n"
        f"<doc>\n{text}\n</doc>"
    )
