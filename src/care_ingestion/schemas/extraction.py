# ============================================================================
# src/care_ingestion/schemas/extraction.py
# ============================================================================
"""
Extraction Record Schema

The validation boundary between the AI model and the rest of the pipeline.

The model answers in camelCase JSON (``dateOfService``, ``startDate``) and is
allowed to omit anything it could not find. Everything here is optional or
defaulted: lists default to [], scalars to None, unknown keys are ignored.
Only a response that is not a JSON object at all is rejected.

When strict validation fails the record is salvaged field by field (bad
list entries are dropped, bad scalars fall back to their defaults) and the
errors are returned next to the raw object so callers can surface a
validation warning without losing data.
"""

import logging
import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..utils.exceptions import NoStructuredOutputError

logger = logging.getLogger(__name__)


class DocumentType(str, Enum):
    MEDICAL_RECORD = "MEDICAL_RECORD"
    FINANCIAL = "FINANCIAL"
    LEGAL = "LEGAL"
    INSURANCE = "INSURANCE"
    OTHER = "OTHER"


class _ExtractionModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class PatientInfo(_ExtractionModel):
    name: Optional[str] = None
    date_of_birth: Optional[str] = None
    mrn: Optional[str] = None


class ProviderInfo(_ExtractionModel):
    name: Optional[str] = None
    specialty: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    fax: Optional[str] = None
    address: Optional[str] = None
    department: Optional[str] = None


class VisitInfo(_ExtractionModel):
    date_of_service: Optional[str] = None
    facility: Optional[str] = None
    summary: Optional[str] = None
    provider: ProviderInfo = ProviderInfo()
    follow_up: Optional[str] = None
    next_appointment: Optional[str] = None

    @field_validator("provider", mode="before")
    @classmethod
    def _null_provider(cls, value):
        return {} if value is None else value


class Diagnosis(_ExtractionModel):
    name: str
    icd10: Optional[str] = None


class MedicationMention(_ExtractionModel):
    """One medication as written in the document."""
    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    route: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class Allergy(_ExtractionModel):
    substance: str
    reaction: Optional[str] = None
    severity: Optional[str] = None


class Procedure(_ExtractionModel):
    name: str
    date: Optional[str] = None
    cpt: Optional[str] = None


class ParsedRecommendation(_ExtractionModel):
    text: str
    type: Optional[str] = None
    priority: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None


class ExtractionRecord(_ExtractionModel):
    """Normalized output of parsing one document."""

    document_type: DocumentType = DocumentType.OTHER
    patient: PatientInfo = PatientInfo()
    visit: VisitInfo = VisitInfo()
    diagnoses: List[Diagnosis] = []
    medications: List[MedicationMention] = []
    allergies: List[Allergy] = []
    procedures: List[Procedure] = []
    recommendations: List[ParsedRecommendation] = []
    warnings: List[str] = []

    @field_validator("document_type", mode="before")
    @classmethod
    def _normalize_document_type(cls, value):
        if value is None:
            return DocumentType.OTHER
        if isinstance(value, str):
            return value.strip().upper().replace(" ", "_")
        return value

    @field_validator("patient", "visit", mode="before")
    @classmethod
    def _null_block(cls, value):
        return {} if value is None else value

    @field_validator(
        "diagnoses", "medications", "allergies", "procedures", "recommendations", "warnings",
        mode="before",
    )
    @classmethod
    def _null_list(cls, value):
        return [] if value is None else value

    def to_parsed_data(self) -> Dict[str, Any]:
        """Serialize in the model's camelCase shape for persistence."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class ValidationResult:
    """Outcome of validating one raw model response."""
    record: ExtractionRecord
    raw: Dict[str, Any]
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def parsed_data(self) -> Dict[str, Any]:
        """
        Data to persist on the document.

        Raw data is kept when validation failed so nothing the model
        returned is discarded.
        """
        return self.record.to_parsed_data() if self.is_valid else self.raw


def validate_extraction(raw: Any) -> ValidationResult:
    """
    Validate a parsed model response into an ExtractionRecord.

    Raises:
        NoStructuredOutputError: raw is not a JSON object
    """
    if not isinstance(raw, dict):
        raise NoStructuredOutputError(
            f"Expected a JSON object, got {type(raw).__name__}",
            response_preview=str(raw)[:200],
        )

    try:
        return ValidationResult(record=ExtractionRecord.model_validate(raw), raw=raw)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors(include_url=False)
        ]
        logger.warning(f"Extraction failed schema validation ({len(errors)} errors), salvaging valid fields")
        record = ExtractionRecord.model_validate(_salvage(ExtractionRecord, raw))
        return ValidationResult(record=record, raw=raw, errors=errors)


# ----------------------------------------------------------------------------
# Salvage
# ----------------------------------------------------------------------------

def _is_model(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


def _salvage(model_cls: typing.Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep every field of `data` that validates on its own, as given."""
    cleaned: Dict[str, Any] = {}

    for name, model_field in model_cls.model_fields.items():
        key = model_field.alias if model_field.alias in data else name
        if key not in data:
            continue
        value = data[key]

        try:
            model_cls.model_validate({key: value})
            cleaned[key] = value
            continue
        except ValidationError:
            pass

        annotation = model_field.annotation
        if _is_model(annotation) and isinstance(value, dict):
            cleaned[key] = _salvage(annotation, value)
        elif typing.get_origin(annotation) in (list, List) and isinstance(value, list):
            (item_type,) = typing.get_args(annotation)
            item_adapter = TypeAdapter(item_type)
            kept = []
            for item in value:
                try:
                    item_adapter.validate_python(item)
                    kept.append(item)
                except ValidationError:
                    logger.debug(f"Dropping invalid {name} entry: {str(item)[:100]}")
            cleaned[key] = kept
        # Anything else falls back to the field default

    return cleaned
