# ============================================================================
# src/care_ingestion/storage/care_store.py
# ============================================================================
"""
Care Store

SQLite persistence for documents and the care-record entities the pipeline
reads and writes. Raw sqlite3, one connection per operation, JSON for
complex fields.

Every sqlite3 error is raised as PersistenceError.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from ..config import base_settings
from ..constants import ParsingStatus, ProviderType, RecommendationStatus
from ..utils.exceptions import PersistenceError
from .records import (
    ChecklistItem,
    Document,
    ExistingMedication,
    JournalEntry,
    Patient,
    Provider,
    Recommendation,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BOOL_COLUMNS = {"is_active"}
_JSON_COLUMNS = {"parsed_data", "metadata"}

# Columns a provider update may touch
_PROVIDER_COLUMNS = {
    "name", "type", "specialty", "phone", "email", "fax", "facility", "department",
    "address_line1", "address_line2", "city", "state", "zip_code", "is_active",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS families (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS patients (
    id              TEXT PRIMARY KEY,
    family_id       TEXT NOT NULL REFERENCES families(id),
    name            TEXT NOT NULL,
    date_of_birth   TEXT,
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    id                  TEXT PRIMARY KEY,
    family_id           TEXT NOT NULL,
    user_id             TEXT NOT NULL,
    file_url            TEXT NOT NULL,
    file_type           TEXT NOT NULL,
    file_name           TEXT,
    parsing_status      TEXT NOT NULL DEFAULT 'PENDING',
    parsed_data         TEXT,
    processing_summary  TEXT,
    error_message       TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_documents_status ON documents (parsing_status, updated_at);

CREATE TABLE IF NOT EXISTS medications (
    id          TEXT PRIMARY KEY,
    patient_id  TEXT NOT NULL,
    name        TEXT NOT NULL,
    dosage      TEXT,
    frequency   TEXT,
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_medications_patient ON medications (patient_id, is_active);

CREATE TABLE IF NOT EXISTS providers (
    id              TEXT PRIMARY KEY,
    family_id       TEXT NOT NULL,
    name            TEXT NOT NULL,
    type            TEXT NOT NULL DEFAULT 'OTHER',
    specialty       TEXT,
    phone           TEXT,
    email           TEXT,
    fax             TEXT,
    facility        TEXT,
    department      TEXT,
    address_line1   TEXT,
    address_line2   TEXT,
    city            TEXT,
    state           TEXT,
    zip_code        TEXT,
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_providers_family ON providers (family_id, is_active);

CREATE TABLE IF NOT EXISTS journal_entries (
    id                  TEXT PRIMARY KEY,
    family_id           TEXT NOT NULL,
    user_id             TEXT NOT NULL,
    patient_id          TEXT,
    title               TEXT,
    content             TEXT NOT NULL,
    source_document_id  TEXT,
    provider_id         TEXT,
    entry_date          TEXT,
    created_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_journal_document ON journal_entries (source_document_id);

CREATE TABLE IF NOT EXISTS recommendations (
    id                          TEXT PRIMARY KEY,
    family_id                   TEXT NOT NULL,
    patient_id                  TEXT NOT NULL,
    document_id                 TEXT,
    provider_id                 TEXT,
    type                        TEXT NOT NULL,
    title                       TEXT NOT NULL,
    description                 TEXT NOT NULL,
    priority                    TEXT NOT NULL,
    status                      TEXT NOT NULL DEFAULT 'PENDING',
    frequency                   TEXT,
    duration                    TEXT,
    visit_date                  TEXT,
    linked_medication_id        TEXT,
    linked_checklist_item_id    TEXT,
    match_type                  TEXT,
    match_confidence            REAL,
    metadata                    TEXT,
    created_at                  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_recommendations_document ON recommendations (document_id);

CREATE TABLE IF NOT EXISTS checklist_items (
    id          TEXT PRIMARY KEY,
    patient_id  TEXT NOT NULL,
    category    TEXT NOT NULL,
    title       TEXT NOT NULL,
    description TEXT,
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_checklist_patient ON checklist_items (patient_id, category, is_active);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _row_to(cls: Type[T], row: sqlite3.Row) -> T:
    names = {f.name for f in fields(cls)}
    values: Dict[str, Any] = {}
    for key in row.keys():
        if key not in names:
            continue
        value = row[key]
        if key in _BOOL_COLUMNS:
            value = bool(value)
        elif key in _JSON_COLUMNS:
            value = json.loads(value) if value else ({} if key == "metadata" else None)
        values[key] = value
    return cls(**values)


class CareStore:
    """
    SQLite-backed store for documents, patients, medications, providers,
    journal entries, recommendations and checklist items.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or base_settings.DATABASE_PATH)
        self._init_database()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------
    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open care store {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Care store operation failed: {e}") from e
        finally:
            conn.close()

    def _init_database(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        logger.info(f"Care store initialized: {self.db_path}")

    def _insert(self, table: str, values: Dict[str, Any]) -> str:
        values = {"id": _new_id(), "created_at": _now(), **values}
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._connect() as conn:
            conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(values.values()))
        return values["id"]

    def _fetch_all(self, cls: Type[T], sql: str, params: Iterable[Any] = ()) -> List[T]:
        with self._connect() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [_row_to(cls, row) for row in rows]

    def _fetch_one(self, cls: Type[T], sql: str, params: Iterable[Any] = ()) -> Optional[T]:
        rows = self._fetch_all(cls, sql, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Families & patients
    # ------------------------------------------------------------------
    def create_family(self, name: str) -> str:
        return self._insert("families", {"name": name})

    def create_patient(self, family_id: str, name: str, date_of_birth: Optional[str] = None) -> str:
        return self._insert("patients", {
            "family_id": family_id,
            "name": name,
            "date_of_birth": date_of_birth,
            "is_active": 1,
        })

    def get_patient_for_family(self, family_id: str) -> Optional[Patient]:
        """The family's care recipient (oldest active patient)."""
        return self._fetch_one(
            Patient,
            "SELECT * FROM patients WHERE family_id = ? AND is_active = 1 ORDER BY created_at, id LIMIT 1",
            (family_id,),
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def create_document(
        self,
        family_id: str,
        user_id: str,
        file_url: str,
        file_type: str,
        file_name: Optional[str] = None,
    ) -> str:
        return self._insert("documents", {
            "family_id": family_id,
            "user_id": user_id,
            "file_url": file_url,
            "file_type": file_type,
            "file_name": file_name,
            "parsing_status": ParsingStatus.PENDING.value,
            "updated_at": _now(),
        })

    def get_document(self, document_id: str) -> Optional[Document]:
        return self._fetch_one(Document, "SELECT * FROM documents WHERE id = ?", (document_id,))

    def set_parsing_status(
        self,
        document_id: str,
        status: ParsingStatus,
        error_message: Optional[str] = None,
    ) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE documents SET parsing_status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                (ParsingStatus(status).value, error_message, _now(), document_id),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"Document not found: {document_id}")

    def save_parsed_data(self, document_id: str, parsed_data: Dict[str, Any]) -> None:
        """Persist parsed data and mark the document COMPLETED in one write."""
        with self._connect() as conn:
            cur = conn.execute(
                """UPDATE documents
                   SET parsed_data = ?, parsing_status = ?, error_message = NULL, updated_at = ?
                   WHERE id = ?""",
                (json.dumps(parsed_data, default=str), ParsingStatus.COMPLETED.value, _now(), document_id),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"Document not found: {document_id}")

    def save_processing_summary(self, document_id: str, summary: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE documents SET processing_summary = ?, updated_at = ? WHERE id = ?",
                (summary, _now(), document_id),
            )

    def fail_stale_documents(self, older_than_minutes: int) -> List[str]:
        """
        Mark documents stuck in PROCESSING as FAILED.

        Returns:
            IDs of the documents that were failed
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)).isoformat()
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM documents WHERE parsing_status = ? AND updated_at < ?",
                (ParsingStatus.PROCESSING.value, cutoff),
            ).fetchall()
            ids = [row["id"] for row in rows]
            if ids:
                conn.executemany(
                    "UPDATE documents SET parsing_status = ?, error_message = ?, updated_at = ? WHERE id = ?",
                    [
                        (ParsingStatus.FAILED.value, "Processing timed out", _now(), doc_id)
                        for doc_id in ids
                    ],
                )
        return ids

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------
    def create_medication(
        self,
        patient_id: str,
        name: str,
        dosage: Optional[str] = None,
        frequency: Optional[str] = None,
        is_active: bool = True,
    ) -> str:
        return self._insert("medications", {
            "patient_id": patient_id,
            "name": name,
            "dosage": dosage,
            "frequency": frequency,
            "is_active": int(is_active),
        })

    def list_active_medications(self, patient_id: str) -> List[ExistingMedication]:
        return self._fetch_all(
            ExistingMedication,
            "SELECT * FROM medications WHERE patient_id = ? AND is_active = 1 ORDER BY id",
            (patient_id,),
        )

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------
    def find_active_providers(self, family_id: str, name_contains: str) -> List[Provider]:
        """Active providers whose name contains `name_contains`, case-insensitively."""
        return self._fetch_all(
            Provider,
            """SELECT * FROM providers
               WHERE family_id = ? AND is_active = 1 AND instr(lower(name), lower(?)) > 0
               ORDER BY created_at, id""",
            (family_id, name_contains),
        )

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        return self._fetch_one(Provider, "SELECT * FROM providers WHERE id = ?", (provider_id,))

    def create_provider(self, family_id: str, name: str, **values: Any) -> str:
        unknown = set(values) - _PROVIDER_COLUMNS
        if unknown:
            raise PersistenceError(f"Unknown provider fields: {sorted(unknown)}")
        values.setdefault("type", ProviderType.OTHER.value)
        values.setdefault("is_active", 1)
        return self._insert("providers", {"family_id": family_id, "name": name, "updated_at": _now(), **values})

    def update_provider(self, provider_id: str, values: Dict[str, Any]) -> None:
        unknown = set(values) - _PROVIDER_COLUMNS
        if unknown:
            raise PersistenceError(f"Unknown provider fields: {sorted(unknown)}")
        if not values:
            return
        assignments = ", ".join(f"{column} = ?" for column in values)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE providers SET {assignments}, updated_at = ? WHERE id = ?",
                (*values.values(), _now(), provider_id),
            )

    def count_providers(self, family_id: str) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM providers WHERE family_id = ?", (family_id,)).fetchone()[0]

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------
    def create_journal_entry(
        self,
        family_id: str,
        user_id: str,
        content: str,
        patient_id: Optional[str] = None,
        title: Optional[str] = None,
        source_document_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        entry_date: Optional[str] = None,
    ) -> str:
        return self._insert("journal_entries", {
            "family_id": family_id,
            "user_id": user_id,
            "patient_id": patient_id,
            "title": title,
            "content": content,
            "source_document_id": source_document_id,
            "provider_id": provider_id,
            "entry_date": entry_date,
        })

    def find_journal_entry_for_document(self, document_id: str) -> Optional[JournalEntry]:
        return self._fetch_one(
            JournalEntry,
            "SELECT * FROM journal_entries WHERE source_document_id = ? ORDER BY created_at LIMIT 1",
            (document_id,),
        )

    def get_journal_entry(self, entry_id: str) -> Optional[JournalEntry]:
        return self._fetch_one(JournalEntry, "SELECT * FROM journal_entries WHERE id = ?", (entry_id,))

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------
    def create_recommendation(
        self,
        family_id: str,
        patient_id: str,
        type: str,
        title: str,
        description: str,
        priority: str,
        document_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        frequency: Optional[str] = None,
        duration: Optional[str] = None,
        visit_date: Optional[str] = None,
        linked_medication_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self._insert("recommendations", {
            "family_id": family_id,
            "patient_id": patient_id,
            "document_id": document_id,
            "provider_id": provider_id,
            "type": type,
            "title": title,
            "description": description,
            "priority": priority,
            "status": RecommendationStatus.PENDING.value,
            "frequency": frequency,
            "duration": duration,
            "visit_date": visit_date,
            "linked_medication_id": linked_medication_id,
            "metadata": json.dumps(metadata or {}, default=str),
        })

    def get_recommendations(self, recommendation_ids: List[str]) -> List[Recommendation]:
        """Recommendations by id, in the order given."""
        if not recommendation_ids:
            return []
        placeholders = ", ".join("?" for _ in recommendation_ids)
        found = {
            rec.id: rec
            for rec in self._fetch_all(
                Recommendation,
                f"SELECT * FROM recommendations WHERE id IN ({placeholders})",
                recommendation_ids,
            )
        }
        return [found[rec_id] for rec_id in recommendation_ids if rec_id in found]

    def list_recommendations_for_document(self, document_id: str) -> List[Recommendation]:
        return self._fetch_all(
            Recommendation,
            "SELECT * FROM recommendations WHERE document_id = ? ORDER BY created_at, id",
            (document_id,),
        )

    def record_recommendation_match(
        self,
        recommendation_id: str,
        match_type: str,
        confidence: float,
        linked_medication_id: Optional[str] = None,
        linked_checklist_item_id: Optional[str] = None,
    ) -> None:
        """Link a recommendation to the existing item it matched."""
        with self._connect() as conn:
            conn.execute(
                """UPDATE recommendations
                   SET match_type = ?, match_confidence = ?,
                       linked_medication_id = COALESCE(?, linked_medication_id),
                       linked_checklist_item_id = COALESCE(?, linked_checklist_item_id)
                   WHERE id = ?""",
                (match_type, confidence, linked_medication_id, linked_checklist_item_id, recommendation_id),
            )

    # ------------------------------------------------------------------
    # Checklist
    # ------------------------------------------------------------------
    def create_checklist_item(
        self,
        patient_id: str,
        category: str,
        title: str,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> str:
        return self._insert("checklist_items", {
            "patient_id": patient_id,
            "category": category,
            "title": title,
            "description": description,
            "is_active": int(is_active),
        })

    def list_active_checklist_items(self, patient_id: str, category: str) -> List[ChecklistItem]:
        return self._fetch_all(
            ChecklistItem,
            "SELECT * FROM checklist_items WHERE patient_id = ? AND category = ? AND is_active = 1 ORDER BY id",
            (patient_id, category),
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def get_document_processing_summary(self, document_id: str) -> Dict[str, Any]:
        """What was auto-created from a document."""
        journal_entries = self._fetch_all(
            JournalEntry,
            "SELECT * FROM journal_entries WHERE source_document_id = ? ORDER BY created_at",
            (document_id,),
        )
        recommendations = self.list_recommendations_for_document(document_id)
        return {
            "journal_entries": journal_entries,
            "recommendations": recommendations,
            "total_items": len(journal_entries) + len(recommendations),
        }
