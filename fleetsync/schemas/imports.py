"""Pydantic schemas for the import pipeline and the import log."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from fleetsync.schemas.common import CamelModel


# ─── Requests ──────────────────────────────────────────────────

class ValidateRequest(CamelModel):
    """Preview an import. Nothing is written."""
    content: str = Field(..., description="Document text (CSV or JSON)")
    format: str = Field(
        "delimited-text",
        description="'delimited-text' (csv) or 'structured-object-list' (json)",
    )
    conflict_policy: Literal["warn", "override"] | None = Field(
        None,
        description="'warn' reports near-duplicates as conflicts; 'override' treats them as adds",
    )


class CommitRequest(CamelModel):
    """Commit an import. The document is re-parsed and re-reconciled."""
    content: str = Field(..., description="Document text (CSV or JSON)")
    format: str = Field("delimited-text", description="Declared document format")
    source: Literal["file", "paste", "api"] = Field("api", description="How the document arrived")
    file_name: str | None = Field(None, description="Original file name, for the import log")
    override_conflicts: bool = Field(
        False,
        description="Proceed past near-duplicates (as adds) and apply changes to confirmed records",
    )
    resolutions: dict[str, Literal["add", "merge", "skip"]] = Field(
        default_factory=dict,
        description="Per natural key: add as new, merge into the matched record, or skip",
    )
    actor_id: uuid.UUID = Field(..., description="User performing the import")


# ─── Validation Response ───────────────────────────────────────

class ImportSummary(CamelModel):
    total: int = 0
    to_add: int = 0
    to_update: int = 0
    conflicts: int = 0
    invalid_operators: int = 0
    unchanged: int = 0
    invalid: int = 0
    protected: int = 0
    skipped: int = 0


class FieldChangeOut(CamelModel):
    field: str
    old: str | None = None
    new: str | None = None


class RecordPreview(CamelModel):
    """One classified record as shown in the import preview."""
    row_number: int
    key: str
    classification: str
    values: dict[str, Any] = Field(default_factory=dict)
    changes: list[FieldChangeOut] = Field(default_factory=list)
    matched_id: uuid.UUID | None = None
    matched_key: str | None = None
    score: float | None = None
    protected: bool = False
    resolution: str | None = None
    aircraft_type: str | None = Field(None, description="Canonical type (aircraft only)")
    type_pattern: str | None = Field(None, description="Mapping pattern that produced the type")
    type_used_fallback: bool | None = None
    operator_id: uuid.UUID | None = None
    operator_name: str | None = None
    warnings: list[str] = Field(default_factory=list)


class FuzzyMatchOut(CamelModel):
    """An approximate match on a natural key or on an aircraft operator."""
    row_number: int
    field: str
    input: str
    matched: str
    matched_id: uuid.UUID
    score: float
    classification: str


class PreviewRecords(CamelModel):
    add: list[RecordPreview] = Field(default_factory=list)
    update: list[RecordPreview] = Field(default_factory=list)
    conflicts: list[RecordPreview] = Field(default_factory=list)
    fuzzy_matches: list[FuzzyMatchOut] = Field(default_factory=list)


class ValidationResponse(CamelModel):
    valid: bool
    summary: ImportSummary = Field(default_factory=ImportSummary)
    records: PreviewRecords = Field(default_factory=PreviewRecords)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# ─── Commit Response ───────────────────────────────────────────

class ConflictOut(CamelModel):
    row: int
    key: str
    matched: str | None = None
    score: float = 0.0


class CommitResponse(CamelModel):
    success: bool
    status: str
    added: int = 0
    updated: int = 0
    skipped: int = 0
    import_log_id: uuid.UUID | None = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    conflicts: list[ConflictOut] = Field(default_factory=list)


# ─── Import Log ────────────────────────────────────────────────

class ImportLogOut(CamelModel):
    id: uuid.UUID
    imported_at: datetime
    entity: str
    format: str
    source: str
    file_name: str | None = None
    record_count: int
    records_added: int
    records_updated: int
    records_skipped: int
    imported_by: uuid.UUID
    imported_by_name: str | None = None
    status: str
    errors: list[Any] = Field(default_factory=list)
    warnings: list[Any] = Field(default_factory=list)


class Pagination(CamelModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class ImportHistoryResponse(CamelModel):
    data: list[ImportLogOut]
    pagination: Pagination
