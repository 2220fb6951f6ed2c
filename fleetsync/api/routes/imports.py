"""
Import API routes.

Endpoints:
  POST   /api/v1/import/{entity}/validate          — Preview a pasted/posted document
  POST   /api/v1/import/{entity}/commit            — Commit a pasted/posted document
  POST   /api/v1/import/{entity}/upload/validate   — Preview an uploaded file
  POST   /api/v1/import/{entity}/upload/commit     — Commit an uploaded file
  GET    /api/v1/import/history                    — Import log, newest first

`entity` is `aircraft` or `customers`. Validate never writes; commit
re-reconciles against current data and is serialized process-wide.
"""

import json
import uuid

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.api.deps import get_committer, get_entity, get_user_or_400
from fleetsync.core.config import settings
from fleetsync.core.database import get_db
from fleetsync.core.entity_config import EntityConfig
from fleetsync.core.errors import SizeLimitExceeded
from fleetsync.schemas.imports import (
    CommitRequest,
    CommitResponse,
    ConflictOut,
    FieldChangeOut,
    FuzzyMatchOut,
    ImportHistoryResponse,
    ImportLogOut,
    ImportSummary,
    Pagination,
    PreviewRecords,
    RecordPreview,
    ValidateRequest,
    ValidationResponse,
)
from fleetsync.services.audit_log import read_page
from fleetsync.services.committer import CommitOptions, CommitResult, Committer
from fleetsync.services.format_parser import format_from_filename
from fleetsync.services.fuzzy_matcher import MatchKind
from fleetsync.services.import_service import PreparedDocument, commit_import, validate_import
from fleetsync.services.reconciler import (
    RESOLUTIONS,
    ReconciledBatch,
    ReconciledRecord,
    ValidationResult,
)

router = APIRouter()


# ─── Response Builders ─────────────────────────────────────────

def _preview(rec: ReconciledRecord) -> RecordPreview:
    match = rec.match
    matched = match.record if match and match.kind != MatchKind.NOVEL else None
    normalized = rec.normalized_type
    operator = rec.operator
    return RecordPreview(
        row_number=rec.row_number,
        key=rec.key,
        classification=rec.classification.value,
        values=dict(rec.values),
        changes=[FieldChangeOut(field=c.field, old=c.old, new=c.new) for c in rec.changes],
        matched_id=matched.id if matched else None,
        matched_key=matched.key if matched else None,
        score=match.score if matched else None,
        protected=rec.protected,
        resolution=rec.resolution,
        aircraft_type=rec.values.get("aircraftType"),
        type_pattern=normalized.matched_pattern if normalized else None,
        type_used_fallback=normalized.used_fallback if normalized else None,
        operator_id=operator.customer_id if operator else None,
        operator_name=operator.customer_name if operator else None,
        warnings=rec.warnings,
    )


def _fuzzy_matches(batch: ReconciledBatch, config: EntityConfig) -> list[FuzzyMatchOut]:
    matches: list[FuzzyMatchOut] = []
    for rec in batch.fuzzy_matches:
        if rec.match is not None and rec.match.kind == MatchKind.NEAR_DUPLICATE:
            matches.append(FuzzyMatchOut(
                row_number=rec.row_number,
                field=config.natural_key,
                input=rec.key,
                matched=rec.match.record.key,
                matched_id=rec.match.record.id,
                score=rec.match.score,
                classification=rec.classification.value,
            ))
        if rec.operator is not None and rec.operator.kind == MatchKind.NEAR_DUPLICATE:
            matches.append(FuzzyMatchOut(
                row_number=rec.row_number,
                field="operator",
                input=rec.operator.raw,
                matched=rec.operator.customer_name,
                matched_id=rec.operator.customer_id,
                score=rec.operator.score,
                classification=rec.classification.value,
            ))
    return matches


def _validation_response(
    config: EntityConfig,
    doc: PreparedDocument,
    result: ValidationResult | None,
) -> ValidationResponse:
    if result is None:
        return ValidationResponse(
            valid=False,
            warnings=doc.parse.warnings,
            errors=doc.parse.errors,
        )
    batch = result.batch
    s = batch.summary
    return ValidationResponse(
        valid=result.valid,
        summary=ImportSummary(
            total=s.total,
            to_add=s.to_add,
            to_update=s.to_update,
            conflicts=s.conflicts,
            invalid_operators=s.invalid_operators,
            unchanged=s.unchanged,
            invalid=s.invalid,
            protected=s.protected,
            skipped=s.skipped,
        ),
        records=PreviewRecords(
            add=[_preview(r) for r in batch.adds],
            update=[_preview(r) for r in batch.updates],
            conflicts=[_preview(r) for r in batch.conflicts],
            fuzzy_matches=_fuzzy_matches(batch, config),
        ),
        warnings=doc.parse.warnings + [w for r in batch.records for w in r.warnings],
        errors=doc.parse.errors + batch.errors,
    )


def _commit_response(
    doc: PreparedDocument | None,
    result: CommitResult,
) -> CommitResponse | JSONResponse:
    response = CommitResponse(
        success=result.success,
        status=result.status,
        added=result.added,
        updated=result.updated,
        skipped=result.skipped,
        import_log_id=result.import_log_id,
        warnings=result.warnings,
        errors=result.errors,
        conflicts=[ConflictOut(**c) for c in result.conflicts],
    )
    if result.success:
        return response
    status_code = 422 if doc is not None and not doc.usable else 400
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json", by_alias=True),
    )


def _invalid_document(response: ValidationResponse) -> JSONResponse:
    return JSONResponse(status_code=422, content=response.model_dump(mode="json", by_alias=True))


def _parse_resolutions(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    try:
        resolutions = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid resolutions JSON: {exc.msg}")
    if not isinstance(resolutions, dict) or any(v not in RESOLUTIONS for v in resolutions.values()):
        raise HTTPException(
            status_code=400,
            detail=f"resolutions must map keys to one of: {', '.join(RESOLUTIONS)}",
        )
    return resolutions


# ─── Import Log ────────────────────────────────────────────────

@router.get("/history", response_model=ImportHistoryResponse)
async def import_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=settings.AUDIT_PAGE_SIZE_MAX, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
):
    """Paginated import log, newest first, with importer display names."""
    result = await read_page(db, page, page_size)
    data = []
    for entry, user_name in result.rows:
        out = ImportLogOut.model_validate(entry)
        out.imported_by_name = user_name
        data.append(out)
    return ImportHistoryResponse(
        data=data,
        pagination=Pagination(
            page=result.page,
            page_size=result.page_size,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


# ─── Validate / Commit (JSON body) ─────────────────────────────

@router.post("/{entity}/validate", response_model=ValidationResponse)
async def validate_document(
    body: ValidateRequest,
    config: EntityConfig = Depends(get_entity),
    db: AsyncSession = Depends(get_db),
    committer: Committer = Depends(get_committer),
):
    """
    Preview the effect of importing a document.

    Returns the classification summary, the records that would be added
    or updated, near-duplicate conflicts and fuzzy operator matches.
    Nothing is written and nothing is logged.
    """
    try:
        doc, result = await validate_import(
            db, committer, config, body.content, body.format, body.conflict_policy
        )
    except SizeLimitExceeded as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    response = _validation_response(config, doc, result)
    if result is None or not result.valid:
        return _invalid_document(response)
    return response


@router.post("/{entity}/commit", response_model=CommitResponse)
async def commit_document(
    body: CommitRequest,
    config: EntityConfig = Depends(get_entity),
    db: AsyncSession = Depends(get_db),
    committer: Committer = Depends(get_committer),
):
    """
    Commit a document.

    The document is parsed and reconciled again against current data.
    Unresolved near-duplicates block the whole batch (400) unless
    `overrideConflicts` or per-key `resolutions` are given. An unusable
    document is rejected with 422. Every attempt is logged.
    """
    await get_user_or_400(db, body.actor_id)
    options = CommitOptions(
        user_id=body.actor_id,
        source=body.source,
        fmt=body.format,
        file_name=body.file_name,
        override_conflicts=body.override_conflicts,
        resolutions=dict(body.resolutions),
    )
    doc, result = await commit_import(db, committer, config, body.content, options)
    return _commit_response(doc, result)


# ─── Validate / Commit (file upload) ───────────────────────────

@router.post("/{entity}/upload/validate", response_model=ValidationResponse)
async def validate_upload(
    file: UploadFile = File(...),
    format: str | None = Form(None, description="Overrides the format implied by the extension"),
    conflict_policy: str | None = Form(None, alias="conflictPolicy"),
    config: EntityConfig = Depends(get_entity),
    db: AsyncSession = Depends(get_db),
    committer: Committer = Depends(get_committer),
):
    """Preview an uploaded CSV, JSON or .xlsx file."""
    if conflict_policy not in (None, "warn", "override"):
        raise HTTPException(status_code=400, detail=f"Unknown conflict policy: {conflict_policy}")
    content = await file.read()
    fmt = format or format_from_filename(file.filename) or "delimited-text"
    try:
        doc, result = await validate_import(db, committer, config, content, fmt, conflict_policy)
    except SizeLimitExceeded as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    response = _validation_response(config, doc, result)
    if result is None or not result.valid:
        return _invalid_document(response)
    return response


@router.post("/{entity}/upload/commit", response_model=CommitResponse)
async def commit_upload(
    file: UploadFile = File(...),
    actor_id: str = Form(..., alias="actorId"),
    format: str | None = Form(None),
    override_conflicts: bool = Form(False, alias="overrideConflicts"),
    resolutions: str | None = Form(None, description="JSON-encoded {naturalKey: add|merge|skip}"),
    config: EntityConfig = Depends(get_entity),
    db: AsyncSession = Depends(get_db),
    committer: Committer = Depends(get_committer),
):
    """Commit an uploaded CSV, JSON or .xlsx file."""
    try:
        user_id = uuid.UUID(actor_id)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid actorId: {actor_id}")
    await get_user_or_400(db, user_id)

    content = await file.read()
    options = CommitOptions(
        user_id=user_id,
        source="file",
        fmt=format or format_from_filename(file.filename) or "delimited-text",
        file_name=file.filename,
        override_conflicts=override_conflicts,
        resolutions=_parse_resolutions(resolutions),
    )
    doc, result = await commit_import(db, committer, config, content, options)
    return _commit_response(doc, result)
