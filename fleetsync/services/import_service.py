"""
Import pipeline service.

Document-level orchestration used by the HTTP layer:

  validate:  size check → parse → field validation → reconcile (no writes)
  commit:    size check → parse → field validation → Committer.commit

Every commit attempt is logged, including attempts rejected before
reconciliation (oversized or unparseable documents). Validate calls are
never logged.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.core.config import settings
from fleetsync.core.entity_config import EntityConfig
from fleetsync.core.errors import SizeLimitExceeded
from fleetsync.services.audit_log import append_entry
from fleetsync.services.committer import CommitOptions, CommitResult, Committer
from fleetsync.services.field_validator import ValidatedRecord, validate_records
from fleetsync.services.format_parser import ParseResult, check_document_size, parse_document
from fleetsync.services.reconciler import ValidationResult

logger = logging.getLogger(__name__)


@dataclass
class PreparedDocument:
    """A parsed and field-validated document."""
    parse: ParseResult
    records: list[ValidatedRecord] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.parse.valid

    @property
    def usable(self) -> bool:
        """Parsed, and at least one record passed field validation."""
        return self.parse.valid and any(r.ok for r in self.records)

    @property
    def row_errors(self) -> list[str]:
        return [str(e) for r in self.records for e in r.errors]


def prepare_document(
    content: str | bytes,
    fmt: str,
    config: EntityConfig,
    limit_bytes: int | None = None,
) -> PreparedDocument:
    """
    Parse and validate a document.

    Raises SizeLimitExceeded before any parsing work.
    """
    check_document_size(content, limit_bytes or settings.max_import_bytes)
    parsed = parse_document(content, fmt, config)
    if not parsed.valid:
        return PreparedDocument(parse=parsed)
    return PreparedDocument(parse=parsed, records=validate_records(parsed.data, config))


async def validate_import(
    db: AsyncSession,
    committer: Committer,
    config: EntityConfig,
    content: str | bytes,
    fmt: str,
    conflict_policy: str | None = None,
) -> tuple[PreparedDocument, ValidationResult | None]:
    """Preview an import. Returns (document, None) when the document is unusable."""
    doc = prepare_document(content, fmt, config)
    if not doc.valid:
        return doc, None
    reconciler = await committer.build_reconciler(db, config)
    result = reconciler.validate(
        doc.records,
        conflict_policy or settings.DEFAULT_CONFLICT_POLICY,
    )
    return doc, result


async def commit_import(
    db: AsyncSession,
    committer: Committer,
    config: EntityConfig,
    content: str | bytes,
    options: CommitOptions,
) -> tuple[PreparedDocument | None, CommitResult]:
    """Commit an import; every outcome is recorded in the import log."""
    try:
        doc = prepare_document(content, options.fmt, config)
    except SizeLimitExceeded as exc:
        result = await _log_rejected(db, config, options, [str(exc)])
        return None, result

    if not doc.usable:
        errors = doc.parse.errors + doc.row_errors
        result = await _log_rejected(db, config, options, errors, doc.parse.warnings)
        return doc, result

    result = await committer.commit(db, config, doc.records, options)
    result.warnings = doc.parse.warnings + result.warnings
    result.errors = doc.parse.errors + result.errors
    return doc, result


async def _log_rejected(
    db: AsyncSession,
    config: EntityConfig,
    options: CommitOptions,
    errors: list[str],
    warnings: list[str] | None = None,
) -> CommitResult:
    logger.info("Rejected %s commit before reconciliation: %s", config.name, "; ".join(errors))
    entry = await append_entry(
        db,
        entity=config.name,
        fmt=options.fmt,
        source=options.source,
        user_id=options.user_id,
        status="failed",
        file_name=options.file_name,
        errors=errors,
        warnings=warnings,
    )
    await db.commit()
    return CommitResult(
        success=False,
        status="failed",
        import_log_id=entry.id,
        errors=list(errors),
        warnings=list(warnings or []),
    )

