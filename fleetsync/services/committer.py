"""
Commit of a reconciled batch.

The Committer is the only writer of master data during import. Each call:

  1. takes the process-wide commit lock (reconcile-then-write is a single
     critical section, so two commits can't both see a key as new)
  2. rebuilds the indexes and re-runs the Reconciler; a previous validate
     is never trusted
  3. refuses to write anything while unresolved conflicts remain
  4. applies every add and update inside one SAVEPOINT; any storage error
     rolls back the whole batch
  5. appends exactly one ImportLogEntry for the attempt and commits it,
     whatever the outcome
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.core.config import settings
from fleetsync.core.entity_config import EntityConfig, get_entity_config
from fleetsync.core.errors import CommitError, ConflictError
from fleetsync.services.audit_log import append_entry
from fleetsync.services.field_validator import ValidatedRecord
from fleetsync.services.fuzzy_matcher import FuzzyMatcher
from fleetsync.services.master_index import ENTITY_MODELS, build_index
from fleetsync.services.reconciler import (
    IMPORT_SOURCE,
    ReconciledBatch,
    ReconciledRecord,
    Reconciler,
)
from fleetsync.services.type_normalizer import TypeNormalizer

logger = logging.getLogger(__name__)

# Derived aircraft values and the columns they land in
_DERIVED_COLUMNS = {
    "aircraftType": "aircraft_type",
    "operatorId": "operator_id",
    "operatorMatchConfidence": "operator_match_confidence",
}


@dataclass
class CommitOptions:
    user_id: uuid.UUID
    source: str = "file"
    fmt: str = "delimited-text"
    file_name: str | None = None
    override_conflicts: bool = False
    resolutions: dict[str, str] | None = None


@dataclass
class CommitResult:
    success: bool
    status: str
    added: int = 0
    updated: int = 0
    skipped: int = 0
    import_log_id: uuid.UUID | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    conflicts: list[dict] = field(default_factory=list)


def column_values(config: EntityConfig, values: dict[str, Any]) -> dict[str, Any]:
    """Logical field values → ORM column values."""
    columns: dict[str, Any] = {}
    for name, value in values.items():
        if name in _DERIVED_COLUMNS:
            column = _DERIVED_COLUMNS[name]
            if name == "operatorId" and value is not None:
                value = uuid.UUID(str(value))
        else:
            fdef = config.get_field(name)
            if fdef is None or not fdef.applied or not fdef.column:
                continue
            column = fdef.column
        columns[column] = value
    return columns


class Committer:
    """Serialized writer for reconciled batches."""

    def __init__(
        self,
        type_normalizer: TypeNormalizer,
        fuzzy_threshold: float | None = None,
        operator_threshold: float | None = None,
    ):
        self.type_normalizer = type_normalizer
        if fuzzy_threshold is None:
            fuzzy_threshold = settings.FUZZY_MATCH_THRESHOLD
        if operator_threshold is None:
            operator_threshold = settings.OPERATOR_MATCH_THRESHOLD
        self.matcher = FuzzyMatcher(fuzzy_threshold)
        self.operator_matcher = FuzzyMatcher(operator_threshold)
        self._lock = asyncio.Lock()

    async def build_reconciler(self, db: AsyncSession, config: EntityConfig) -> Reconciler:
        """A Reconciler over freshly loaded master data."""
        index = await build_index(db, config)
        operators = None
        mappings = None
        if config.name == "aircraft":
            operators = await build_index(db, get_entity_config("customer"))
            mappings = await self.type_normalizer.snapshot(db)
        return Reconciler(
            config,
            index,
            self.matcher,
            type_mappings=mappings,
            operators=operators,
            operator_matcher=self.operator_matcher,
        )

    async def commit(
        self,
        db: AsyncSession,
        config: EntityConfig,
        records: list[ValidatedRecord],
        options: CommitOptions,
    ) -> CommitResult:
        async with self._lock:
            reconciler = await self.build_reconciler(db, config)
            batch = reconciler.reconcile(
                records,
                override_conflicts=options.override_conflicts,
                resolutions=options.resolutions,
            )
            warnings = [w for r in batch.records for w in r.warnings]

            try:
                batch.ensure_no_conflicts()
            except ConflictError as exc:
                logger.warning("Commit of %s blocked: %s", config.name, exc)
                errors = [str(exc)] + batch.errors
                entry = await self._log(db, config, batch, options, "failed", errors=errors,
                                        warnings=warnings)
                await db.commit()
                return CommitResult(
                    success=False,
                    status="failed",
                    import_log_id=entry.id,
                    warnings=warnings,
                    errors=errors,
                    conflicts=exc.conflicts,
                )

            updates = [r for r in batch.updates if not r.protected or options.override_conflicts]
            protected_skipped = len(batch.updates) - len(updates)
            skipped = batch.summary.unchanged + batch.summary.skipped + protected_skipped
            status = "partial" if (batch.summary.invalid or protected_skipped) else "success"

            try:
                async with db.begin_nested():
                    await self._apply(db, config, batch.adds, updates, options.user_id)
                    entry = await self._log(
                        db, config, batch, options, status,
                        added=len(batch.adds), updated=len(updates), skipped=skipped,
                        errors=batch.errors, warnings=warnings,
                    )
            except (SQLAlchemyError, CommitError) as exc:
                error = exc if isinstance(exc, CommitError) else CommitError(
                    f"Import rolled back: {exc.__class__.__name__}: {exc}"
                )
                logger.error("Commit of %s failed", config.name, exc_info=exc)
                errors = [str(error)] + batch.errors
                entry = await self._log(db, config, batch, options, "failed", errors=errors,
                                        warnings=warnings)
                await db.commit()
                return CommitResult(
                    success=False,
                    status="failed",
                    import_log_id=entry.id,
                    warnings=warnings,
                    errors=errors,
                )

            await db.commit()
            logger.info(
                "Committed %s import: %d added, %d updated, %d skipped (%s)",
                config.name, len(batch.adds), len(updates), skipped, status,
            )
            return CommitResult(
                success=True,
                status=status,
                added=len(batch.adds),
                updated=len(updates),
                skipped=skipped,
                import_log_id=entry.id,
                warnings=warnings,
                errors=batch.errors,
            )

    async def _apply(
        self,
        db: AsyncSession,
        config: EntityConfig,
        adds: list[ReconciledRecord],
        updates: list[ReconciledRecord],
        user_id: uuid.UUID,
    ) -> None:
        model = ENTITY_MODELS[config.name]
        for rec in adds:
            db.add(model(
                **column_values(config, rec.values),
                source=IMPORT_SOURCE,
                is_active=True,
                created_by=user_id,
                updated_by=user_id,
            ))

        for rec in updates:
            row = await db.get(model, rec.target.id)
            if row is None:
                raise CommitError(f"Record '{rec.target.key}' disappeared during commit")
            changed = {c.field: c.new for c in rec.changes}
            if "operatorId" in changed:
                changed["operatorMatchConfidence"] = rec.values.get("operatorMatchConfidence")
            for column, value in column_values(config, changed).items():
                setattr(row, column, value)
            row.source = rec.resulting_source
            row.updated_by = user_id

        await db.flush()

    async def _log(
        self,
        db: AsyncSession,
        config: EntityConfig,
        batch: ReconciledBatch,
        options: CommitOptions,
        status: str,
        **counts,
    ):
        return await append_entry(
            db,
            entity=config.name,
            fmt=options.fmt,
            source=options.source,
            user_id=options.user_id,
            status=status,
            file_name=options.file_name,
            record_count=batch.summary.total,
            **counts,
        )
