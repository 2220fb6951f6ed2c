"""
Classification of validated records against stored master data.

For each record that passed field validation:

  add       no exact or near-duplicate stored record
  update    exact key match, at least one supplied field differs
  no-op     exact key match, nothing differs
  conflict  near-duplicate key match and no override / resolution, or a
            merge onto a stored record another row of the batch writes
  skip      dropped by an explicit per-record resolution

Records with FieldErrors are classified `invalid` and reported only.

The Reconciler is pure: it reads an immutable MasterDataIndex (and, for
aircraft, a customer index and a type MappingSnapshot) and returns a
ReconciledBatch. It never writes and can run concurrently with anything.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fleetsync.core.entity_config import EntityConfig
from fleetsync.core.errors import ConflictError, FieldError
from fleetsync.services.field_validator import ValidatedRecord
from fleetsync.services.fuzzy_matcher import FuzzyMatcher, MatchKind, MatchResult
from fleetsync.services.master_index import IndexedRecord, MasterDataIndex
from fleetsync.services.normalization import (
    is_blank,
    normalize_identifier,
    stronger_source,
    values_match,
)
from fleetsync.services.type_normalizer import MappingSnapshot, NormalizedType

logger = logging.getLogger(__name__)

CONFLICT_POLICIES = ("warn", "override")
RESOLUTIONS = ("add", "merge", "skip")

# Badge colours handed to new customers that don't bring their own
CUSTOMER_PALETTE = [
    "#EF4444", "#F97316", "#EABC42", "#22C55E", "#14B8A6",
    "#84CC16", "#3B82F6", "#8B5CF6", "#EC4899", "#F43F5E",
]
DEFAULT_TEXT_COLOR = "#ffffff"

IMPORT_SOURCE = "imported"


class Classification(str, Enum):
    ADD = "add"
    UPDATE = "update"
    NOOP = "no-op"
    CONFLICT = "conflict"
    SKIP = "skip"
    INVALID = "invalid"


@dataclass(frozen=True)
class FieldChange:
    field: str
    old: str | None
    new: str | None


@dataclass(frozen=True)
class OperatorResolution:
    """How an aircraft's operator text resolved against stored customers."""
    raw: str
    kind: MatchKind
    customer_id: uuid.UUID | None = None
    customer_name: str | None = None
    score: float = 0.0

    @property
    def resolved(self) -> bool:
        return self.customer_id is not None


@dataclass
class ReconciledRecord:
    row_number: int
    key: str
    classification: Classification
    values: dict[str, Any] = field(default_factory=dict)
    changes: list[FieldChange] = field(default_factory=list)
    match: MatchResult | None = None
    target: IndexedRecord | None = None
    errors: list[FieldError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    protected: bool = False
    resolution: str | None = None
    normalized_type: NormalizedType | None = None
    operator: OperatorResolution | None = None

    @property
    def resulting_source(self) -> str:
        """Provenance the stored record ends up with if this is written."""
        current = self.target.source if self.target else None
        return stronger_source(current, IMPORT_SOURCE)


@dataclass
class BatchSummary:
    total: int = 0
    to_add: int = 0
    to_update: int = 0
    conflicts: int = 0
    invalid_operators: int = 0
    unchanged: int = 0
    invalid: int = 0
    protected: int = 0
    skipped: int = 0


@dataclass
class ReconciledBatch:
    entity: str
    records: list[ReconciledRecord]
    summary: BatchSummary
    warnings: list[str] = field(default_factory=list)

    def with_classification(self, classification: Classification) -> list[ReconciledRecord]:
        return [r for r in self.records if r.classification == classification]

    @property
    def adds(self) -> list[ReconciledRecord]:
        return self.with_classification(Classification.ADD)

    @property
    def updates(self) -> list[ReconciledRecord]:
        return self.with_classification(Classification.UPDATE)

    @property
    def conflicts(self) -> list[ReconciledRecord]:
        return self.with_classification(Classification.CONFLICT)

    @property
    def invalid(self) -> list[ReconciledRecord]:
        return self.with_classification(Classification.INVALID)

    @property
    def errors(self) -> list[str]:
        return [str(e) for r in self.invalid for e in r.errors]

    @property
    def fuzzy_matches(self) -> list[ReconciledRecord]:
        """Records whose key or operator matched only approximately."""
        return [
            r for r in self.records
            if (r.match is not None and r.match.kind == MatchKind.NEAR_DUPLICATE)
            or (r.operator is not None and r.operator.kind == MatchKind.NEAR_DUPLICATE)
        ]

    def ensure_no_conflicts(self) -> None:
        if self.conflicts:
            raise ConflictError([
                {
                    "row": r.row_number,
                    "key": r.key,
                    "matched": r.match.record.key if r.match and r.match.record else None,
                    "score": r.match.score if r.match else 0.0,
                }
                for r in self.conflicts
            ])


@dataclass
class ValidationResult:
    valid: bool
    batch: ReconciledBatch

    @property
    def summary(self) -> BatchSummary:
        return self.batch.summary


class Reconciler:
    """
    Classifies one batch of one entity kind.

    For aircraft, pass the customer index as `operators` and a type
    MappingSnapshot as `type_mappings`; both are read-only.
    """

    def __init__(
        self,
        config: EntityConfig,
        index: MasterDataIndex,
        matcher: FuzzyMatcher,
        type_mappings: MappingSnapshot | None = None,
        operators: MasterDataIndex | None = None,
        operator_matcher: FuzzyMatcher | None = None,
    ):
        self.config = config
        self.index = index
        self.matcher = matcher
        self.type_mappings = type_mappings or MappingSnapshot([])
        self.operators = operators
        self.operator_matcher = operator_matcher or FuzzyMatcher(0.70)

    # ─── Public ─────────────────────────────────────────────────

    def validate(
        self,
        records: list[ValidatedRecord],
        conflict_policy: str = "warn",
    ) -> ValidationResult:
        """Preview classification; conflicts are data here, not failures."""
        if conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(f"Unknown conflict policy '{conflict_policy}'")
        batch = self.reconcile(records, override_conflicts=conflict_policy == "override")
        usable = len(records) - batch.summary.invalid
        return ValidationResult(valid=usable > 0, batch=batch)

    def reconcile(
        self,
        records: list[ValidatedRecord],
        override_conflicts: bool = False,
        resolutions: dict[str, str] | None = None,
    ) -> ReconciledBatch:
        resolutions = {
            normalize_identifier(k): v for k, v in (resolutions or {}).items()
        }
        summary = BatchSummary(total=len(records))
        claimed = self._exact_claims(records, resolutions)
        reconciled = [
            self._classify(vrec, override_conflicts, resolutions, claimed) for vrec in records
        ]

        if self.config.name == "customer":
            palette = _PaletteCursor(self.index)
            for rec in reconciled:
                if not is_blank(rec.values.get("color")):
                    palette.mark_used(rec.values["color"])
            for rec in reconciled:
                if rec.classification == Classification.ADD:
                    self._fill_customer_defaults(rec, palette)

        for rec in reconciled:
            self._count(rec, summary)
        return ReconciledBatch(entity=self.config.name, records=reconciled, summary=summary)

    # ─── Classification ─────────────────────────────────────────

    def _exact_claims(
        self,
        records: list[ValidatedRecord],
        resolutions: dict[str, str],
    ) -> dict[uuid.UUID, int]:
        """Stored record id -> row number of the row whose key matches it exactly."""
        claimed: dict[uuid.UUID, int] = {}
        for vrec in records:
            key = vrec.candidate.natural_key
            if not vrec.ok or resolutions.get(normalize_identifier(key)) == "skip":
                continue
            existing = self.index.lookup(key)
            if existing is not None:
                claimed.setdefault(existing.id, vrec.candidate.row_number)
        return claimed

    def _classify(
        self,
        vrec: ValidatedRecord,
        override_conflicts: bool,
        resolutions: dict[str, str],
        claimed: dict[uuid.UUID, int],
    ) -> ReconciledRecord:
        candidate = vrec.candidate
        rec = ReconciledRecord(
            row_number=candidate.row_number,
            key=candidate.natural_key,
            classification=Classification.INVALID,
        )
        if not vrec.ok:
            rec.errors = list(vrec.errors)
            return rec

        rec.values = self._resolve_values(candidate.fields, rec)
        resolution = resolutions.get(normalize_identifier(candidate.natural_key))
        rec.resolution = resolution
        match = self.matcher.match(candidate.natural_key, self.index)
        rec.match = match

        if resolution == "skip":
            rec.classification = Classification.SKIP
            return rec

        if match.kind == MatchKind.EXACT:
            self._diff(rec, match.record)
        elif match.kind == MatchKind.NEAR_DUPLICATE:
            if resolution == "merge":
                # One row per stored record; a second writer would overwrite the first
                owner = claimed.setdefault(match.record.id, rec.row_number)
                if owner != rec.row_number:
                    rec.classification = Classification.CONFLICT
                    rec.warnings.append(
                        f"Row {rec.row_number}: cannot merge '{rec.key}' into "
                        f"'{match.record.key}', already written by row {owner}"
                    )
                    return rec
                self._diff(rec, match.record)
            elif resolution == "add" or override_conflicts:
                rec.classification = Classification.ADD
            else:
                rec.classification = Classification.CONFLICT
                rec.warnings.append(
                    f"Row {rec.row_number}: '{rec.key}' closely matches existing "
                    f"'{match.record.key}' (score {match.score:.2f})"
                )
        else:
            rec.classification = Classification.ADD
        return rec

    def _diff(self, rec: ReconciledRecord, existing: IndexedRecord) -> None:
        rec.target = existing
        for name, new_value in rec.values.items():
            # The stored key is kept, including on a merged near-duplicate
            if name in (self.config.natural_key, "operatorMatchConfidence"):
                continue
            old_value = existing.values.get(name)
            if not values_match(old_value, new_value):
                rec.changes.append(FieldChange(name, old_value, new_value))

        if not rec.changes:
            rec.classification = Classification.NOOP
            return
        rec.classification = Classification.UPDATE
        if existing.source == "confirmed":
            rec.protected = True
            rec.warnings.append(
                f"Row {rec.row_number}: '{existing.key}' is confirmed; "
                "changes require overrideConflicts"
            )

    # ─── Value Resolution ───────────────────────────────────────

    def _resolve_values(self, fields: dict[str, str], rec: ReconciledRecord) -> dict[str, Any]:
        """Supplied values of applied fields plus derived values."""
        values: dict[str, Any] = {
            fdef.name: fields[fdef.name]
            for fdef in self.config.applied_fields
            if not is_blank(fields.get(fdef.name))
        }
        if self.config.name == "aircraft":
            self._resolve_aircraft(values, rec)
        return values

    def _resolve_aircraft(self, values: dict[str, Any], rec: ReconciledRecord) -> None:
        if "rawType" in values:
            normalized = self.type_mappings.normalize(values["rawType"])
            rec.normalized_type = normalized
            values["aircraftType"] = normalized.canonical
            if normalized.used_fallback:
                rec.warnings.append(
                    f"Row {rec.row_number}: type '{values['rawType']}' matched no mapping"
                )

        raw_operator = values.get("operator")
        if raw_operator is None or self.operators is None:
            return
        match = self.operator_matcher.match(raw_operator, self.operators)
        if match.kind == MatchKind.NOVEL:
            rec.operator = OperatorResolution(raw=raw_operator, kind=match.kind, score=match.score)
            rec.warnings.append(
                f"Row {rec.row_number}: operator '{raw_operator}' does not match any customer"
            )
            return
        rec.operator = OperatorResolution(
            raw=raw_operator,
            kind=match.kind,
            customer_id=match.record.id,
            customer_name=match.record.key,
            score=match.score,
        )
        values["operatorId"] = str(match.record.id)
        values["operatorMatchConfidence"] = match.score

    def _fill_customer_defaults(self, rec: ReconciledRecord, palette: "_PaletteCursor") -> None:
        if is_blank(rec.values.get("color")):
            rec.values["color"] = palette.next()
        if is_blank(rec.values.get("colorText")):
            rec.values["colorText"] = DEFAULT_TEXT_COLOR

    # ─── Summary ────────────────────────────────────────────────

    @staticmethod
    def _count(rec: ReconciledRecord, summary: BatchSummary) -> None:
        c = rec.classification
        if c == Classification.ADD:
            summary.to_add += 1
        elif c == Classification.UPDATE:
            summary.to_update += 1
            if rec.protected:
                summary.protected += 1
        elif c == Classification.NOOP:
            summary.unchanged += 1
        elif c == Classification.CONFLICT:
            summary.conflicts += 1
        elif c == Classification.SKIP:
            summary.skipped += 1
        elif c == Classification.INVALID:
            summary.invalid += 1
        if rec.operator is not None and not rec.operator.resolved:
            summary.invalid_operators += 1


class _PaletteCursor:
    """Hands out palette colours not yet used by stored or batch customers."""

    def __init__(self, index: MasterDataIndex):
        self._used = {
            (r.values.get("color") or "").lower() for r in index
        }
        self._issued = 0

    def mark_used(self, color: str) -> None:
        self._used.add(color.lower())

    def next(self) -> str:
        for color in CUSTOMER_PALETTE:
            if color.lower() not in self._used:
                self._used.add(color.lower())
                return color
        # Palette exhausted: cycle in a fixed order
        color = CUSTOMER_PALETTE[self._issued % len(CUSTOMER_PALETTE)]
        self._issued += 1
        return color
