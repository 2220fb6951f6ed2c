"""
Error taxonomy for the reconciliation pipeline.

Batch-level failures are exceptions. Row-level problems are FieldError
values collected on each record and never raised.
"""

from dataclasses import dataclass


class ReconciliationError(Exception):
    """Base class for pipeline failures that abort a whole batch."""


class ParseError(ReconciliationError):
    """The document itself is unusable (bad JSON, missing required column, ...)."""


class SizeLimitExceeded(ReconciliationError):
    """Document exceeds the configured maximum import size."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Document is {size} bytes; the limit is {limit} bytes "
            f"({limit / (1024 * 1024):g}MB)"
        )


class ConflictError(ReconciliationError):
    """Near-duplicate records were found and no override was given."""

    def __init__(self, conflicts: list[dict]):
        self.conflicts = conflicts
        keys = ", ".join(c["key"] for c in conflicts)
        super().__init__(
            f"{len(conflicts)} unresolved near-duplicate conflict(s): {keys}"
        )


class CommitError(ReconciliationError):
    """The write transaction failed and was rolled back."""


class AuditLogImmutableError(ReconciliationError):
    """Import log entries are append-only."""


@dataclass(frozen=True)
class FieldError:
    """One invalid field on one record."""
    row_number: int
    field: str
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.field} {self.message}"
