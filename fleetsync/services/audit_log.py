"""
Import audit log: append and paginated read.

Entries are appended by the commit path only. There is no update or
delete here, and the model's mapper events reject both.
"""

import math
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.models.infrastructure import ImportLogEntry, User


@dataclass
class AuditPage:
    rows: list[tuple[ImportLogEntry, str | None]]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


async def append_entry(
    db: AsyncSession,
    *,
    entity: str,
    fmt: str,
    source: str,
    user_id: uuid.UUID,
    status: str,
    file_name: str | None = None,
    record_count: int = 0,
    added: int = 0,
    updated: int = 0,
    skipped: int = 0,
    errors: list[str] | None = None,
    warnings: list[str] | None = None,
) -> ImportLogEntry:
    """Add one entry to the session and flush it; the caller commits."""
    entry = ImportLogEntry(
        entity=entity,
        format=fmt,
        source=source,
        file_name=file_name,
        record_count=record_count,
        records_added=added,
        records_updated=updated,
        records_skipped=skipped,
        imported_by=user_id,
        status=status,
        errors=list(errors or []),
        warnings=list(warnings or []),
    )
    db.add(entry)
    await db.flush()
    return entry


async def read_page(db: AsyncSession, page: int = 1, page_size: int = 20) -> AuditPage:
    """Newest first, with the importing user's display name."""
    page = max(page, 1)
    total = (await db.execute(select(func.count()).select_from(ImportLogEntry))).scalar_one()

    result = await db.execute(
        select(ImportLogEntry, User.name)
        .outerjoin(User, User.id == ImportLogEntry.imported_by)
        .order_by(ImportLogEntry.imported_at.desc(), ImportLogEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = [(entry, user_name) for entry, user_name in result.all()]
    return AuditPage(rows=rows, page=page, page_size=page_size, total=total)
