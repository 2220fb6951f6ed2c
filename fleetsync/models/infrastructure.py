"""
Infrastructure models: Users and the import audit log.

These support the master-data tables but are not master data themselves.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from fleetsync.core.database import Base
from fleetsync.core.errors import AuditLogImmutableError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Operators of the system.

    A user is the person performing an import or a confirmation; the
    display name is joined into audit log reads.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.uuid_generate_v4(),
    )
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class ImportLogEntry(Base):
    """
    One commit attempt, successful or not.

    Append-only: entries are never updated or deleted (enforced by the
    mapper events below).
    """

    __tablename__ = "import_log"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.uuid_generate_v4(),
    )
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    entity: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="aircraft or customer.",
    )
    format: Mapped[str] = mapped_column(String(50), nullable=False)
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="file, paste or api.",
    )
    file_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    imported_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="success, partial or failed.",
    )
    errors: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
    )
    warnings: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
    )

    __table_args__ = (
        Index("idx_import_log_imported_at", "imported_at"),
        Index("idx_import_log_user", "imported_by"),
    )

    def __repr__(self) -> str:
        return f"<ImportLogEntry {self.entity} {self.status} @{self.imported_at}>"


@event.listens_for(ImportLogEntry, "before_update")
def _reject_log_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Import log entry {target.id} cannot be modified")


@event.listens_for(ImportLogEntry, "before_delete")
def _reject_log_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Import log entry {target.id} cannot be deleted")
