"""Pydantic schemas for master-data confirmation."""

import uuid
from datetime import datetime

from pydantic import Field

from fleetsync.schemas.common import CamelModel


class ConfirmRequest(CamelModel):
    actor_id: uuid.UUID | None = Field(None, description="User confirming the record")


class BulkConfirmRequest(CamelModel):
    keys: list[str] = Field(
        ...,
        min_length=1,
        description="Natural keys to confirm (registrations or customer names)",
    )
    actor_id: uuid.UUID | None = Field(None, description="User confirming the records")


class BulkConfirmResponse(CamelModel):
    success: bool
    count: int
    missing: list[str] = Field(default_factory=list)


class MasterRecordOut(CamelModel):
    id: uuid.UUID
    key: str
    source: str
    is_active: bool
    updated_by: uuid.UUID | None = None
    updated_at: datetime | None = None
