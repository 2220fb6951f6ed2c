"""Pydantic schemas for aircraft type mapping administration."""

from datetime import datetime

from pydantic import Field

from fleetsync.schemas.common import CamelModel


class MappingCreate(CamelModel):
    pattern: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Glob pattern: '*' any run, '?' one character, case-insensitive",
    )
    canonical_type: str = Field(..., description="Canonical type code, e.g. 'B737'")
    description: str | None = None
    priority: int = Field(100, ge=0, description="Lower numbers are evaluated first")
    is_active: bool = True


class MappingUpdate(CamelModel):
    pattern: str | None = Field(None, min_length=1, max_length=100)
    canonical_type: str | None = None
    description: str | None = None
    priority: int | None = Field(None, ge=0)
    is_active: bool | None = None


class MappingOut(CamelModel):
    id: int
    pattern: str
    canonical_type: str
    description: str | None = None
    priority: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PriorityItem(CamelModel):
    id: int
    priority: int = Field(..., ge=0)


class ReorderRequest(CamelModel):
    mappings: list[PriorityItem] = Field(..., min_length=1)


class TypeTestRequest(CamelModel):
    raw_type: str = Field(..., description="Free-text type string to normalize")


class TypeTestResponse(CamelModel):
    raw: str
    canonical: str
    matched_pattern: str | None = None
    mapping_id: int | None = None
    used_fallback: bool
