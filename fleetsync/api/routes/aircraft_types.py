"""
Aircraft type mapping administration.

Endpoints:
  GET    /api/v1/aircraft-types              — All mappings in evaluation order
  POST   /api/v1/aircraft-types              — Create a mapping
  PUT    /api/v1/aircraft-types              — Bulk reorder (set priorities)
  PUT    /api/v1/aircraft-types/{id}         — Edit a mapping
  DELETE /api/v1/aircraft-types/{id}         — Delete a mapping
  POST   /api/v1/aircraft-types/test         — Normalize one raw string
  POST   /api/v1/aircraft-types/reset        — Restore the default table

Every mutation commits before invalidating the normalizer cache, so the
next lookup reloads committed rules.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.api.deps import get_type_normalizer
from fleetsync.core.database import get_db
from fleetsync.models.master_data import AircraftTypeMapping
from fleetsync.schemas.aircraft_types import (
    MappingCreate,
    MappingOut,
    MappingUpdate,
    ReorderRequest,
    TypeTestRequest,
    TypeTestResponse,
)
from fleetsync.services.type_normalizer import (
    CANONICAL_TYPES,
    TypeNormalizer,
    install_default_mappings,
)

router = APIRouter()


# ─── Helpers ───────────────────────────────────────────────────

def _check_canonical(canonical_type: str) -> None:
    if canonical_type not in CANONICAL_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid canonicalType '{canonical_type}'. "
                   f"Must be one of: {', '.join(CANONICAL_TYPES)}",
        )


async def _get_mapping_or_404(db: AsyncSession, mapping_id: int) -> AircraftTypeMapping:
    result = await db.execute(select(AircraftTypeMapping).where(AircraftTypeMapping.id == mapping_id))
    mapping = result.scalar_one_or_none()
    if not mapping:
        raise HTTPException(status_code=404, detail=f"Mapping not found: {mapping_id}")
    return mapping


async def _list_mappings(db: AsyncSession) -> list[AircraftTypeMapping]:
    result = await db.execute(
        select(AircraftTypeMapping).order_by(AircraftTypeMapping.priority, AircraftTypeMapping.id)
    )
    return list(result.scalars().all())


async def _commit_and_invalidate(db: AsyncSession, normalizer: TypeNormalizer) -> None:
    await db.commit()
    normalizer.invalidate_cache()


# ─── CRUD ──────────────────────────────────────────────────────

@router.get("", response_model=list[MappingOut])
async def list_mappings(db: AsyncSession = Depends(get_db)):
    """All mappings, active or not, in evaluation order."""
    return await _list_mappings(db)


@router.post("", response_model=MappingOut, status_code=201)
async def create_mapping(
    payload: MappingCreate,
    db: AsyncSession = Depends(get_db),
    normalizer: TypeNormalizer = Depends(get_type_normalizer),
):
    _check_canonical(payload.canonical_type)
    mapping = AircraftTypeMapping(
        pattern=payload.pattern.strip(),
        canonical_type=payload.canonical_type,
        description=payload.description,
        priority=payload.priority,
        is_active=payload.is_active,
    )
    db.add(mapping)
    await db.flush()
    await db.refresh(mapping)
    await _commit_and_invalidate(db, normalizer)
    return mapping


@router.put("", response_model=list[MappingOut])
async def reorder_mappings(
    payload: ReorderRequest,
    db: AsyncSession = Depends(get_db),
    normalizer: TypeNormalizer = Depends(get_type_normalizer),
):
    """Set the priority of several mappings at once."""
    for item in payload.mappings:
        mapping = await _get_mapping_or_404(db, item.id)
        mapping.priority = item.priority
    await db.flush()
    await _commit_and_invalidate(db, normalizer)
    return await _list_mappings(db)


@router.put("/{mapping_id}", response_model=MappingOut)
async def update_mapping(
    mapping_id: int,
    payload: MappingUpdate,
    db: AsyncSession = Depends(get_db),
    normalizer: TypeNormalizer = Depends(get_type_normalizer),
):
    mapping = await _get_mapping_or_404(db, mapping_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("canonical_type") is not None:
        _check_canonical(changes["canonical_type"])
    for name, value in changes.items():
        if value is None and name != "description":
            continue
        setattr(mapping, name, value.strip() if name == "pattern" else value)
    await db.flush()
    await db.refresh(mapping)
    await _commit_and_invalidate(db, normalizer)
    return mapping


@router.delete("/{mapping_id}", status_code=204)
async def delete_mapping(
    mapping_id: int,
    db: AsyncSession = Depends(get_db),
    normalizer: TypeNormalizer = Depends(get_type_normalizer),
):
    mapping = await _get_mapping_or_404(db, mapping_id)
    await db.delete(mapping)
    await db.flush()
    await _commit_and_invalidate(db, normalizer)


# ─── Tools ─────────────────────────────────────────────────────

@router.post("/test", response_model=TypeTestResponse)
async def test_mapping(
    payload: TypeTestRequest,
    db: AsyncSession = Depends(get_db),
    normalizer: TypeNormalizer = Depends(get_type_normalizer),
):
    """Show what a raw type string normalizes to under the current rules."""
    result = await normalizer.normalize(db, payload.raw_type)
    return TypeTestResponse(
        raw=payload.raw_type,
        canonical=result.canonical,
        matched_pattern=result.matched_pattern,
        mapping_id=result.mapping_id,
        used_fallback=result.used_fallback,
    )


@router.post("/reset", response_model=list[MappingOut])
async def reset_mappings(
    db: AsyncSession = Depends(get_db),
    normalizer: TypeNormalizer = Depends(get_type_normalizer),
):
    """Discard all mappings and restore the shipped defaults."""
    await install_default_mappings(db)
    await _commit_and_invalidate(db, normalizer)
    return await _list_mappings(db)
