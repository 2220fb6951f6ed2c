"""
Master-data API routes — confirmation.

Endpoints:
  PATCH  /api/v1/master-data/{entity}/{key}/confirm   — Confirm one record
  POST   /api/v1/master-data/{entity}/bulk-confirm    — Confirm many records
"""

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.api.deps import get_entity, get_user_or_400
from fleetsync.core.database import get_db
from fleetsync.core.entity_config import EntityConfig
from fleetsync.schemas.master_data import (
    BulkConfirmRequest,
    BulkConfirmResponse,
    ConfirmRequest,
    MasterRecordOut,
)
from fleetsync.services.master_data import bulk_confirm, confirm_record

router = APIRouter()


@router.patch("/{entity}/{key}/confirm", response_model=MasterRecordOut)
async def confirm(
    key: str,
    payload: ConfirmRequest | None = Body(None),
    config: EntityConfig = Depends(get_entity),
    db: AsyncSession = Depends(get_db),
):
    """
    Mark a record as confirmed.

    Confirmed records are protected: imports report changes to them but
    only apply those changes when committed with overrideConflicts.
    """
    actor_id = payload.actor_id if payload else None
    if actor_id is not None:
        await get_user_or_400(db, actor_id)
    row = await confirm_record(db, config, key, actor_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{config.label} not found: {key}")
    return MasterRecordOut(
        id=row.id,
        key=getattr(row, config.natural_key),
        source=row.source,
        is_active=row.is_active,
        updated_by=row.updated_by,
        updated_at=row.updated_at,
    )


@router.post("/{entity}/bulk-confirm", response_model=BulkConfirmResponse)
async def confirm_many(
    payload: BulkConfirmRequest,
    config: EntityConfig = Depends(get_entity),
    db: AsyncSession = Depends(get_db),
):
    """Confirm every listed record that exists; unknown keys are returned as missing."""
    if payload.actor_id is not None:
        await get_user_or_400(db, payload.actor_id)
    count, missing = await bulk_confirm(db, config, payload.keys, payload.actor_id)
    return BulkConfirmResponse(success=True, count=count, missing=missing)
