"""
Explicit operator actions on master records.

Confirming a record marks it as the authoritative version: later imports
can still propose changes to it, but they are held back unless the
import is committed with overrideConflicts.
"""

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.core.entity_config import EntityConfig
from fleetsync.services.master_index import ENTITY_MODELS
from fleetsync.services.normalization import normalize_identifier, normalize_whitespace

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"


async def find_active(db: AsyncSession, config: EntityConfig, key: str):
    """Active record by natural key (case/whitespace-insensitive), or None."""
    model = ENTITY_MODELS[config.name]
    column = getattr(model, config.natural_key)
    result = await db.execute(
        select(model)
        .where(model.is_active.is_(True))
        .where(func.lower(column) == normalize_whitespace(key).lower())
    )
    for row in result.scalars().all():
        if normalize_identifier(getattr(row, config.natural_key)) == normalize_identifier(key):
            return row
    return None


async def confirm_record(
    db: AsyncSession,
    config: EntityConfig,
    key: str,
    user_id: uuid.UUID | None = None,
):
    """Mark one record confirmed. Returns the row, or None if not found."""
    row = await find_active(db, config, key)
    if row is None:
        return None
    row.source = CONFIRMED
    row.updated_by = user_id
    await db.flush()
    await db.refresh(row)
    return row


async def bulk_confirm(
    db: AsyncSession,
    config: EntityConfig,
    keys: list[str],
    user_id: uuid.UUID | None = None,
) -> tuple[int, list[str]]:
    """Confirm many records. Returns (confirmed count, keys not found)."""
    confirmed: set[uuid.UUID] = set()
    missing: list[str] = []
    for key in dict.fromkeys(keys):
        row = await find_active(db, config, key)
        if row is None:
            missing.append(key)
            continue
        row.source = CONFIRMED
        row.updated_by = user_id
        confirmed.add(row.id)
    await db.flush()
    logger.info("Confirmed %d %s record(s)", len(confirmed), config.name)
    return len(confirmed), missing
