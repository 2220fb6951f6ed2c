"""Export API routes — CSV rendering of current master data."""

from datetime import date

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.api.deps import get_entity
from fleetsync.core.database import get_db
from fleetsync.core.entity_config import EntityConfig
from fleetsync.services.export import export_csv

router = APIRouter()


@router.get("/{entity}")
async def export_entity(
    config: EntityConfig = Depends(get_entity),
    db: AsyncSession = Depends(get_db),
):
    """
    Download active records as CSV.

    Columns match the import format, so the file can be edited and
    re-imported directly.
    """
    body = await export_csv(db, config)
    filename = f"{config.slug}-{date.today().isoformat()}.csv"
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
