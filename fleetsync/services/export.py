"""
CSV export of active master data.

The column set is exactly the import column set for the entity, so an
exported file re-imports as all no-ops against unchanged data.
"""

import csv
import io

from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.core.entity_config import EntityConfig
from fleetsync.services.master_index import load_active_rows, record_values


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def export_row(row, config: EntityConfig, operator_name: str | None = None) -> list[str]:
    values: dict = record_values(row, config, operator_name)
    values["source"] = row.source
    values["isActive"] = row.is_active
    return [_cell(values.get(name)) for name in config.export_columns]


def render_csv(rows: list[tuple], config: EntityConfig) -> str:
    """Header plus one line per row; fields with commas, quotes or newlines are quoted."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(config.export_columns)
    for row, operator_name in rows:
        writer.writerow(export_row(row, config, operator_name))
    return buf.getvalue()


async def export_csv(db: AsyncSession, config: EntityConfig) -> str:
    rows = await load_active_rows(db, config, order_by_key=True)
    return render_csv(rows, config)
