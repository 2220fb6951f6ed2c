"""
Per-run snapshot of stored master data.

MasterDataIndex is built fresh for every validate and commit call from the
active rows of one kind. It holds plain IndexedRecord values, never ORM
instances, so nothing done during reconciliation can leak back into the
session.

Fuzzy candidate generation uses a padded trigram index over each key's
comparable form (the same idea as pg_trgm), which bounds the number of
full similarity scores computed per lookup.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.core.entity_config import EntityConfig
from fleetsync.models.master_data import Aircraft, Customer
from fleetsync.services.normalization import comparable_form, normalize_identifier

logger = logging.getLogger(__name__)

ENTITY_MODELS = {
    "aircraft": Aircraft,
    "customer": Customer,
}

# Below this length the trigram filter is skipped and every key is scored
_MIN_TRIGRAM_LENGTH = 4


@dataclass(frozen=True)
class IndexedRecord:
    """Immutable view of one stored record."""
    id: uuid.UUID
    key: str
    normalized_key: str
    comparable_key: str
    source: str
    values: Mapping[str, str | None] = field(default_factory=dict)


def trigrams(value: str) -> set[str]:
    padded = f"  {value} "
    return {padded[i:i + 3] for i in range(len(padded) - 2)}


class MasterDataIndex:
    """Exact and fuzzy lookup over one kind's active records."""

    def __init__(self, records: list[IndexedRecord], comparable: str = "alphanumeric"):
        self.comparable = comparable
        self._by_key: dict[str, IndexedRecord] = {}
        self._trigrams: dict[str, set[str]] = defaultdict(set)

        for record in sorted(records, key=lambda r: (r.normalized_key, str(r.id))):
            if record.normalized_key in self._by_key:
                logger.warning(
                    "Two active records share key '%s'; keeping %s",
                    record.key, self._by_key[record.normalized_key].id,
                )
                continue
            self._by_key[record.normalized_key] = record
            for gram in trigrams(record.comparable_key):
                self._trigrams[gram].add(record.normalized_key)

    def __len__(self) -> int:
        return len(self._by_key)

    def __iter__(self):
        return iter(self._by_key.values())

    def comparable_form(self, key: str) -> str:
        return comparable_form(key, self.comparable)

    def lookup(self, key: str) -> IndexedRecord | None:
        """Exact match on the normalized key."""
        return self._by_key.get(normalize_identifier(key))

    def get_by_id(self, record_id: uuid.UUID) -> IndexedRecord | None:
        for record in self._by_key.values():
            if record.id == record_id:
                return record
        return None

    def candidates(self, key: str) -> list[IndexedRecord]:
        """Records worth scoring against `key`, in normalized-key order."""
        comparable = self.comparable_form(key)
        if len(comparable) < _MIN_TRIGRAM_LENGTH:
            keys = self._by_key.keys()
        else:
            keys = set()
            for gram in trigrams(comparable):
                keys |= self._trigrams.get(gram, set())
        return [self._by_key[k] for k in sorted(keys)]


# ─── Building ──────────────────────────────────────────────────

def record_values(row, config: EntityConfig, operator_name: str | None = None) -> dict[str, str | None]:
    """
    Stored values of an ORM row keyed by logical field name.

    An aircraft whose operator text was never recorded reports its linked
    customer's name instead, which is also what export writes.
    """
    values: dict[str, str | None] = {}
    for fdef in config.applied_fields:
        value = getattr(row, fdef.column)
        values[fdef.name] = None if value is None else str(value)
    if isinstance(row, Aircraft):
        values["aircraftType"] = row.aircraft_type
        values["operatorId"] = str(row.operator_id) if row.operator_id else None
        if values.get("operator") is None:
            values["operator"] = operator_name
    return values


def index_row(row, config: EntityConfig, operator_name: str | None = None) -> IndexedRecord:
    key = getattr(row, config.natural_key)
    return IndexedRecord(
        id=row.id,
        key=key,
        normalized_key=normalize_identifier(key),
        comparable_key=comparable_form(key, config.comparable),
        source=row.source,
        values=MappingProxyType(record_values(row, config, operator_name)),
    )


async def load_active_rows(
    db: AsyncSession,
    config: EntityConfig,
    order_by_key: bool = False,
) -> list[tuple[Any, str | None]]:
    """Active rows of one kind, each with its operator's name (aircraft only)."""
    model = ENTITY_MODELS[config.name]
    if order_by_key:
        order = (getattr(model, config.natural_key), model.id)
    else:
        order = (model.created_at, model.id)

    if model is Aircraft:
        stmt = (
            select(Aircraft, Customer.name)
            .outerjoin(Customer, Customer.id == Aircraft.operator_id)
            .where(Aircraft.is_active.is_(True))
            .order_by(*order)
        )
        return [(row, name) for row, name in (await db.execute(stmt)).all()]

    stmt = select(model).where(model.is_active.is_(True)).order_by(*order)
    return [(row, None) for row in (await db.execute(stmt)).scalars().all()]


async def build_index(db: AsyncSession, config: EntityConfig) -> MasterDataIndex:
    """Load the active records of one kind into a fresh index."""
    rows = await load_active_rows(db, config)
    records = [index_row(row, config, operator_name) for row, operator_name in rows]
    return MasterDataIndex(records, comparable=config.comparable)
