"""Configuration API routes — importable entity configuration."""

from fastapi import APIRouter

from fleetsync.core.entity_config import ENTITIES
from fleetsync.services.type_normalizer import CANONICAL_TYPES

router = APIRouter()


# ─── Entity Configuration ──────────────────────────────────────

@router.get("/entities")
async def get_entity_configs():
    """
    Get the complete import configuration.

    Returns every importable entity with its natural key, fields, accepted
    header aliases and validation rules, keyed by URL slug.
    """
    return {
        cfg.slug: {
            "name": cfg.name,
            "label": cfg.label,
            "pluralLabel": cfg.plural_label,
            "naturalKey": cfg.natural_key,
            "exportColumns": cfg.export_columns,
            "fields": [
                {
                    "name": f.name,
                    "label": f.label,
                    "dataType": f.data_type,
                    "required": f.required,
                    "aliases": list(f.aliases),
                    "enumValues": f.enum_values,
                    "pattern": f.pattern,
                    "maxLength": f.max_length,
                    "applied": f.applied,
                }
                for f in cfg.fields
            ],
        }
        for cfg in ENTITIES.values()
    }


@router.get("/aircraft-types")
async def get_canonical_types():
    """Canonical aircraft type codes a mapping may produce."""
    return {"canonicalTypes": CANONICAL_TYPES}
