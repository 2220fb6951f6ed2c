"""Request dependencies for the application-owned collaborators."""

import uuid

from fastapi import HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.core.entity_config import EntityConfig, get_entity_config
from fleetsync.models.infrastructure import User
from fleetsync.services.committer import Committer
from fleetsync.services.type_normalizer import TypeNormalizer


def get_type_normalizer(request: Request) -> TypeNormalizer:
    return request.app.state.type_normalizer


def get_committer(request: Request) -> Committer:
    return request.app.state.committer


def get_entity(entity: str) -> EntityConfig:
    """Path parameter `entity` → its configuration, or 404."""
    config = get_entity_config(entity)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Unknown entity: {entity}")
    return config


async def get_user_or_400(db: AsyncSession, user_id: uuid.UUID) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=400, detail=f"Unknown actor: {user_id}")
    return user
