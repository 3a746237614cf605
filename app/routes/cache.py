"""Embedding cache routes."""
import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel

from app.db.sessions import get_db
from app.core.errors import AccessDeniedError
from app.core.permissions import PermissionChecker
from app.core.security import get_current_user_id
from app.services.embedding_cache import get_embedding_cache


router = APIRouter(prefix="/cache", tags=["Cache"])


class CacheStatsResponse(BaseModel):
    enabled: bool
    entries: int
    hits: int
    misses: int
    hitRate: float


@router.get("/stats", response_model=CacheStatsResponse)
def cache_stats(user_id: uuid.UUID = Depends(get_current_user_id)):
    cache = get_embedding_cache()
    if cache is None:
        return CacheStatsResponse(enabled=False, entries=0, hits=0, misses=0, hitRate=0.0)
    return CacheStatsResponse(enabled=True, **cache.stats())


@router.post("/clear", response_model=CacheStatsResponse)
def clear_cache(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Drop every cached embedding (super admins only)."""
    if not PermissionChecker(db).is_super_admin(user_id):
        raise AccessDeniedError("Only super admins can clear the embedding cache")
    cache = get_embedding_cache()
    if cache is None:
        return CacheStatsResponse(enabled=False, entries=0, hits=0, misses=0, hitRate=0.0)
    cache.clear()
    return CacheStatsResponse(enabled=True, **cache.stats())
