"""Learning Scopes API

A scope is one source → target language pair. Every word, stat and review
belongs to exactly one scope; each user has at most one active scope.
"""
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.errors import raise_result
from core.security import get_current_user_id
from engines.service import LeitnerService
from api.deps import get_service

router = APIRouter()


class ScopeCreate(BaseModel):
    source_language: str = Field(..., min_length=1, max_length=10)
    target_language: str = Field(..., min_length=1, max_length=10)


class ScopeResponse(BaseModel):
    id: UUID
    source_language: str
    target_language: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=list[ScopeResponse])
async def list_scopes(
    user_id: UUID = Depends(get_current_user_id),
    service: LeitnerService = Depends(get_service),
):
    result = await service.list_scopes(user_id)
    raise_result(result)
    return result.unwrap()


@router.post("", response_model=ScopeResponse, status_code=201)
async def create_scope(
    data: ScopeCreate,
    user_id: UUID = Depends(get_current_user_id),
    service: LeitnerService = Depends(get_service),
):
    """Create a language pair. The user's first scope becomes active."""
    result = await service.create_scope(user_id, data.source_language, data.target_language)
    raise_result(result)
    return result.unwrap()


@router.get("/active", response_model=ScopeResponse)
async def get_active_scope(
    user_id: UUID = Depends(get_current_user_id),
    service: LeitnerService = Depends(get_service),
):
    result = await service.get_active_scope(user_id)
    raise_result(result)
    return result.unwrap()


@router.post("/{scope_id}/activate", response_model=ScopeResponse)
async def activate_scope(
    scope_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: LeitnerService = Depends(get_service),
):
    result = await service.activate_scope(user_id, scope_id)
    raise_result(result)
    return result.unwrap()
