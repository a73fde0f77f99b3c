"""Words API

CRUD for learnable items in the current scope plus bulk import. Source text
is unique per scope under exact comparison; ``"Hola"`` and ``"hola"`` are
different words.
"""
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from core.errors import raise_result
from engines.service import LeitnerService
from engines.types import ItemFields, LearningScope
from api.deps import get_scope, get_service

router = APIRouter()


class WordCreate(BaseModel):
    source_text: str = Field(..., min_length=1, max_length=500)
    target_text: str = Field(..., min_length=1, max_length=500)
    source_language: str | None = None  # defaults to the scope's pair
    target_language: str | None = None
    example_sentences: list[str] = []
    category_id: str | None = None
    mnemonic: str | None = None

    def to_fields(self, scope: LearningScope) -> ItemFields:
        return ItemFields(
            source_text=self.source_text,
            target_text=self.target_text,
            source_language=self.source_language or scope.source_language,
            target_language=self.target_language or scope.target_language,
            example_sentences=tuple(self.example_sentences),
            category_id=self.category_id,
            mnemonic=self.mnemonic,
        )


class WordUpdate(BaseModel):
    source_text: str | None = Field(None, min_length=1, max_length=500)
    target_text: str | None = Field(None, min_length=1, max_length=500)
    example_sentences: list[str] | None = None
    category_id: str | None = None
    mnemonic: str | None = None


class WordResponse(BaseModel):
    id: UUID
    scope_id: UUID
    source_text: str
    target_text: str
    source_language: str
    target_language: str
    example_sentences: list[str]
    category_id: str | None
    mnemonic: str | None
    box: int
    next_review_at: datetime
    times_reviewed: int
    times_correct: int
    times_incorrect: int
    last_reviewed_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class ImportRequest(BaseModel):
    words: list[WordCreate]


class ImportResponse(BaseModel):
    added: list[WordResponse]
    duplicates: list[str]
    added_count: int
    duplicate_count: int


@router.get("", response_model=list[WordResponse])
async def list_words(
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    """All words in the scope, newest first."""
    result = await service.list_items(scope.id)
    raise_result(result)
    return result.unwrap()


@router.post("", response_model=WordResponse, status_code=201)
async def add_word(
    data: WordCreate,
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.add_item(scope.id, data.to_fields(scope))
    raise_result(result)
    return result.unwrap()


@router.post("/import", response_model=ImportResponse)
async def import_words(
    data: ImportRequest,
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    """Add many words at once; duplicates are skipped and reported by source text."""
    result = await service.import_items_bulk(scope.id, [w.to_fields(scope) for w in data.words])
    raise_result(result)
    imported = result.unwrap()
    return ImportResponse(
        added=[WordResponse.model_validate(item) for item in imported.added],
        duplicates=[d.source_text for d in imported.duplicates],
        added_count=len(imported.added),
        duplicate_count=len(imported.duplicates),
    )


@router.get("/{word_id}", response_model=WordResponse)
async def get_word(
    word_id: UUID,
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.get_item(scope.id, word_id)
    raise_result(result)
    return result.unwrap()


@router.patch("/{word_id}", response_model=WordResponse)
async def update_word(
    word_id: UUID,
    data: WordUpdate,
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    """Edit content fields. Box and review times only change through reviews."""
    result = await service.update_item(scope.id, word_id, **data.model_dump(exclude_unset=True))
    raise_result(result)
    return result.unwrap()


@router.delete("/{word_id}", status_code=204)
async def delete_word(
    word_id: UUID,
    scope: LearningScope = Depends(get_scope),
    service: LeitnerService = Depends(get_service),
):
    result = await service.delete_item(scope.id, word_id)
    raise_result(result)
    return Response(status_code=204)
