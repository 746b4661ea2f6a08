from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import List
import uuid
from datetime import datetime

from docvault.domains.documents.entities import DocumentLanguage


class IntentCreate(BaseModel):
    """Схема для регистрации намерения"""
    name: str = Field(..., min_length=1, max_length=255)
    language: DocumentLanguage

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip()


class IntentCreated(BaseModel):
    """Схема для ответа с id нового намерения"""
    id: uuid.UUID


class IntentResponse(BaseModel):
    """Схема для ответа с данными намерения"""
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    language: DocumentLanguage

    model_config = ConfigDict(from_attributes=True)


class DocumentResponse(BaseModel):
    """Схема для ответа с данными документа"""
    id: uuid.UUID
    name: str
    owner_id: uuid.UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DocumentListResponse(BaseModel):
    """Схема для списка документов"""
    documents: List[DocumentResponse]
    total: int
