from typing import Optional
import uuid

from fastapi import Header, HTTPException, Request, status

from docvault.domains.documents.services import DocumentService


def get_document_service(request: Request) -> DocumentService:
    """Зависимость для получения сервиса документов"""
    return request.app.state.document_service


async def get_current_owner_id(x_owner_id: Optional[str] = Header(None)) -> uuid.UUID:
    """Зависимость для получения id владельца.

    Пользователей проверяет шлюз перед сервисом и передает id в заголовке
    X-Owner-Id.
    """
    if not x_owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing owner id"
        )
    try:
        return uuid.UUID(x_owner_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid owner id"
        )
