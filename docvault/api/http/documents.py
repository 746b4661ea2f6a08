import anyio
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from urllib.parse import quote
import uuid

from docvault.api.deps import get_current_owner_id, get_document_service
from docvault.domains.documents.errors import CompileError, ConflictError, StoreError, ValidationError
from docvault.domains.documents.schemas import (
    IntentCreate, IntentCreated, IntentResponse, DocumentResponse, DocumentListResponse
)
from docvault.domains.documents.services import DocumentService
from docvault.domains.documents.streams import BlobReader

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("/intents", response_model=IntentCreated, status_code=status.HTTP_201_CREATED)
async def register_intent(
    intent_data: IntentCreate,
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    document_service: DocumentService = Depends(get_document_service)
):
    """Регистрация намерения создать документ"""
    try:
        intent_id = await document_service.register_intent(owner_id, intent_data.name, intent_data.language)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return IntentCreated(id=intent_id)


@router.get("/intents/{intent_id}", response_model=IntentResponse)
async def get_intent(
    intent_id: uuid.UUID,
    document_service: DocumentService = Depends(get_document_service)
):
    """Получение намерения по id"""
    intent = await document_service.get_intent(intent_id)

    if not intent:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Intent not found"
        )

    return IntentResponse.model_validate(intent)


@router.delete("/intents/{intent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def abandon_intent(
    intent_id: uuid.UUID,
    document_service: DocumentService = Depends(get_document_service)
):
    """Отказ от намерения"""
    await document_service.abandon_intent(intent_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/intents/{intent_id}/content", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_content(
    intent_id: uuid.UUID,
    request: Request,
    document_service: DocumentService = Depends(get_document_service)
):
    """Загрузка исходника: компиляция и создание готового документа"""
    try:
        document = await document_service.finalize(intent_id, request.stream())
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (CompileError, ValidationError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if not document:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Intent not found"
        )

    return DocumentResponse.model_validate(document)


@router.get("", response_model=DocumentListResponse)
async def get_documents(
    ordered: bool = Query(True),
    document_service: DocumentService = Depends(get_document_service)
):
    """Получение списка всех документов"""
    documents = await document_service.get_documents(ordered=ordered)
    return DocumentListResponse(
        documents=[DocumentResponse.model_validate(doc) for doc in documents],
        total=len(documents)
    )


@router.get("/mine", response_model=DocumentListResponse)
async def get_user_documents(
    owner_id: uuid.UUID = Depends(get_current_owner_id),
    document_service: DocumentService = Depends(get_document_service)
):
    """Получение документов текущего пользователя"""
    documents = await document_service.get_user_documents(owner_id)
    return DocumentListResponse(
        documents=[DocumentResponse.model_validate(doc) for doc in documents],
        total=len(documents)
    )


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: uuid.UUID,
    document_service: DocumentService = Depends(get_document_service)
):
    """Получение документа по id"""
    document = await document_service.get_document(document_id)

    if not document:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found"
        )

    return DocumentResponse.model_validate(document)


class ContentResponse(StreamingResponse):
    """Потоковая отдача содержимого; поток закрывается на любом пути.

    При обрыве соединения Starlette не запускает background-задачи,
    поэтому поток закрывается в ``__call__``.
    """

    def __init__(self, reader: BlobReader, **kwargs):
        super().__init__(reader, **kwargs)
        self.reader = reader

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.reader.aclose()


@router.get("/{document_id}/content")
async def download_content(
    document_id: uuid.UUID,
    document_service: DocumentService = Depends(get_document_service)
):
    """Скачивание содержимого документа"""
    reader = await document_service.get_content(document_id)

    if not reader:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found"
        )

    headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(reader.name)}"}
    if reader.length is not None:
        headers["Content-Length"] = str(reader.length)

    return ContentResponse(reader, media_type="application/octet-stream", headers=headers)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_document(
    document_id: uuid.UUID,
    document_service: DocumentService = Depends(get_document_service)
):
    """Удаление документа"""
    try:
        await document_service.remove_document(document_id)
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
