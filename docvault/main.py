from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from docvault.api.router import api_router
from docvault.core.config import settings
from docvault.core.db import SessionLocal, engine
from docvault.core.logging import configure_logging
from docvault.domains.documents.errors import StoreError
from docvault.domains.documents.services import create_document_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    document_service = create_document_service(settings, SessionLocal)
    await document_service.ensure_indexes()
    app.state.document_service = document_service
    logger.info(f"docvault started ({settings.blob_backend} blob backend)")
    yield
    await engine.dispose()


app = FastAPI(
    title="docvault",
    description="Хранилище скомпилированных документов",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)}
    )


# Подключаем роутеры
app.include_router(api_router)


@app.get("/")
async def root():
    """Корневой эндпоинт"""
    return {
        "message": "docvault API",
        "version": "1.0.0",
        "docs": "/docs",
        "languages": settings.supported_languages
    }
