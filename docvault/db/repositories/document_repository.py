import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from docvault.core.db import Base
from docvault.db.models.document import Document as DocumentModel, Intent as IntentModel
from docvault.domains.documents.entities import Document, DocumentLanguage, Intent
from docvault.domains.documents.errors import ConflictError, StoreError

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DocumentRepository:
    """Репозиторий метаданных: намерения и готовые документы"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def ensure_indexes(self) -> None:
        """Создание таблиц и вторичных индексов (owner_id, created_at)"""
        tables = [IntentModel.__table__, DocumentModel.__table__]

        def _create(sync_conn):
            Base.metadata.create_all(sync_conn, tables=tables, checkfirst=True)
            for table in tables:
                for index in table.indexes:
                    index.create(sync_conn, checkfirst=True)

        try:
            async with self.session_factory() as session:
                conn = await session.connection()
                await conn.run_sync(_create)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to create metadata indexes: {exc}") from exc

    # Intents

    async def insert_intent(self, intent: Intent) -> None:
        """Сохранение намерения"""
        db_intent = IntentModel(
            id=intent.id,
            owner_id=intent.owner_id,
            name=intent.name,
            language=intent.language.value
        )
        await self._insert(db_intent, f"Intent {intent.id} already exists")

    async def get_intent(self, intent_id: uuid.UUID) -> Optional[Intent]:
        """Получение намерения по id"""
        try:
            async with self.session_factory() as session:
                db_intent = await session.get(IntentModel, intent_id)
                return self._intent_to_domain(db_intent) if db_intent else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read intent {intent_id}: {exc}") from exc

    async def delete_intent(self, intent_id: uuid.UUID) -> bool:
        """Удаление намерения; отсутствие записи не ошибка"""
        return await self._delete(delete(IntentModel).where(IntentModel.id == intent_id))

    # Documents

    async def insert_document(self, document: Document) -> None:
        """Сохранение документа"""
        db_document = DocumentModel(
            id=document.id,
            name=document.name,
            owner_id=document.owner_id,
            # SQLite keeps wall-clock time only
            created_at=document.created_at.astimezone(timezone.utc)
        )
        await self._insert(db_document, f"Document {document.id} already exists")

    async def get_document(self, document_id: uuid.UUID) -> Optional[Document]:
        """Получение документа по id"""
        try:
            async with self.session_factory() as session:
                db_document = await session.get(DocumentModel, document_id)
                return self._document_to_domain(db_document) if db_document else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read document {document_id}: {exc}") from exc

    async def list_documents(self, ordered: bool = False) -> List[Document]:
        """Все документы, при ordered=True новые первыми"""
        query = select(DocumentModel)
        if ordered:
            query = query.order_by(DocumentModel.created_at.desc())
        return await self._list(query)

    async def list_documents_by_owner(self, owner_id: uuid.UUID) -> List[Document]:
        """Документы владельца"""
        return await self._list(select(DocumentModel).where(DocumentModel.owner_id == owner_id))

    async def delete_document(self, document_id: uuid.UUID) -> bool:
        """Удаление документа; отсутствие записи не ошибка"""
        return await self._delete(delete(DocumentModel).where(DocumentModel.id == document_id))

    async def _insert(self, db_record, conflict_message: str) -> None:
        try:
            async with self.session_factory() as session:
                session.add(db_record)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    raise ConflictError(conflict_message)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to insert record: {exc}") from exc

    async def _delete(self, stmt) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete record: {exc}") from exc

    async def _list(self, query) -> List[Document]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [self._document_to_domain(doc) for doc in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list documents: {exc}") from exc

    def _intent_to_domain(self, db_intent: IntentModel) -> Intent:
        """Преобразование модели БД в доменную сущность"""
        return Intent(
            id=db_intent.id,
            owner_id=db_intent.owner_id,
            name=db_intent.name,
            language=DocumentLanguage(db_intent.language)
        )

    def _document_to_domain(self, db_document: DocumentModel) -> Document:
        """Преобразование модели БД в доменную сущность"""
        return Document(
            id=db_document.id,
            name=db_document.name,
            owner_id=db_document.owner_id,
            created_at=_as_utc(db_document.created_at)
        )
