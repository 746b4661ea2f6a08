import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from docvault.core.db import Base
from docvault.db.models.blob import Blob as BlobModel, BlobChunk as BlobChunkModel
from docvault.domains.documents.errors import StoreError
from docvault.domains.documents.streams import DEFAULT_CHUNK_SIZE, BlobReader, Content, iter_chunks

logger = logging.getLogger(__name__)


class BlobRepository:
    """Хранилище содержимого документов в той же базе данных.

    Файл хранится заголовком в ``document_blobs`` и чанками фиксированного
    размера в ``document_blob_chunks``. Загрузка идет одной транзакцией,
    поэтому прерванная загрузка не оставляет видимого blob.
    """

    def __init__(self, session_factory: async_sessionmaker, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    async def ensure_indexes(self) -> None:
        tables = [BlobModel.__table__, BlobChunkModel.__table__]
        try:
            async with self.session_factory() as session:
                conn = await session.connection()
                await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables, checkfirst=True))
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to create blob tables: {exc}") from exc

    async def upload(self, document_id: uuid.UUID, name_hint: str, content: Content) -> int:
        """Загрузка содержимого; существующий blob с тем же id заменяется"""
        length = 0
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(delete(BlobChunkModel).where(BlobChunkModel.blob_id == document_id))
                    await session.execute(delete(BlobModel).where(BlobModel.id == document_id))

                    db_blob = BlobModel(
                        id=document_id,
                        filename=name_hint,
                        length=0,
                        chunk_count=0,
                        uploaded_at=datetime.now(timezone.utc)
                    )
                    session.add(db_blob)
                    await session.flush()

                    index = 0
                    async for chunk in iter_chunks(content, self.chunk_size):
                        session.add(BlobChunkModel(blob_id=document_id, chunk_index=index, data=chunk))
                        # Keep at most one chunk pending in the session
                        await session.flush()
                        session.expunge_all()
                        index += 1
                        length += len(chunk)

                    await session.execute(
                        update(BlobModel)
                        .where(BlobModel.id == document_id)
                        .values(length=length, chunk_count=index)
                    )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to upload content for {document_id}: {exc}") from exc

        logger.info(f"Stored {length} bytes for document {document_id}")
        return length

    async def download(self, document_id: uuid.UUID) -> Optional[BlobReader]:
        """Открытие потока содержимого или None, если blob нет.

        Заголовок и чанки читаются в одной сессии и одной транзакции, которая
        живет до закрытия потока. На PostgreSQL транзакция идет с REPEATABLE
        READ, поэтому поток видит один снимок blob.
        """
        session = self.session_factory()
        try:
            await session.connection(execution_options=self._read_options(session))
            db_blob = await session.get(BlobModel, document_id)
        except SQLAlchemyError as exc:
            await session.close()
            raise StoreError(f"Failed to open content for {document_id}: {exc}") from exc
        except BaseException:
            await session.close()
            raise

        if db_blob is None:
            await session.close()
            return None

        return BlobReader(
            document_id,
            db_blob.filename,
            db_blob.length,
            self._stream_chunks(session, document_id, db_blob.chunk_count),
            on_close=session.close,
        )

    @staticmethod
    def _read_options(session) -> dict:
        bind = session.bind
        if bind is not None and bind.dialect.name == "postgresql":
            return {"isolation_level": "REPEATABLE READ"}
        return {}

    async def _stream_chunks(self, session, document_id: uuid.UUID, chunk_count: int) -> AsyncIterator[bytes]:
        query = (
            select(BlobChunkModel.data)
            .where(BlobChunkModel.blob_id == document_id)
            .order_by(BlobChunkModel.chunk_index)
        )
        seen = 0
        try:
            result = await session.stream_scalars(query)
            try:
                async for data in result:
                    seen += 1
                    yield data
            finally:
                await result.close()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read content for {document_id}: {exc}") from exc

        if seen != chunk_count:
            raise StoreError(f"Content for {document_id} changed while reading ({seen}/{chunk_count} chunks)")

    async def exists(self, document_id: uuid.UUID) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(BlobModel.id).where(BlobModel.id == document_id))
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to check content for {document_id}: {exc}") from exc

    async def list_ids(self) -> List[uuid.UUID]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(BlobModel.id))
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list content: {exc}") from exc

    async def delete(self, document_id: uuid.UUID) -> bool:
        """Удаление содержимого; отсутствие blob не ошибка"""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(delete(BlobChunkModel).where(BlobChunkModel.blob_id == document_id))
                    result = await session.execute(delete(BlobModel).where(BlobModel.id == document_id))
                    return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete content for {document_id}: {exc}") from exc
