import asyncio
import logging
import tempfile
import uuid
from collections import Counter
from pathlib import Path
from typing import Iterable, List, Optional, Set, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from docvault.core.config import Settings
from docvault.core.locks import KeyedLock
from docvault.domains.documents.compilers import CompilerRegistry, build_registry
from docvault.domains.documents.entities import Document, DocumentLanguage, Intent, ReconcileReport
from docvault.domains.documents.errors import ConflictError, StoreError, ValidationError
from docvault.domains.documents.ports import BlobStore, MetadataStore
from docvault.domains.documents.streams import BlobReader, Content, iter_chunks

logger = logging.getLogger(__name__)


class DocumentService:
    """Жизненный цикл документов: намерение -> компиляция -> готовый документ.

    Метаданные и содержимое лежат в разных хранилищах. Сервис держит их
    согласованными: запись документа вставляется раньше загрузки blob,
    удаление идет в том же порядке, а операции над одним id сериализуются.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        blobs: BlobStore,
        compilers: CompilerRegistry,
        supported_languages: Optional[Iterable[Union[DocumentLanguage, str]]] = None,
        spool_max_size: int = 8 * 1024 * 1024,
    ):
        self.metadata = metadata
        self.blobs = blobs
        self.compilers = compilers
        if supported_languages is None:
            self.supported_languages = set(DocumentLanguage)
        else:
            self.supported_languages = {DocumentLanguage(lang) for lang in supported_languages}
        self.spool_max_size = spool_max_size
        self._locks = KeyedLock()
        self._readers: Counter = Counter()
        self._pending_removal: Set[uuid.UUID] = set()

    async def ensure_indexes(self) -> None:
        """Подготовка хранилищ (таблицы, индексы, каталоги)"""
        await self.metadata.ensure_indexes()
        ensure = getattr(self.blobs, "ensure_indexes", None)
        if ensure is not None:
            await ensure()

    # Intents

    async def register_intent(
        self,
        owner_id: uuid.UUID,
        name: str,
        language: Union[DocumentLanguage, str]
    ) -> uuid.UUID:
        """Регистрация намерения создать документ"""
        if not isinstance(owner_id, uuid.UUID) or owner_id.int == 0:
            raise ValidationError("Owner ID cannot be empty")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Document name cannot be empty")
        try:
            language = DocumentLanguage(language)
        except ValueError:
            raise ValidationError(f"Unknown document language: {language}")
        if language not in self.supported_languages:
            raise ValidationError(f"Document language '{language.value}' is not supported")

        intent = Intent.register(owner_id=owner_id, name=name.strip(), language=language)
        await self.metadata.insert_intent(intent)
        logger.info(f"Registered intent {intent.id} ({language.value}) for owner {owner_id}")
        return intent.id

    async def get_intent(self, intent_id: uuid.UUID) -> Optional[Intent]:
        """Получение намерения по id"""
        return await self.metadata.get_intent(intent_id)

    async def abandon_intent(self, intent_id: uuid.UUID) -> None:
        """Удаление намерения; содержимое не затрагивается"""
        if await self.metadata.delete_intent(intent_id):
            logger.debug(f"Removed intent {intent_id}")

    # Compilation

    async def compile(self, intent_id: uuid.UUID, raw: Content) -> Optional[tempfile.SpooledTemporaryFile]:
        """Компиляция исходника по языку намерения.

        Возвращает результат во временном файле (в памяти до spool_max_size,
        дальше на диске), перемотанный в начало, или None, если намерения нет.
        Закрыть файл обязан вызывающий.
        """
        intent = await self.metadata.get_intent(intent_id)
        if intent is None:
            return None
        return await self._compile(intent, raw)

    async def _compile(self, intent: Intent, raw: Content) -> tempfile.SpooledTemporaryFile:
        spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_size)
        try:
            async for chunk in self.compilers.compile(intent.language, iter_chunks(raw)):
                spool.write(chunk)
            spool.seek(0)
        except BaseException:
            spool.close()
            raise
        return spool

    # Promotion

    async def promote(self, intent: Intent, compiled_content: Content) -> Document:
        """Превращение намерения и скомпилированного содержимого в документ.

        Запись документа вставляется до загрузки содержимого: запись без
        blob обнаружима и восстановима, а blob без записи недостижим.
        Намерение не удаляется, чтобы повтор после сбоя загрузки был возможен.

        Повторное продвижение уже полного документа дает ConflictError.
        Если запись есть, а содержимого нет, загрузка выполняется заново.
        """
        document = Document.from_intent(intent)

        async with self._locks.acquire(document.id):
            existing = await self.metadata.get_document(document.id)
            if existing is None and self._readers[document.id]:
                raise ConflictError(f"Content of removed document {document.id} is still being read")
            if existing is None:
                await self.metadata.insert_document(document)
            elif await self.blobs.exists(document.id):
                raise ConflictError(f"Document {document.id} has already been promoted")
            else:
                logger.warning(f"Document {document.id} has no content, retrying upload")
                document = existing

            try:
                length = await self.blobs.upload(document.id, document.name, compiled_content)
            except StoreError:
                logger.error(f"Upload failed for document {document.id}; record left without content")
                raise
            except asyncio.CancelledError:
                logger.warning(f"Upload cancelled for document {document.id}; record left without content")
                raise

        logger.info(f"Promoted intent {intent.id} to document ({length} bytes)")
        return document

    async def finalize(self, intent_id: uuid.UUID, raw: Content) -> Optional[Document]:
        """Компиляция, продвижение и удаление намерения за один вызов"""
        intent = await self.metadata.get_intent(intent_id)
        if intent is None:
            return None

        compiled = await self._compile(intent, raw)
        try:
            document = await self.promote(intent, compiled)
        finally:
            compiled.close()

        await self.abandon_intent(intent.id)
        return document

    # Documents

    async def get_document(self, document_id: uuid.UUID) -> Optional[Document]:
        """Получение документа по id"""
        return await self.metadata.get_document(document_id)

    async def get_documents(self, ordered: bool = False) -> List[Document]:
        """Все документы; ordered=True - новые первыми"""
        return await self.metadata.list_documents(ordered=ordered)

    async def get_user_documents(self, owner_id: uuid.UUID) -> List[Document]:
        """Документы пользователя"""
        return await self.metadata.list_documents_by_owner(owner_id)

    async def get_content(self, document_id: uuid.UUID) -> Optional[BlobReader]:
        """Поток с содержимым документа или None.

        Вызывающий отвечает за закрытие потока. Пока поток открыт, удаление
        документа не трогает содержимое: blob удаляется при закрытии
        последнего потока.
        """
        async with self._locks.acquire(document_id):
            if await self.metadata.get_document(document_id) is None:
                return None

            reader = await self.blobs.download(document_id)
            if reader is None:
                # Failed upload, or a promotion running in another process
                logger.warning(f"Content for document {document_id} is not available")
                return None

            self._readers[document_id] += 1
            reader.add_close_callback(lambda: self._release_reader(document_id))
            return reader

    async def _release_reader(self, document_id: uuid.UUID) -> None:
        self._readers[document_id] -= 1
        if self._readers[document_id] > 0:
            return
        del self._readers[document_id]
        if document_id not in self._pending_removal:
            return

        async with self._locks.acquire(document_id):
            self._pending_removal.discard(document_id)
            if self._readers[document_id] or await self.metadata.get_document(document_id) is not None:
                return
            if await self.blobs.delete(document_id):
                logger.info(f"Removed content of document {document_id} after the last reader closed")

    async def remove_document(self, document_id: uuid.UUID) -> None:
        """Удаление документа: сначала запись, затем содержимое"""
        async with self._locks.acquire(document_id):
            record_removed = await self.metadata.delete_document(document_id)
            if self._readers[document_id]:
                self._pending_removal.add(document_id)
                logger.info(f"Content of document {document_id} is being read, removal deferred")
                blob_removed = False
            else:
                blob_removed = await self.blobs.delete(document_id)

        if record_removed or blob_removed:
            logger.info(f"Removed document {document_id}")

    async def reconcile(self) -> ReconcileReport:
        """Сверка хранилищ: удаление записей без содержимого и содержимого без записей"""
        report = ReconcileReport()
        documents = await self.metadata.list_documents()
        blob_ids = set(await self.blobs.list_ids())

        for document in documents:
            if document.id in blob_ids:
                continue
            if self._locks.locked(document.id):
                report.skipped.append(document.id)
                continue
            async with self._locks.acquire(document.id):
                if await self.blobs.exists(document.id):
                    continue
                if await self.metadata.delete_document(document.id):
                    logger.warning(f"Removed document {document.id} without content")
                    report.orphan_documents.append(document.id)

        document_ids = {document.id for document in documents}
        for blob_id in blob_ids - document_ids:
            if self._locks.locked(blob_id) or self._readers[blob_id]:
                report.skipped.append(blob_id)
                continue
            async with self._locks.acquire(blob_id):
                if await self.metadata.get_document(blob_id) is not None:
                    continue
                if await self.blobs.delete(blob_id):
                    logger.warning(f"Removed content {blob_id} without a document")
                    report.orphan_blobs.append(blob_id)

        return report


def create_document_service(settings: Settings, session_factory: async_sessionmaker) -> DocumentService:
    """Сборка сервиса по настройкам"""
    from docvault.db.repositories import BlobRepository, DocumentRepository
    from docvault.infrastructure.storage.filesystem import FileSystemBlobStore

    if settings.blob_backend == "filesystem":
        blobs = FileSystemBlobStore(Path(settings.blob_root), chunk_size=settings.blob_chunk_size)
    else:
        blobs = BlobRepository(session_factory, chunk_size=settings.blob_chunk_size)

    return DocumentService(
        metadata=DocumentRepository(session_factory),
        blobs=blobs,
        compilers=build_registry(settings),
        supported_languages=settings.supported_languages,
        spool_max_size=settings.spool_max_size,
    )
