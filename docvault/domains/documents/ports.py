import uuid
from typing import AsyncIterator, List, Optional, Protocol, runtime_checkable

from docvault.domains.documents.entities import Document, DocumentLanguage, Intent
from docvault.domains.documents.streams import BlobReader, Content


@runtime_checkable
class MetadataStore(Protocol):
    """Хранилище метаданных: коллекции намерений и документов.

    Записи неизменяемы после вставки, есть только вставка и удаление
    целиком. Чтение возвращает копии, а не внутренние объекты хранилища.
    """

    async def ensure_indexes(self) -> None:
        ...

    async def insert_intent(self, intent: Intent) -> None:
        ...

    async def get_intent(self, intent_id: uuid.UUID) -> Optional[Intent]:
        ...

    async def delete_intent(self, intent_id: uuid.UUID) -> bool:
        ...

    async def insert_document(self, document: Document) -> None:
        ...

    async def get_document(self, document_id: uuid.UUID) -> Optional[Document]:
        ...

    async def list_documents(self, ordered: bool = False) -> List[Document]:
        ...

    async def list_documents_by_owner(self, owner_id: uuid.UUID) -> List[Document]:
        ...

    async def delete_document(self, document_id: uuid.UUID) -> bool:
        ...


@runtime_checkable
class BlobStore(Protocol):
    """Хранилище содержимого, адресуемое по id документа.

    Загрузка атомарна с точки зрения читателя: blob либо виден целиком,
    либо не виден вовсе.
    """

    async def upload(self, document_id: uuid.UUID, name_hint: str, content: Content) -> int:
        ...

    async def download(self, document_id: uuid.UUID) -> Optional[BlobReader]:
        ...

    async def exists(self, document_id: uuid.UUID) -> bool:
        ...

    async def list_ids(self) -> List[uuid.UUID]:
        ...

    async def delete(self, document_id: uuid.UUID) -> bool:
        ...


@runtime_checkable
class Compiler(Protocol):
    """Преобразование исходника на заданном языке в итоговое содержимое"""

    def compile(self, language: DocumentLanguage, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        ...
