"""Хранилища в памяти процесса.

Используются в тестах и для локальных запусков без базы данных. Повторяют
семантику SQL хранилищ: уникальность id, идемпотентное удаление,
вторичные индексы по владельцу.
"""
import asyncio
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from docvault.domains.documents.entities import Document, Intent
from docvault.domains.documents.errors import ConflictError
from docvault.domains.documents.streams import DEFAULT_CHUNK_SIZE, BlobReader, Content, iter_chunks


class InMemoryMetadataStore:
    """Намерения и документы в словарях с индексом по владельцу"""

    def __init__(self):
        self._intents: Dict[uuid.UUID, Intent] = {}
        self._documents: Dict[uuid.UUID, Document] = {}
        self._documents_by_owner: Dict[uuid.UUID, Set[uuid.UUID]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def ensure_indexes(self) -> None:
        return None

    async def insert_intent(self, intent: Intent) -> None:
        async with self._lock:
            if intent.id in self._intents:
                raise ConflictError(f"Intent {intent.id} already exists")
            self._intents[intent.id] = intent

    async def get_intent(self, intent_id: uuid.UUID) -> Optional[Intent]:
        return self._intents.get(intent_id)

    async def delete_intent(self, intent_id: uuid.UUID) -> bool:
        async with self._lock:
            return self._intents.pop(intent_id, None) is not None

    async def insert_document(self, document: Document) -> None:
        async with self._lock:
            if document.id in self._documents:
                raise ConflictError(f"Document {document.id} already exists")
            self._documents[document.id] = document
            self._documents_by_owner[document.owner_id].add(document.id)

    async def get_document(self, document_id: uuid.UUID) -> Optional[Document]:
        return self._documents.get(document_id)

    async def list_documents(self, ordered: bool = False) -> List[Document]:
        documents = list(self._documents.values())
        if ordered:
            documents.sort(key=lambda doc: doc.created_at, reverse=True)
        return documents

    async def list_documents_by_owner(self, owner_id: uuid.UUID) -> List[Document]:
        return [self._documents[doc_id] for doc_id in list(self._documents_by_owner.get(owner_id, ()))]

    async def delete_document(self, document_id: uuid.UUID) -> bool:
        async with self._lock:
            document = self._documents.pop(document_id, None)
            if document is None:
                return False
            owned = self._documents_by_owner[document.owner_id]
            owned.discard(document_id)
            if not owned:
                del self._documents_by_owner[document.owner_id]
            return True


class InMemoryBlobStore:
    """Содержимое документов в памяти; blob виден только после полной загрузки"""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size
        self._blobs: Dict[uuid.UUID, dict] = {}

    async def ensure_indexes(self) -> None:
        return None

    async def upload(self, document_id: uuid.UUID, name_hint: str, content: Content) -> int:
        chunks = [chunk async for chunk in iter_chunks(content, self.chunk_size)]
        self._blobs[document_id] = {
            "filename": name_hint,
            "chunks": chunks,
            "uploaded_at": datetime.now(timezone.utc),
        }
        return sum(len(chunk) for chunk in chunks)

    async def download(self, document_id: uuid.UUID) -> Optional[BlobReader]:
        blob = self._blobs.get(document_id)
        if blob is None:
            return None
        chunks = list(blob["chunks"])

        async def _stream():
            for chunk in chunks:
                yield chunk

        return BlobReader(document_id, blob["filename"], sum(len(c) for c in chunks), _stream())

    async def exists(self, document_id: uuid.UUID) -> bool:
        return document_id in self._blobs

    async def list_ids(self) -> List[uuid.UUID]:
        return list(self._blobs)

    async def delete(self, document_id: uuid.UUID) -> bool:
        return self._blobs.pop(document_id, None) is not None
