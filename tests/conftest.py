"""
Shared fixtures: in-memory stores for the lifecycle engine and an
in-memory SQLite database for the SQL repositories, plus a file-backed one
where sessions must not share a connection.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from docvault.db.repositories import BlobRepository, DocumentRepository
from docvault.domains.documents.compilers import CompilerRegistry, PassthroughCompiler
from docvault.domains.documents.entities import Document, DocumentLanguage
from docvault.domains.documents.services import DocumentService
from docvault.infrastructure.memory import InMemoryBlobStore, InMemoryMetadataStore


@pytest.fixture
def owner_id():
    return uuid.uuid4()


@pytest.fixture
def other_owner_id():
    return uuid.uuid4()


@pytest.fixture
def registry():
    """Passthrough compiler for every language."""
    registry = CompilerRegistry()
    for language in DocumentLanguage:
        registry.register(language, PassthroughCompiler())
    return registry


@pytest.fixture
def metadata_store():
    return InMemoryMetadataStore()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore(chunk_size=4)


@pytest.fixture
def service(metadata_store, blob_store, registry):
    """Lifecycle engine on in-memory stores."""
    return DocumentService(metadata_store, blob_store, registry)


@pytest.fixture
async def sqlite_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return async_sessionmaker(bind=sqlite_engine, expire_on_commit=False)


@pytest.fixture
async def file_engine(tmp_path):
    """SQLite file database; every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'docvault.db'}",
        poolclass=AsyncAdaptedQueuePool,
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return async_sessionmaker(bind=file_engine, expire_on_commit=False)


@pytest.fixture
async def document_repository(session_factory):
    repository = DocumentRepository(session_factory)
    await repository.ensure_indexes()
    return repository


@pytest.fixture
async def blob_repository(session_factory):
    repository = BlobRepository(session_factory, chunk_size=8)
    await repository.ensure_indexes()
    return repository


@pytest.fixture
def make_document(owner_id):
    """Build a Document created `minutes_ago` minutes in the past."""
    def _make(name="doc.tex", owner=None, minutes_ago=0):
        return Document(
            id=uuid.uuid4(),
            name=name,
            owner_id=owner or owner_id,
            created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        )
    return _make
