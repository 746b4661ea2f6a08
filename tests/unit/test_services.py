"""
Tests for the document lifecycle engine.

Covers:
- Intent registration and validation
- Promotion (metadata first, conflict, retry after failed upload, cancellation)
- Listing, content retrieval, removal
- Compile + finalize flow
- Reconciliation of orphan records and blobs
"""
import asyncio
import logging
import uuid

import pytest

from docvault.domains.documents.entities import DocumentLanguage
from docvault.domains.documents.errors import CompileError, ConflictError, StoreError, ValidationError
from docvault.domains.documents.services import DocumentService
from docvault.infrastructure.memory import InMemoryBlobStore


class FailingBlobStore(InMemoryBlobStore):
    """Blob store whose next `failures` uploads fail."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    async def upload(self, document_id, name_hint, content):
        if self.failures:
            self.failures -= 1
            raise StoreError("disk full")
        return await super().upload(document_id, name_hint, content)


class BrokenCompiler:
    async def compile(self, language, source):
        raise RuntimeError("! LaTeX Error: File `missing.sty' not found.")
        yield b""


async def _content(service, document_id):
    reader = await service.get_content(document_id)
    if reader is None:
        return None
    async with reader:
        return await reader.read()


class TestRegisterIntent:
    """Tests for intent registration."""

    async def test_register_then_get(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)

        intent = await service.get_intent(intent_id)

        assert intent.id == intent_id
        assert intent.owner_id == owner_id
        assert intent.name == "essay.tex"
        assert intent.language is DocumentLanguage.LATEX

    async def test_ids_are_fresh(self, service, owner_id):
        ids = {await service.register_intent(owner_id, "a.md", "markdown") for _ in range(5)}
        assert len(ids) == 5

    @pytest.mark.parametrize("name", ["", "  "])
    async def test_empty_name_creates_nothing(self, service, metadata_store, owner_id, name):
        with pytest.raises(ValidationError):
            await service.register_intent(owner_id, name, DocumentLanguage.LATEX)
        assert metadata_store._intents == {}

    async def test_empty_owner_creates_nothing(self, service, metadata_store):
        with pytest.raises(ValidationError):
            await service.register_intent(uuid.UUID(int=0), "essay.tex", DocumentLanguage.LATEX)
        with pytest.raises(ValidationError):
            await service.register_intent(None, "essay.tex", DocumentLanguage.LATEX)
        assert metadata_store._intents == {}

    async def test_unknown_language_rejected(self, service, owner_id):
        with pytest.raises(ValidationError):
            await service.register_intent(owner_id, "prog.cob", "cobol")

    async def test_unsupported_language_rejected(self, metadata_store, blob_store, registry, owner_id):
        service = DocumentService(metadata_store, blob_store, registry, supported_languages=["latex"])

        with pytest.raises(ValidationError, match="not supported"):
            await service.register_intent(owner_id, "notes.md", DocumentLanguage.MARKDOWN)

    async def test_abandon_is_idempotent(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)

        await service.abandon_intent(intent_id)
        await service.abandon_intent(intent_id)

        assert await service.get_intent(intent_id) is None

    async def test_abandon_does_not_touch_content(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)
        await service.promote(intent, b"compiled")

        await service.abandon_intent(intent_id)

        assert await _content(service, intent_id) == b"compiled"


class TestPromote:
    """Tests for promotion of an intent into a document."""

    async def test_promote_stores_record_and_content(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)

        document = await service.promote(intent, b"%PDF compiled bytes")

        stored = await service.get_document(intent_id)
        assert stored == document
        assert stored.created_at is not None
        assert stored.owner_id == owner_id
        assert await _content(service, intent_id) == b"%PDF compiled bytes"

    async def test_promote_keeps_intent(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)

        await service.promote(intent, b"x")

        assert await service.get_intent(intent_id) == intent

    async def test_second_promotion_conflicts(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)
        await service.promote(intent, b"first")

        with pytest.raises(ConflictError):
            await service.promote(intent, b"second")

        documents = await service.get_documents()
        assert [doc.id for doc in documents] == [intent_id]
        assert await _content(service, intent_id) == b"first"

    async def test_concurrent_promotions_leave_one_document(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)

        results = await asyncio.gather(
            service.promote(intent, b"a"),
            service.promote(intent, b"b"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert len(await service.get_documents()) == 1

    async def test_upload_failure_leaves_incomplete_record(self, metadata_store, registry, owner_id, caplog):
        service = DocumentService(metadata_store, FailingBlobStore(failures=1), registry)
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)

        with pytest.raises(StoreError):
            await service.promote(intent, b"content")

        assert await service.get_document(intent_id) is not None
        with caplog.at_level(logging.WARNING):
            assert await service.get_content(intent_id) is None
        assert "is not available" in caplog.text

    async def test_retry_after_upload_failure_completes(self, metadata_store, registry, owner_id):
        service = DocumentService(metadata_store, FailingBlobStore(failures=1), registry)
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)
        with pytest.raises(StoreError):
            await service.promote(intent, b"content")

        document = await service.promote(intent, b"content")

        assert document.id == intent_id
        assert await _content(service, intent_id) == b"content"
        assert len(await service.get_documents()) == 1

    async def test_cancelled_upload_leaves_no_content(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)
        started = asyncio.Event()

        async def slow_content():
            yield b"partial"
            started.set()
            await asyncio.Event().wait()
            yield b"never"

        task = asyncio.create_task(service.promote(intent, slow_content()))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await service.get_document(intent_id) is not None
        assert await service.get_content(intent_id) is None

        await service.promote(intent, b"full content")
        assert await _content(service, intent_id) == b"full content"

    async def test_promote_rejects_invalid_intent(self, service, owner_id):
        class FakeIntent:
            id = uuid.uuid4()
            name = ""
            owner_id = uuid.uuid4()

        with pytest.raises(ValidationError):
            await service.promote(FakeIntent(), b"x")
        assert await service.get_documents() == []


class TestListing:
    """Tests for document listings."""

    async def test_ordered_listing_newest_first(self, service, metadata_store, make_document):
        documents = [make_document(name=f"{i}.tex", minutes_ago=i * 5) for i in (3, 1, 4, 2)]
        for document in documents:
            await metadata_store.insert_document(document)

        listed = await service.get_documents(ordered=True)

        created = [doc.created_at for doc in listed]
        assert created == sorted(created, reverse=True)
        assert len(listed) == 4

    async def test_unordered_listing_returns_all(self, service, metadata_store, make_document):
        for i in range(3):
            await metadata_store.insert_document(make_document(minutes_ago=i))

        assert len(await service.get_documents(ordered=False)) == 3

    async def test_user_documents_filters_by_owner(self, service, owner_id, other_owner_id):
        mine, theirs = [], []
        for i in range(3):
            intent_id = await service.register_intent(owner_id, f"mine{i}.tex", DocumentLanguage.LATEX)
            mine.append(await service.promote(await service.get_intent(intent_id), b"m"))
        for i in range(2):
            intent_id = await service.register_intent(other_owner_id, f"theirs{i}.md", DocumentLanguage.MARKDOWN)
            theirs.append(await service.promote(await service.get_intent(intent_id), b"t"))

        assert {d.id for d in await service.get_user_documents(owner_id)} == {d.id for d in mine}
        assert {d.id for d in await service.get_user_documents(other_owner_id)} == {d.id for d in theirs}
        assert await service.get_user_documents(uuid.uuid4()) == []


class TestContentAndRemoval:
    """Tests for content retrieval and document removal."""

    async def test_content_of_unknown_document_is_none(self, service):
        assert await service.get_content(uuid.uuid4()) is None

    async def test_orphan_blob_is_not_served(self, service, blob_store):
        orphan_id = uuid.uuid4()
        await blob_store.upload(orphan_id, "orphan.pdf", b"lost")

        assert await service.get_content(orphan_id) is None

    async def test_remove_document(self, service, blob_store, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        await service.promote(await service.get_intent(intent_id), b"content")

        await service.remove_document(intent_id)

        assert await service.get_document(intent_id) is None
        assert await service.get_content(intent_id) is None
        assert not await blob_store.exists(intent_id)

    async def test_remove_is_idempotent(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        await service.promote(await service.get_intent(intent_id), b"content")

        await service.remove_document(intent_id)
        await service.remove_document(intent_id)
        await service.remove_document(uuid.uuid4())

        assert await service.get_documents() == []

    async def test_remove_while_reading_defers_content(self, service, blob_store, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        await service.promote(await service.get_intent(intent_id), b"0123456789")
        reader = await service.get_content(intent_id)

        await service.remove_document(intent_id)

        assert await service.get_document(intent_id) is None
        assert await service.get_content(intent_id) is None
        assert await blob_store.exists(intent_id)
        async with reader:
            assert await reader.read() == b"0123456789"
        assert not await blob_store.exists(intent_id)

    async def test_repromote_while_removed_content_is_read(self, service, blob_store, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        intent = await service.get_intent(intent_id)
        await service.promote(intent, b"old")
        reader = await service.get_content(intent_id)
        await service.remove_document(intent_id)

        with pytest.raises(ConflictError):
            await service.promote(intent, b"new")

        await reader.aclose()
        await service.promote(intent, b"new")
        assert await _content(service, intent_id) == b"new"


class TestCompileAndFinalize:
    """Tests for the compile step and the full finalize flow."""

    async def test_compile_unknown_intent(self, service):
        assert await service.compile(uuid.uuid4(), b"x") is None

    async def test_compile_returns_rewound_output(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "notes.md", DocumentLanguage.MARKDOWN)

        output = await service.compile(intent_id, b"# Notes")
        try:
            assert output.read() == b"# Notes"
        finally:
            output.close()

    async def test_essay_scenario(self, service, metadata_store, make_document, owner_id):
        older = make_document(name="old.tex", minutes_ago=60)
        await metadata_store.insert_document(older)
        await service.blobs.upload(older.id, older.name, b"old")
        raw = b"\\documentclass{article}\\begin{document}Hi\\end{document}"

        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        document = await service.finalize(intent_id, raw)

        assert document.id == intent_id
        assert await _content(service, intent_id) == raw
        assert (await service.get_documents(ordered=True))[0].id == intent_id
        assert await service.get_intent(intent_id) is None

    async def test_finalize_unknown_intent(self, service):
        assert await service.finalize(uuid.uuid4(), b"x") is None

    async def test_compile_error_aborts_before_any_write(self, metadata_store, blob_store, owner_id):
        from docvault.domains.documents.compilers import CompilerRegistry

        registry = CompilerRegistry()
        registry.register(DocumentLanguage.LATEX, BrokenCompiler())
        service = DocumentService(metadata_store, blob_store, registry)
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)

        with pytest.raises(CompileError, match="missing.sty"):
            await service.finalize(intent_id, b"\\usepackage{missing}")

        assert await service.get_documents() == []
        assert await blob_store.list_ids() == []
        assert await service.get_intent(intent_id) is not None


class TestReconcile:
    """Tests for reconciliation of the two stores."""

    async def test_removes_orphans(self, metadata_store, registry, owner_id):
        blobs = FailingBlobStore(failures=1)
        service = DocumentService(metadata_store, blobs, registry)
        broken_id = await service.register_intent(owner_id, "broken.tex", DocumentLanguage.LATEX)
        with pytest.raises(StoreError):
            await service.promote(await service.get_intent(broken_id), b"x")
        healthy_id = await service.register_intent(owner_id, "ok.tex", DocumentLanguage.LATEX)
        await service.promote(await service.get_intent(healthy_id), b"ok")
        orphan_blob = uuid.uuid4()
        await blobs.upload(orphan_blob, "lost.pdf", b"lost")

        report = await service.reconcile()

        assert report.orphan_documents == [broken_id]
        assert report.orphan_blobs == [orphan_blob]
        assert await service.get_document(broken_id) is None
        assert not await blobs.exists(orphan_blob)
        assert await _content(service, healthy_id) == b"ok"

    async def test_clean_stores(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "ok.tex", DocumentLanguage.LATEX)
        await service.promote(await service.get_intent(intent_id), b"ok")

        report = await service.reconcile()

        assert report.clean
        assert report.skipped == []

    async def test_skips_in_flight_promotion(self, service, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        started, release = asyncio.Event(), asyncio.Event()

        async def slow_content():
            yield b"partial "
            started.set()
            await release.wait()
            yield b"rest"

        task = asyncio.create_task(service.promote(await service.get_intent(intent_id), slow_content()))
        await started.wait()

        report = await service.reconcile()

        assert report.skipped == [intent_id]
        assert report.clean
        release.set()
        await task
        assert await _content(service, intent_id) == b"partial rest"

    async def test_skips_content_still_being_read(self, service, blob_store, owner_id):
        intent_id = await service.register_intent(owner_id, "essay.tex", DocumentLanguage.LATEX)
        await service.promote(await service.get_intent(intent_id), b"content")
        reader = await service.get_content(intent_id)
        await service.remove_document(intent_id)

        report = await service.reconcile()

        assert report.skipped == [intent_id]
        assert await blob_store.exists(intent_id)
        await reader.aclose()
        assert not await blob_store.exists(intent_id)
