from docvault.domains.documents.entities import Document, DocumentLanguage, Intent, ReconcileReport
from docvault.domains.documents.errors import (
    DocumentError, ValidationError, NotFoundError, ConflictError, CompileError, StoreError
)
from docvault.domains.documents.streams import BlobReader, iter_chunks
from docvault.domains.documents.compilers import (
    CompilerRegistry, PassthroughCompiler, HttpCompiler, build_registry
)
from docvault.domains.documents.services import DocumentService, create_document_service

__all__ = [
    "Document", "DocumentLanguage", "Intent", "ReconcileReport",
    "DocumentError", "ValidationError", "NotFoundError", "ConflictError",
    "CompileError", "StoreError",
    "BlobReader", "iter_chunks",
    "CompilerRegistry", "PassthroughCompiler", "HttpCompiler", "build_registry",
    "DocumentService", "create_document_service"
]
