from docvault.db.repositories.document_repository import DocumentRepository
from docvault.db.repositories.blob_repository import BlobRepository

__all__ = [
    "DocumentRepository",
    "BlobRepository"
]
