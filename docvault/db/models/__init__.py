from docvault.db.models.document import Intent, Document
from docvault.db.models.blob import Blob, BlobChunk

__all__ = [
    "Intent",
    "Document",
    "Blob",
    "BlobChunk"
]
