from docvault.api.http.documents import router as documents_router

__all__ = [
    "documents_router"
]
