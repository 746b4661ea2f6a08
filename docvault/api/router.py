from fastapi import APIRouter
from docvault.api.http import documents_router

api_router = APIRouter()
api_router.include_router(documents_router)
