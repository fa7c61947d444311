"""API router for v1 endpoints."""

from fastapi import APIRouter

from dealmemo.api import memos

router = APIRouter()

# Memo generation, status and section generator routes
router.include_router(memos.router, prefix="/memos", tags=["memos"])
