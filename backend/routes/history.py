"""History API routes: newest-first pages of job records."""

from fastapi import APIRouter, Query, Request

from backend.routes.generation import get_manager, media_kind
from mediagen.jobs import HistoryPage

router = APIRouter()


@router.get("/history/all", response_model=HistoryPage)
async def all_history(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    """Image and video records together, newest first."""
    return get_manager(request).history(None, page=page, limit=limit)


@router.get("/history/{collection}", response_model=HistoryPage)
@router.get("/{collection}/history", response_model=HistoryPage)
async def kind_history(
    collection: str,
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    """Records of one kind (``images`` or ``videos``), newest first."""
    return get_manager(request).history(media_kind(collection), page=page, limit=limit)
