"""Local answer-image access."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import FileResponse

from handscore.storage_provider import LocalDiskProvider, get_storage_provider

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/local")
def get_local_file(key: str = Query(...)) -> FileResponse:
    provider = get_storage_provider()
    if not isinstance(provider, LocalDiskProvider):
        raise HTTPException(status_code=400, detail="Local file endpoint is only available with the local storage backend")

    try:
        path = provider.resolve_local_path(key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found (it may have been cleaned up)")

    return FileResponse(path)
