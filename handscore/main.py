"""FastAPI application entrypoint."""

import asyncio
import contextlib
import logging
import os
from typing import Any
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from handscore import db
from handscore.pipeline.evaluation import EvaluationPipeline, get_evaluation_pipeline
from handscore.pipeline.maintenance import maintenance_loop, recover_orphaned_evaluations
from handscore.routers.evaluations import router as evaluations_router
from handscore.routers.files import router as files_router
from handscore.routers.ocr import router as ocr_router
from handscore.routers.questions import router as questions_router
from handscore.routers.subjects import router as subjects_router
from handscore.settings import settings
from handscore.storage import ensure_dir

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_PUBLIC_PATHS = {
    "/health",
    "/health/deep",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/favicon.ico",
}


@app.middleware("http")
async def enforce_api_key(request: Request, call_next):
    if request.method == "OPTIONS":
        return await call_next(request)

    if request.url.path in _PUBLIC_PATHS:
        return await call_next(request)

    expected_api_key = os.getenv("BACKEND_API_KEY", "").strip()
    if expected_api_key:
        received_api_key = request.headers.get("X-API-Key", "")
        if received_api_key != expected_api_key:
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

    return await call_next(request)

app.include_router(evaluations_router)
app.include_router(questions_router)
app.include_router(subjects_router)
app.include_router(ocr_router)
app.include_router(files_router)

_maintenance_task: asyncio.Task | None = None


@app.on_event("startup")
async def on_startup() -> None:
    global _maintenance_task
    logging.basicConfig(level=settings.log_level.upper())
    ensure_dir(settings.data_path)
    db.create_db_and_tables()
    recovered = await asyncio.to_thread(recover_orphaned_evaluations, settings.orphan_grace_seconds)
    if recovered:
        logger.warning("failed orphaned evaluations at startup", extra={"count": len(recovered)})
    if settings.maintenance_interval_seconds > 0:
        _maintenance_task = asyncio.create_task(maintenance_loop(settings))


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _maintenance_task
    if _maintenance_task is not None:
        _maintenance_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _maintenance_task
        _maintenance_task = None


def _openai_configured() -> bool:
    return bool(os.getenv("OPENAI_API_KEY", "").strip())


def _database_reachable() -> bool:
    try:
        with db.open_session() as session:
            session.exec(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True


@app.get("/health", tags=["meta"])
def health() -> dict[str, bool]:
    return {"ok": True, "openai_configured": _openai_configured()}


@app.get("/health/deep", tags=["meta"])
async def deep_health(pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline)) -> dict[str, Any]:
    """Check the blob store and database the evaluation pipeline depends on."""
    storage_writable = True
    check_key = f"health/check-{uuid4().hex}.txt"
    try:
        await pipeline.storage.put_bytes(check_key, b"ok", "text/plain")
        await pipeline.storage.delete(check_key)
    except Exception as exc:  # noqa: BLE001
        logger.warning("storage health check failed", extra={"error": str(exc)})
        storage_writable = False

    db_ok = await asyncio.to_thread(_database_reachable)
    ocr_providers = pipeline.orchestrator.provider_names
    return {
        "ok": storage_writable and db_ok and bool(ocr_providers),
        "openai_configured": _openai_configured(),
        "storage_backend": settings.storage_backend,
        "storage_writable": storage_writable,
        "data_dir": str(settings.data_path),
        "db_ok": db_ok,
        "ocr_providers": ocr_providers,
        "active_evaluations": pipeline.active_jobs,
        "maintenance_running": _maintenance_task is not None and not _maintenance_task.done(),
    }


@app.options("/{path:path}", include_in_schema=False)
async def preflight(path: str) -> Response:
    del path
    return Response(status_code=204)
