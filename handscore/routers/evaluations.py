"""Evaluation job endpoints."""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlmodel import Session

from handscore.db import get_session
from handscore.models import Evaluation, EvaluationStatus, TERMINAL_STATUSES
from handscore.pipeline.evaluation import (
    EvaluationOptions,
    EvaluationPipeline,
    EvaluationRequest,
    SubmissionValidationError,
    get_evaluation_pipeline,
)
from handscore.pipeline.progress import ProgressBoard, get_progress_board
from handscore.pipeline.store import EvaluationStore, get_evaluation_store
from handscore.ratelimit import FixedWindowRateLimiter, get_rate_limiter
from handscore.schemas import EvaluationAccepted, EvaluationProgressRead, EvaluationRead, ProgressEventRead
from handscore.storage import safe_filename

router = APIRouter(prefix="/evaluations", tags=["evaluations"])

RATE_LIMITED_RESOURCE = "evaluations"


@router.post("", response_model=EvaluationAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_evaluation(
    subject_id: str = Form(...),
    question_id: int = Form(...),
    image: UploadFile = File(...),
    preferred_provider: str | None = Form(None),
    enhance_image: bool = Form(False),
    priority: str = Form("accuracy"),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> EvaluationAccepted:
    if not limiter.check(subject_id, RATE_LIMITED_RESOURCE):
        retry_after = max(1, math.ceil(limiter.retry_after(subject_id, RATE_LIMITED_RESOURCE)))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    image_bytes = await image.read()
    request = EvaluationRequest(
        subject_id=subject_id,
        question_id=question_id,
        image_bytes=image_bytes,
        filename=safe_filename(image.filename or "answer"),
        content_type=image.content_type or "",
        options=EvaluationOptions(
            preferred_provider=(preferred_provider or "").strip().lower() or None,
            enhance_image=enhance_image,
            priority=priority,
        ),
    )
    try:
        evaluation_id = await pipeline.submit(request)
    except SubmissionValidationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return EvaluationAccepted(evaluation_id=evaluation_id)


@router.get("/{evaluation_id}", response_model=EvaluationRead)
def get_evaluation(evaluation_id: str, session: Session = Depends(get_session)) -> EvaluationRead:
    evaluation = session.get(Evaluation, evaluation_id)
    if not evaluation:
        raise HTTPException(status_code=404, detail="Evaluation not found")
    return EvaluationRead.from_model(evaluation)


@router.get("/{evaluation_id}/progress", response_model=EvaluationProgressRead)
def get_evaluation_progress(
    evaluation_id: str,
    session: Session = Depends(get_session),
    board: ProgressBoard = Depends(get_progress_board),
) -> EvaluationProgressRead:
    evaluation = session.get(Evaluation, evaluation_id)
    if not evaluation:
        raise HTTPException(status_code=404, detail="Evaluation not found")

    events = board.events(evaluation_id)
    percent = events[-1].percent if events else 0
    if evaluation.status == EvaluationStatus.COMPLETED:
        percent = 100
    return EvaluationProgressRead(
        evaluation_id=evaluation_id,
        status=evaluation.status,
        stage=evaluation.stage,
        percent=percent,
        events=[
            ProgressEventRead(
                stage=event.stage.value,
                percent=event.percent,
                message=event.message,
                eta_seconds=event.eta_seconds,
            )
            for event in events
        ],
    )


@router.post("/{evaluation_id}/cancel", response_model=EvaluationRead)
def cancel_evaluation(evaluation_id: str, store: EvaluationStore = Depends(get_evaluation_store)) -> EvaluationRead:
    evaluation = store.get(evaluation_id)
    if not evaluation:
        raise HTTPException(status_code=404, detail="Evaluation not found")
    if evaluation.status in TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"Evaluation is already {evaluation.status.value}")

    cancelled = store.cancel(evaluation_id)
    if cancelled is None or cancelled.status != EvaluationStatus.CANCELLED:
        raise HTTPException(status_code=409, detail="Evaluation finished before it could be cancelled")
    return EvaluationRead.from_model(cancelled)
