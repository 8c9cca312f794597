"""Per-subject history, analytics and usage endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from handscore.analytics import subject_analytics, subject_history, usage_history
from handscore.db import get_session
from handscore.schemas import EvaluationSummary, SubjectAnalyticsRead, UsageRead

router = APIRouter(prefix="/subjects", tags=["subjects"])


@router.get("/{subject_id}/evaluations", response_model=list[EvaluationSummary])
def list_subject_evaluations(
    subject_id: str,
    limit: int = Query(10, ge=1, le=100),
    session: Session = Depends(get_session),
) -> list[EvaluationSummary]:
    return [
        EvaluationSummary(
            id=evaluation.id,
            question_id=evaluation.question_id,
            status=evaluation.status,
            overall_score=evaluation.overall_score,
            grade=evaluation.grade,
            created_at=evaluation.created_at,
            completed_at=evaluation.completed_at,
        )
        for evaluation in subject_history(session, subject_id, limit=limit)
    ]


@router.get("/{subject_id}/analytics", response_model=SubjectAnalyticsRead)
def get_subject_analytics(
    subject_id: str,
    days: int = Query(30, ge=1, le=365),
    session: Session = Depends(get_session),
) -> SubjectAnalyticsRead:
    return subject_analytics(session, subject_id, days=days)


@router.get("/{subject_id}/usage", response_model=list[UsageRead])
def get_subject_usage(
    subject_id: str,
    days: int = Query(30, ge=1, le=365),
    session: Session = Depends(get_session),
) -> list[UsageRead]:
    return [UsageRead(day=row.day, evaluations_count=row.evaluations_count) for row in usage_history(session, subject_id, days=days)]
