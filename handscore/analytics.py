"""Per-subject evaluation history, analytics and usage."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlmodel import Session, select

from handscore.models import Evaluation, EvaluationStatus, UsageStats, utcnow
from handscore.schemas import ScorePoint, SubjectAnalyticsRead

AREAS = ("content", "structure", "handwriting")


def area_averages(evaluations: Sequence[Evaluation]) -> dict[str, float]:
    if not evaluations:
        return {area: 0.0 for area in AREAS}
    return {
        area: sum(getattr(evaluation, f"{area}_score") or 0 for evaluation in evaluations) / len(evaluations)
        for area in AREAS
    }


def strongest_areas(evaluations: Sequence[Evaluation]) -> list[str]:
    averages = area_averages(evaluations)
    return sorted(AREAS, key=lambda area: averages[area], reverse=True)


def improvement_areas(evaluations: Sequence[Evaluation], limit: int = 2) -> list[str]:
    averages = area_averages(evaluations)
    return sorted(AREAS, key=lambda area: averages[area])[:limit]


def subject_history(session: Session, subject_id: str, limit: int = 10) -> list[Evaluation]:
    statement = (
        select(Evaluation)
        .where(Evaluation.subject_id == subject_id)
        .order_by(Evaluation.created_at.desc())
        .limit(limit)
    )
    return list(session.exec(statement).all())


def recent_completed(session: Session, subject_id: str, limit: int = 5, exclude_id: str | None = None) -> list[Evaluation]:
    statement = select(Evaluation).where(
        Evaluation.subject_id == subject_id,
        Evaluation.status == EvaluationStatus.COMPLETED,
    )
    if exclude_id:
        statement = statement.where(Evaluation.id != exclude_id)
    statement = statement.order_by(Evaluation.completed_at.desc()).limit(limit)
    return list(session.exec(statement).all())


def subject_analytics(
    session: Session,
    subject_id: str,
    days: int = 30,
    now: datetime | None = None,
) -> SubjectAnalyticsRead:
    since = (now or utcnow()) - timedelta(days=days)
    evaluations = list(
        session.exec(
            select(Evaluation)
            .where(
                Evaluation.subject_id == subject_id,
                Evaluation.status == EvaluationStatus.COMPLETED,
                Evaluation.created_at >= since,
            )
            .order_by(Evaluation.created_at.asc())
        ).all()
    )
    total = len(evaluations)
    average = sum(evaluation.overall_score or 0 for evaluation in evaluations) / total if total else 0.0
    return SubjectAnalyticsRead(
        subject_id=subject_id,
        days=days,
        total_evaluations=total,
        average_score=round(average, 2),
        progress_trend=[ScorePoint(created_at=evaluation.created_at, score=evaluation.overall_score) for evaluation in evaluations],
        strongest_areas=strongest_areas(evaluations),
        improvement_areas=improvement_areas(evaluations),
    )


def usage_history(session: Session, subject_id: str, days: int = 30, now: datetime | None = None) -> list[UsageStats]:
    since = ((now or utcnow()) - timedelta(days=days)).date()
    statement = (
        select(UsageStats)
        .where(UsageStats.subject_id == subject_id, UsageStats.day >= since)
        .order_by(UsageStats.day.asc())
    )
    return list(session.exec(statement).all())
