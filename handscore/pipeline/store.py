"""Job-record persistence for evaluation runs.

Every write is a short transaction retried with backoff on database errors.
Writes made on behalf of a run only apply while the job is still PROCESSING,
so a job that was cancelled or failed elsewhere is never resurrected.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from handscore import db
from handscore.analytics import improvement_areas, recent_completed
from handscore.grading.base import QuestionContext, SubjectProfile
from handscore.models import (
    Evaluation,
    EvaluationStatus,
    Question,
    ScheduledCleanup,
    TERMINAL_STATUSES,
    UsageStats,
    utcnow,
)
from handscore.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROFILE_HISTORY_SIZE = 5


class PersistenceError(Exception):
    """A job-record write kept failing after every retry."""


class EvaluationCancelled(Exception):
    """The job left PROCESSING outside this run (user cancel or recovery sweep)."""

    def __init__(self, evaluation_id: str, status: EvaluationStatus) -> None:
        super().__init__(f"Evaluation {evaluation_id} is {status.value}")
        self.evaluation_id = evaluation_id
        self.status = status


def question_context(question: Question) -> QuestionContext:
    keywords = json.loads(question.keywords_json or "[]")
    return QuestionContext(
        content=question.content,
        subject=question.subject,
        marks=question.marks or 15,
        keywords=[str(keyword) for keyword in keywords],
    )


class EvaluationStore:
    def __init__(
        self,
        retry_backoffs_seconds: Iterable[float] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retry_backoffs_seconds is None:
            retry_backoffs_seconds = settings.persist_backoff_schedule
        self._backoffs = tuple(retry_backoffs_seconds)
        self._sleep = sleep

    def _with_retry(self, operation: str, evaluation_id: str | None, fn: Callable[[Session], T]) -> T:
        attempts = len(self._backoffs) + 1
        for attempt in range(attempts):
            try:
                with db.open_session() as session:
                    return fn(session)
            except SQLAlchemyError as exc:
                if attempt >= attempts - 1:
                    raise PersistenceError(f"{operation} failed after {attempts} attempts: {exc}") from exc
                logger.warning(
                    "job record write failed, retrying",
                    extra={"evaluation_id": evaluation_id, "operation": operation, "attempt": attempt + 1, "error": str(exc)},
                )
                self._sleep(self._backoffs[attempt])
        raise PersistenceError(f"{operation} failed")

    @staticmethod
    def _processing(session: Session, evaluation_id: str) -> Evaluation:
        evaluation = session.get(Evaluation, evaluation_id)
        if evaluation is None:
            raise PersistenceError(f"Evaluation {evaluation_id} not found")
        if evaluation.status != EvaluationStatus.PROCESSING:
            raise EvaluationCancelled(evaluation_id, evaluation.status)
        return evaluation

    def create(self, subject_id: str, question_id: int, filename: str, priority: str = "accuracy") -> Evaluation:
        def _create(session: Session) -> Evaluation:
            evaluation = Evaluation(
                subject_id=subject_id,
                question_id=question_id,
                original_filename=filename,
                priority=priority,
            )
            session.add(evaluation)
            session.commit()
            session.refresh(evaluation)
            return evaluation

        return self._with_retry("create", None, _create)

    def get(self, evaluation_id: str) -> Evaluation | None:
        return self._with_retry("get", evaluation_id, lambda session: session.get(Evaluation, evaluation_id))

    def load_question(self, question_id: int) -> Question | None:
        return self._with_retry("load_question", None, lambda session: session.get(Question, question_id))

    def checkpoint_sync(self, evaluation_id: str, stage: str, **fields: Any) -> None:
        def _update(session: Session) -> None:
            evaluation = self._processing(session, evaluation_id)
            for name, value in fields.items():
                setattr(evaluation, name, value)
            evaluation.stage = stage
            evaluation.updated_at = utcnow()
            session.add(evaluation)
            session.commit()

        self._with_retry(f"checkpoint:{stage}", evaluation_id, _update)

    async def checkpoint(self, evaluation_id: str, stage: str, **fields: Any) -> None:
        """Record the stage reached plus any fields it produced."""
        await asyncio.to_thread(self.checkpoint_sync, evaluation_id, stage, **fields)

    def complete_sync(
        self,
        evaluation_id: str,
        fields: dict[str, Any],
        cleanup_keys: list[str],
        cleanup_delay_seconds: int,
    ) -> None:
        def _complete(session: Session) -> None:
            evaluation = self._processing(session, evaluation_id)
            now = utcnow()
            for name, value in fields.items():
                setattr(evaluation, name, value)
            evaluation.status = EvaluationStatus.COMPLETED
            evaluation.stage = "completed"
            evaluation.completed_at = now
            evaluation.updated_at = now
            session.add(evaluation)

            today = now.date()
            usage = session.exec(
                select(UsageStats).where(UsageStats.subject_id == evaluation.subject_id, UsageStats.day == today)
            ).first()
            if usage is None:
                usage = UsageStats(subject_id=evaluation.subject_id, day=today, evaluations_count=0)
            usage.evaluations_count += 1
            session.add(usage)

            due_at = now + timedelta(seconds=cleanup_delay_seconds)
            for key in cleanup_keys:
                session.add(ScheduledCleanup(evaluation_id=evaluation_id, storage_key=key, due_at=due_at))
            session.commit()

        self._with_retry("complete", evaluation_id, _complete)

    async def complete(
        self,
        evaluation_id: str,
        fields: dict[str, Any],
        cleanup_keys: list[str],
        cleanup_delay_seconds: int,
    ) -> None:
        """Write the final results, usage count and deferred cleanups in one transaction."""
        await asyncio.to_thread(self.complete_sync, evaluation_id, fields, cleanup_keys, cleanup_delay_seconds)

    def fail_sync(self, evaluation_id: str, message: str) -> bool:
        def _fail(session: Session) -> bool:
            evaluation = session.get(Evaluation, evaluation_id)
            if evaluation is None or evaluation.status != EvaluationStatus.PROCESSING:
                return False
            evaluation.status = EvaluationStatus.FAILED
            evaluation.error_message = message or "Unknown error occurred"
            evaluation.updated_at = utcnow()
            session.add(evaluation)
            session.commit()
            return True

        return self._with_retry("fail", evaluation_id, _fail)

    async def fail(self, evaluation_id: str, message: str) -> bool:
        return await asyncio.to_thread(self.fail_sync, evaluation_id, message)

    def cancel(self, evaluation_id: str) -> Evaluation | None:
        """Move a PROCESSING job to CANCELLED; terminal jobs are returned unchanged."""

        def _cancel(session: Session) -> Evaluation | None:
            evaluation = session.get(Evaluation, evaluation_id)
            if evaluation is None or evaluation.status in TERMINAL_STATUSES:
                return evaluation
            evaluation.status = EvaluationStatus.CANCELLED
            evaluation.stage = "cancelled"
            evaluation.updated_at = utcnow()
            session.add(evaluation)
            session.commit()
            session.refresh(evaluation)
            return evaluation

        return self._with_retry("cancel", evaluation_id, _cancel)

    def subject_profile(self, subject_id: str, exclude_id: str | None = None) -> SubjectProfile:
        def _profile(session: Session) -> SubjectProfile:
            evaluations = recent_completed(session, subject_id, limit=PROFILE_HISTORY_SIZE, exclude_id=exclude_id)
            return SubjectProfile(
                previous_scores=[evaluation.overall_score for evaluation in evaluations if evaluation.overall_score is not None],
                weak_areas=improvement_areas(evaluations) if evaluations else [],
            )

        return self._with_retry("subject_profile", exclude_id, _profile)


def get_evaluation_store() -> EvaluationStore:
    return EvaluationStore()
