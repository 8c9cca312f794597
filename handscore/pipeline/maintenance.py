"""Periodic sweeps: deferred blob cleanup and orphaned-job recovery.

Both sweeps work only from persisted state, so anything scheduled before a
restart is picked up by the next sweep after it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlmodel import select

from handscore import db
from handscore.models import Evaluation, EvaluationStatus, ScheduledCleanup, utcnow
from handscore.settings import Settings, settings
from handscore.storage_provider import StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    cleaned: int = 0
    cleanup_errors: int = 0
    recovered: int = 0


def _load_due_cleanups(now: datetime, limit: int) -> list[ScheduledCleanup]:
    with db.open_session() as session:
        return list(
            session.exec(
                select(ScheduledCleanup)
                .where(ScheduledCleanup.done == False, ScheduledCleanup.due_at <= now)  # noqa: E712
                .order_by(ScheduledCleanup.due_at)
                .limit(limit)
            ).all()
        )


def _record_cleanup_outcomes(outcomes: dict[int, str | None]) -> None:
    """Persist one sweep's results; a ``None`` error marks the cleanup done."""
    with db.open_session() as session:
        for cleanup_id, error in outcomes.items():
            cleanup = session.get(ScheduledCleanup, cleanup_id)
            if cleanup is None:
                continue
            cleanup.attempts += 1
            if error is None:
                cleanup.done = True
            else:
                cleanup.last_error = error
            session.add(cleanup)
        session.commit()


async def run_due_cleanups(storage: StorageProvider, now: datetime | None = None, limit: int = 100) -> tuple[int, int]:
    """Delete blobs whose cleanup is due; returns (deleted, failed)."""
    due = await asyncio.to_thread(_load_due_cleanups, now or utcnow(), limit)

    outcomes: dict[int, str | None] = {}
    for cleanup in due:
        try:
            await storage.delete(cleanup.storage_key)
        except Exception as exc:  # noqa: BLE001
            outcomes[cleanup.id] = str(exc)
            logger.warning(
                "scheduled cleanup failed, will retry",
                extra={"evaluation_id": cleanup.evaluation_id, "key": cleanup.storage_key, "error": str(exc)},
            )
        else:
            outcomes[cleanup.id] = None

    if outcomes:
        await asyncio.to_thread(_record_cleanup_outcomes, outcomes)
    deleted = sum(1 for error in outcomes.values() if error is None)
    failed = len(outcomes) - deleted
    if outcomes:
        logger.info("cleanup sweep finished", extra={"deleted": deleted, "failed": failed})
    return deleted, failed


def recover_orphaned_evaluations(grace_seconds: int, now: datetime | None = None) -> list[str]:
    """Fail PROCESSING jobs whose last checkpoint is older than the grace period."""
    cutoff = (now or utcnow()) - timedelta(seconds=grace_seconds)
    with db.open_session() as session:
        stale = session.exec(
            select(Evaluation).where(
                Evaluation.status == EvaluationStatus.PROCESSING,
                Evaluation.updated_at < cutoff,
            )
        ).all()

        recovered: list[str] = []
        for evaluation in stale:
            evaluation.status = EvaluationStatus.FAILED
            evaluation.error_message = f"Evaluation interrupted during stage '{evaluation.stage}' and was not resumed"
            evaluation.updated_at = utcnow()
            session.add(evaluation)
            recovered.append(evaluation.id)
        session.commit()

    for evaluation_id in recovered:
        logger.warning("orphaned evaluation failed by recovery sweep", extra={"evaluation_id": evaluation_id})
    return recovered


async def run_maintenance_once(
    storage: StorageProvider | None = None,
    config: Settings | None = None,
    now: datetime | None = None,
) -> SweepResult:
    config = config or settings
    storage = storage or get_storage_provider()
    recovered = await asyncio.to_thread(recover_orphaned_evaluations, config.orphan_grace_seconds, now)
    deleted, failed = await run_due_cleanups(storage, now=now)
    return SweepResult(cleaned=deleted, cleanup_errors=failed, recovered=len(recovered))


async def maintenance_loop(config: Settings | None = None) -> None:
    config = config or settings
    while True:
        try:
            await run_maintenance_once(config=config)
        except Exception:  # noqa: BLE001
            logger.exception("maintenance sweep failed")
        await asyncio.sleep(config.maintenance_interval_seconds)
