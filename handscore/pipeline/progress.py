"""Stage-boundary progress reporting for evaluation runs."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class EvaluationStage(str, Enum):
    CREATED = "created"
    UPLOADING = "uploading"
    ASSESSING_IMAGE = "assessing_image"
    ENHANCING_IMAGE = "enhancing_image"
    EXTRACTING_TEXT = "extracting_text"
    ANALYZING_CONTENT = "analyzing_content"
    ANALYZING_STRUCTURE = "analyzing_structure"
    ANALYZING_HANDWRITING = "analyzing_handwriting"
    GENERATING_FEEDBACK = "generating_feedback"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


STAGE_PERCENT: dict[EvaluationStage, int] = {
    EvaluationStage.CREATED: 0,
    EvaluationStage.UPLOADING: 5,
    EvaluationStage.ASSESSING_IMAGE: 10,
    EvaluationStage.ENHANCING_IMAGE: 15,
    EvaluationStage.EXTRACTING_TEXT: 25,
    EvaluationStage.ANALYZING_CONTENT: 55,
    EvaluationStage.ANALYZING_STRUCTURE: 65,
    EvaluationStage.ANALYZING_HANDWRITING: 75,
    EvaluationStage.GENERATING_FEEDBACK: 85,
    EvaluationStage.PERSISTING: 95,
    EvaluationStage.COMPLETED: 100,
}
TEXT_EXTRACTED_PERCENT = 50


@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    stage: EvaluationStage
    percent: int
    message: str
    eta_seconds: float | None = None

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["stage"] = self.stage.value
        return payload


ProgressSink = Callable[[ProgressEvent], None]


class ProgressTracker:
    """Delivers job-scoped events whose percent never decreases within one run."""

    def __init__(
        self,
        job_id: str,
        sinks: list[ProgressSink] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.job_id = job_id
        self._sinks = [sink for sink in (sinks or []) if sink is not None]
        self._clock = clock
        self._started = clock()
        self.percent = 0
        self.stage = EvaluationStage.CREATED

    def _eta(self, percent: int) -> float | None:
        if percent <= 0 or percent >= 100:
            return None
        elapsed = self._clock() - self._started
        return round(elapsed / percent * (100 - percent), 1)

    def emit(self, stage: EvaluationStage, message: str, percent: int | None = None) -> ProgressEvent:
        requested = STAGE_PERCENT.get(stage, self.percent) if percent is None else percent
        self.percent = max(self.percent, min(100, max(0, requested)))
        self.stage = stage
        event = ProgressEvent(
            job_id=self.job_id,
            stage=stage,
            percent=self.percent,
            message=message,
            eta_seconds=self._eta(self.percent),
        )
        for sink in self._sinks:
            try:
                sink(event)
            except Exception:  # noqa: BLE001
                logger.exception("progress sink failed", extra={"evaluation_id": self.job_id, "stage": stage.value})
        return event


class ProgressBoard:
    """Most recent progress events per job, kept in memory for status polling."""

    def __init__(self, max_jobs: int = 1000) -> None:
        self.max_jobs = max_jobs
        self._events: OrderedDict[str, list[ProgressEvent]] = OrderedDict()
        self._lock = threading.Lock()

    def record(self, event: ProgressEvent) -> None:
        with self._lock:
            events = self._events.setdefault(event.job_id, [])
            events.append(event)
            self._events.move_to_end(event.job_id)
            while len(self._events) > self.max_jobs:
                self._events.popitem(last=False)

    def events(self, job_id: str) -> list[ProgressEvent]:
        with self._lock:
            return list(self._events.get(job_id, []))

    def latest(self, job_id: str) -> ProgressEvent | None:
        events = self.events(job_id)
        return events[-1] if events else None


_board: ProgressBoard | None = None


def get_progress_board() -> ProgressBoard:
    global _board
    if _board is None:
        _board = ProgressBoard()
    return _board


def reset_progress_board() -> None:
    global _board
    _board = None
