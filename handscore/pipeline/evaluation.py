"""Evaluation pipeline: one job id, many stages, run detached from the caller.

``submit`` validates the upload, creates the job record and returns its id
immediately. The remaining stages run in a background task that checkpoints
each stage on the job record, reports progress at every stage boundary and
ends in exactly one terminal status. Any error escaping a stage is caught once
in ``run`` and written to the job as FAILED.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from handscore.grading.base import ContentAnalyzer, FeedbackGenerator, GeneratedFeedback, StructureAnalyzer
from handscore.grading.handwriting import analyze_handwriting
from handscore.grading.rule_based import build_fallback_feedback, calculate_grade
from handscore.models import EvaluationStatus, Question
from handscore.ocr.base import OCROptions
from handscore.ocr.orchestrator import OCROrchestrator
from handscore.pipeline.grade import get_content_analyzer, get_feedback_generator, get_structure_analyzer
from handscore.pipeline.image_quality import EnhancementOptions, assess_image_quality, enhance_image, verify_image
from handscore.pipeline.progress import (
    TEXT_EXTRACTED_PERCENT,
    EvaluationStage,
    ProgressBoard,
    ProgressSink,
    ProgressTracker,
    get_progress_board,
)
from handscore.pipeline.store import EvaluationCancelled, EvaluationStore, PersistenceError, question_context
from handscore.pipeline.transcribe import build_ocr_orchestrator
from handscore.settings import Settings, settings
from handscore.storage import evaluation_object_key
from handscore.storage_provider import StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)

PRIORITIES = ("speed", "accuracy")
_IMAGE_FORMATS = {"png", "jpeg"}


class SubmissionValidationError(Exception):
    """Rejected before a job is created; no evaluation id is issued."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class EvaluationOptions:
    preferred_provider: str | None = None
    enhance_image: bool = False
    priority: str = "accuracy"


@dataclass
class EvaluationRequest:
    subject_id: str
    question_id: int
    image_bytes: bytes
    filename: str
    content_type: str = "image/jpeg"
    options: EvaluationOptions = field(default_factory=EvaluationOptions)


class EvaluationPipeline:
    def __init__(
        self,
        orchestrator: OCROrchestrator,
        storage: StorageProvider,
        content_analyzer: ContentAnalyzer,
        structure_analyzer: StructureAnalyzer,
        feedback_generator: FeedbackGenerator,
        store: EvaluationStore | None = None,
        board: ProgressBoard | None = None,
        config: Settings | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.storage = storage
        self.content_analyzer = content_analyzer
        self.structure_analyzer = structure_analyzer
        self.feedback_generator = feedback_generator
        self.config = config or settings
        self.store = store or EvaluationStore(self.config.persist_backoff_schedule)
        self.board = board or get_progress_board()
        self._tasks: set[asyncio.Task] = set()

    def validate(self, request: EvaluationRequest) -> Question:
        if not request.subject_id.strip():
            raise SubmissionValidationError("subject_id is required")
        if request.options.priority not in PRIORITIES:
            raise SubmissionValidationError(f"priority must be one of: {', '.join(PRIORITIES)}")
        if request.content_type.lower() not in self.config.allowed_content_type_set:
            raise SubmissionValidationError(f"Unsupported content type '{request.content_type}'")
        if not request.image_bytes:
            raise SubmissionValidationError("Uploaded image is empty")
        if len(request.image_bytes) > self.config.max_upload_bytes:
            raise SubmissionValidationError(
                f"Image exceeds the {self.config.max_upload_mb}MB upload limit",
                status_code=413,
            )
        try:
            image_format = verify_image(request.image_bytes)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise SubmissionValidationError(f"Uploaded file is not a readable image: {exc}") from exc
        if image_format not in _IMAGE_FORMATS:
            raise SubmissionValidationError(f"Unsupported image format '{image_format}'")

        question = self.store.load_question(request.question_id)
        if question is None:
            raise SubmissionValidationError(f"Question {request.question_id} not found", status_code=404)
        return question

    async def submit(self, request: EvaluationRequest, progress_sink: ProgressSink | None = None) -> str:
        """Create the job and start its detached run; returns the evaluation id."""
        question = await asyncio.to_thread(self.validate, request)
        evaluation = await asyncio.to_thread(
            self.store.create,
            request.subject_id,
            request.question_id,
            request.filename,
            request.options.priority,
        )
        logger.info("evaluation accepted", extra={"evaluation_id": evaluation.id, "subject_id": request.subject_id})

        task = asyncio.create_task(self.run(evaluation.id, request, question, progress_sink))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return evaluation.id

    async def drain(self) -> None:
        """Wait for every detached run started by this pipeline."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def run(
        self,
        evaluation_id: str,
        request: EvaluationRequest,
        question: Question,
        progress_sink: ProgressSink | None = None,
    ) -> None:
        tracker = ProgressTracker(evaluation_id, [self.board.record, progress_sink])
        try:
            await self._process(evaluation_id, request, question, tracker)
        except EvaluationCancelled as exc:
            logger.info("evaluation stopped", extra={"evaluation_id": evaluation_id, "status": exc.status.value})
            stage = EvaluationStage.CANCELLED if exc.status == EvaluationStatus.CANCELLED else EvaluationStage.FAILED
            tracker.emit(stage, f"Evaluation {exc.status.value.lower()}")
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            logger.exception("evaluation failed", extra={"evaluation_id": evaluation_id, "stage": tracker.stage.value})
            recorded = True
            try:
                recorded = await self.store.fail(evaluation_id, message)
            except PersistenceError:
                logger.exception(
                    "could not record evaluation failure; recovery sweep will fail the job",
                    extra={"evaluation_id": evaluation_id},
                )
            if recorded:
                tracker.emit(EvaluationStage.FAILED, message)
            else:
                # The job left PROCESSING concurrently; only a cancel request does that.
                tracker.emit(EvaluationStage.CANCELLED, "Evaluation cancelled")

    async def _enter(self, evaluation_id: str, tracker: ProgressTracker, stage: EvaluationStage, message: str) -> None:
        await self.store.checkpoint(evaluation_id, stage.value)
        tracker.emit(stage, message)

    async def _process(
        self,
        evaluation_id: str,
        request: EvaluationRequest,
        question: Question,
        tracker: ProgressTracker,
    ) -> None:
        started = time.perf_counter()
        cleanup_keys: list[str] = []

        await self._enter(evaluation_id, tracker, EvaluationStage.UPLOADING, "Uploading image...")
        original_key = evaluation_object_key(evaluation_id, "original", request.filename)
        stored = await self.storage.put_bytes(original_key, request.image_bytes, request.content_type)
        cleanup_keys.append(original_key)
        await self.store.checkpoint(
            evaluation_id,
            EvaluationStage.UPLOADING.value,
            original_image_key=original_key,
            original_image_url=stored.url,
        )

        await self._enter(evaluation_id, tracker, EvaluationStage.ASSESSING_IMAGE, "Analyzing image quality...")
        metrics = await asyncio.to_thread(assess_image_quality, request.image_bytes)
        await self.store.checkpoint(
            evaluation_id,
            EvaluationStage.ASSESSING_IMAGE.value,
            image_metadata_json=json.dumps(metrics.as_dict()),
        )

        ocr_bytes = request.image_bytes
        if request.options.enhance_image or metrics.quality_score < self.config.enhance_quality_threshold:
            await self._enter(evaluation_id, tracker, EvaluationStage.ENHANCING_IMAGE, "Enhancing image...")
            ocr_bytes = await asyncio.to_thread(enhance_image, request.image_bytes, EnhancementOptions())
            processed_key = evaluation_object_key(evaluation_id, "processed", f"{Path(request.filename).stem}.jpg")
            processed = await self.storage.put_bytes(processed_key, ocr_bytes, "image/jpeg")
            cleanup_keys.append(processed_key)
            await self.store.checkpoint(
                evaluation_id,
                EvaluationStage.ENHANCING_IMAGE.value,
                processed_image_key=processed_key,
                processed_image_url=processed.url,
            )

        await self._enter(evaluation_id, tracker, EvaluationStage.EXTRACTING_TEXT, "Extracting text from image...")
        ocr = await self.orchestrator.process_image(
            ocr_bytes,
            OCROptions(language=self.config.ocr_language, preferred_provider=request.options.preferred_provider),
        )
        await self.store.checkpoint(
            evaluation_id,
            EvaluationStage.EXTRACTING_TEXT.value,
            extracted_text=ocr.text,
            ocr_provider=ocr.provider,
            ocr_confidence=ocr.confidence,
            ocr_metadata_json=json.dumps(ocr.metadata()),
        )
        tracker.emit(
            EvaluationStage.EXTRACTING_TEXT,
            f"Text extracted using {ocr.provider} ({round(ocr.confidence * 100)}% confidence)",
            percent=TEXT_EXTRACTED_PERCENT,
        )

        context = question_context(question)
        await self._enter(evaluation_id, tracker, EvaluationStage.ANALYZING_CONTENT, "Analyzing content quality...")
        content, structure = await asyncio.gather(
            asyncio.to_thread(self.content_analyzer.analyze_content, ocr.text, context, ocr.confidence),
            asyncio.to_thread(self.structure_analyzer.analyze_structure, ocr.text, ocr.confidence),
        )
        await self.store.checkpoint(
            evaluation_id,
            EvaluationStage.ANALYZING_CONTENT.value,
            content_score=content.overall_content_score,
        )
        await self._enter(evaluation_id, tracker, EvaluationStage.ANALYZING_STRUCTURE, "Analyzing answer structure...")
        await self.store.checkpoint(
            evaluation_id,
            EvaluationStage.ANALYZING_STRUCTURE.value,
            structure_score=structure.overall_structure_score,
        )

        await self._enter(
            evaluation_id, tracker, EvaluationStage.ANALYZING_HANDWRITING, "Analyzing handwriting quality..."
        )
        handwriting = analyze_handwriting(
            ocr.confidence,
            ocr.bounding_boxes,
            metrics.quality_score,
            metrics.sharpness,
            metrics.contrast,
        )
        await self.store.checkpoint(
            evaluation_id,
            EvaluationStage.ANALYZING_HANDWRITING.value,
            handwriting_score=float(handwriting.overall_handwriting_score),
        )

        await self._enter(
            evaluation_id, tracker, EvaluationStage.GENERATING_FEEDBACK, "Generating personalized feedback..."
        )
        profile = await asyncio.to_thread(self.store.subject_profile, request.subject_id, evaluation_id)
        feedback: GeneratedFeedback
        try:
            feedback = await asyncio.to_thread(
                self.feedback_generator.generate_feedback,
                content,
                structure,
                handwriting,
                context,
                profile,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "feedback generation failed, using fallback feedback",
                extra={"evaluation_id": evaluation_id, "error": str(exc)},
            )
            feedback = build_fallback_feedback(content, structure, handwriting)

        await self._enter(evaluation_id, tracker, EvaluationStage.PERSISTING, "Finalizing evaluation...")
        overall = max(0.0, min(100.0, float(feedback.overall_score)))
        analysis = {
            "content": content.model_dump(),
            "structure": structure.model_dump(),
            "handwriting": asdict(handwriting),
            "feedback": {
                "personalized_message": feedback.personalized_message,
                "score_breakdown": feedback.score_breakdown.model_dump(),
                "next_steps": feedback.next_steps,
                "resource_recommendations": feedback.resource_recommendations,
            },
        }
        await self.store.complete(
            evaluation_id,
            {
                "content_score": content.overall_content_score,
                "structure_score": structure.overall_structure_score,
                "handwriting_score": float(handwriting.overall_handwriting_score),
                "overall_score": overall,
                "grade": calculate_grade(overall),
                "analysis_json": json.dumps(analysis),
                "strengths_json": json.dumps(feedback.strengths),
                "improvements_json": json.dumps(feedback.improvements),
                "suggestions_json": json.dumps(feedback.suggestions),
                "detailed_feedback": feedback.detailed_feedback,
                "processing_time_ms": int((time.perf_counter() - started) * 1000),
            },
            cleanup_keys,
            self.config.cleanup_delay_seconds,
        )
        tracker.emit(EvaluationStage.COMPLETED, "Evaluation completed successfully!")
        logger.info(
            "evaluation completed",
            extra={"evaluation_id": evaluation_id, "overall_score": overall, "provider": ocr.provider},
        )


_pipeline: EvaluationPipeline | None = None


def build_evaluation_pipeline(config: Settings | None = None) -> EvaluationPipeline:
    config = config or settings
    return EvaluationPipeline(
        orchestrator=build_ocr_orchestrator(config),
        storage=get_storage_provider(),
        content_analyzer=get_content_analyzer(config.scoring_backend, config.openai_model),
        structure_analyzer=get_structure_analyzer(config.scoring_backend, config.openai_model),
        feedback_generator=get_feedback_generator(config.scoring_backend, config.openai_model),
        config=config,
    )


def get_evaluation_pipeline() -> EvaluationPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_evaluation_pipeline()
    return _pipeline


def reset_evaluation_pipeline() -> None:
    global _pipeline
    _pipeline = None
