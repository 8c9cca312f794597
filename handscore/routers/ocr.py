"""OCR provider introspection."""

from fastapi import APIRouter, Depends, Query

from handscore.pipeline.evaluation import EvaluationPipeline, get_evaluation_pipeline
from handscore.schemas import OCRProviderRead

router = APIRouter(prefix="/ocr", tags=["ocr"])


@router.get("/providers", response_model=list[OCRProviderRead])
def list_providers(pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline)) -> list[OCRProviderRead]:
    return [OCRProviderRead(**stats) for stats in pipeline.orchestrator.provider_stats()]


@router.get("/providers/best")
def best_provider(
    language: str = Query("en", min_length=2),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
) -> dict[str, str | None]:
    return {"language": language, "provider": pipeline.orchestrator.best_provider_for_language(language)}
