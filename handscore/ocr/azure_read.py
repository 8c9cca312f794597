"""Azure Document Intelligence ``prebuilt-read`` provider."""

from __future__ import annotations

from handscore.ocr.base import MB, BaseOCRProvider, OCROptions, OCRResult, ProviderDescriptor, WordBox, normalize_confidence
from handscore.settings import settings


class AzureReadProvider(BaseOCRProvider):
    name = "azure-read"
    error_code = "AZURE_OCR_ERROR"
    supported_languages = ("en", "hi", "ar", "zh-hans", "zh-hant", "cs", "da", "nl", "fi", "fr", "de")
    max_payload_bytes = 50 * MB

    def __init__(self, descriptor: ProviderDescriptor | None = None) -> None:
        super().__init__(descriptor)
        endpoint = (settings.azure_document_endpoint or "").strip()
        key = (settings.azure_document_key or "").strip()
        if not endpoint or not key:
            raise RuntimeError("Azure OCR requires AZURE_DOCUMENT_ENDPOINT and AZURE_DOCUMENT_KEY")
        try:
            from azure.ai.formrecognizer import DocumentAnalysisClient  # type: ignore
            from azure.core.credentials import AzureKeyCredential  # type: ignore
        except Exception as exc:  # noqa: BLE001
            raise RuntimeError(
                "azure-ai-formrecognizer is not installed. Install with `pip install azure-ai-formrecognizer`."
            ) from exc
        self._client = DocumentAnalysisClient(endpoint=endpoint, credential=AzureKeyCredential(key))

    def _recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        kwargs = {"locale": options.language} if options.language else {}
        poller = self._client.begin_analyze_document("prebuilt-read", document=image_bytes, **kwargs)
        result = poller.result()

        lines: list[str] = []
        boxes: list[WordBox] = []
        for page in result.pages or []:
            lines.extend(line.content for line in page.lines or [])
            for word in page.words or []:
                polygon = list(word.polygon or [])
                xs = [point.x for point in polygon] or [0.0]
                ys = [point.y for point in polygon] or [0.0]
                boxes.append(
                    WordBox(
                        text=word.content,
                        confidence=normalize_confidence(word.confidence),
                        x=float(min(xs)),
                        y=float(min(ys)),
                        width=float(max(xs) - min(xs)),
                        height=float(max(ys) - min(ys)),
                    )
                )

        confidence = sum(box.confidence for box in boxes) / len(boxes) if boxes else 0.0
        languages = getattr(result, "languages", None) or []
        return OCRResult(
            text="\n".join(lines),
            confidence=normalize_confidence(confidence),
            provider=self.name,
            detected_language=languages[0].locale if languages else None,
            bounding_boxes=boxes,
        )
