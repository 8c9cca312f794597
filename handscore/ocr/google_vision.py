"""Google Cloud Vision document text detection provider."""

from __future__ import annotations

from handscore.ocr.base import MB, BaseOCRProvider, OCROptions, OCRResult, ProviderDescriptor, WordBox, normalize_confidence


class GoogleVisionProvider(BaseOCRProvider):
    name = "google-vision"
    error_code = "GOOGLE_VISION_ERROR"
    supported_languages = ("en", "hi", "ta", "te", "kn", "ml", "gu", "bn", "pa", "or", "as", "mr")
    max_payload_bytes = 20 * MB

    def __init__(self, descriptor: ProviderDescriptor | None = None) -> None:
        super().__init__(descriptor)
        try:
            from google.cloud import vision  # type: ignore
        except Exception as exc:  # noqa: BLE001
            raise RuntimeError(
                "google-cloud-vision is not installed. Install with `pip install google-cloud-vision`."
            ) from exc
        try:
            self._client = vision.ImageAnnotatorClient()
        except Exception as exc:  # noqa: BLE001
            raise RuntimeError(f"Google Vision client could not be created: {exc}") from exc
        self._vision = vision

    def _recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        hints = [options.language] if options.language else ["en", "hi"]
        response = self._client.document_text_detection(
            image=self._vision.Image(content=image_bytes),
            image_context={"language_hints": hints},
        )
        if getattr(response, "error", None) and response.error.message:
            raise RuntimeError(response.error.message)

        annotations = list(response.text_annotations or [])
        full_text = annotations[0].description if annotations else ""
        locale = annotations[0].locale if annotations else None

        boxes: list[WordBox] = []
        for page in response.full_text_annotation.pages:
            for block in page.blocks:
                for paragraph in block.paragraphs:
                    for word in paragraph.words:
                        vertices = list(word.bounding_box.vertices)
                        left = vertices[0].x if vertices else 0
                        top = vertices[0].y if vertices else 0
                        right = vertices[2].x if len(vertices) > 2 else left
                        bottom = vertices[2].y if len(vertices) > 2 else top
                        boxes.append(
                            WordBox(
                                text="".join(symbol.text for symbol in word.symbols),
                                confidence=normalize_confidence(word.confidence),
                                x=float(left),
                                y=float(top),
                                width=float(right - left),
                                height=float(bottom - top),
                            )
                        )

        confidence = sum(box.confidence for box in boxes) / len(boxes) if boxes else 0.0
        return OCRResult(
            text=full_text,
            confidence=normalize_confidence(confidence),
            provider=self.name,
            detected_language=locale or None,
            bounding_boxes=boxes,
        )
