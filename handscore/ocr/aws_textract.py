"""AWS Textract synchronous text detection provider."""

from __future__ import annotations

from handscore.ocr.base import MB, BaseOCRProvider, OCROptions, OCRResult, ProviderDescriptor, WordBox, normalize_confidence
from handscore.settings import settings

# Textract reports confidence as a percentage.
_TEXTRACT_SCALE = 100.0


class AWSTextractProvider(BaseOCRProvider):
    name = "aws-textract"
    error_code = "AWS_TEXTRACT_ERROR"
    supported_languages = ("en",)
    max_payload_bytes = 10 * MB

    def __init__(self, descriptor: ProviderDescriptor | None = None) -> None:
        super().__init__(descriptor)
        region = (settings.aws_region or "").strip()
        if not region:
            raise RuntimeError("AWS Textract requires AWS_REGION")
        import boto3
        from botocore.exceptions import BotoCoreError

        try:
            self._client = boto3.client("textract", region_name=region)
        except BotoCoreError as exc:
            raise RuntimeError(f"AWS Textract client could not be created: {exc}") from exc

    def _recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        del options
        response = self._client.detect_document_text(Document={"Bytes": image_bytes})
        blocks = response.get("Blocks", [])

        lines = [block.get("Text", "") for block in blocks if block.get("BlockType") == "LINE"]
        boxes: list[WordBox] = []
        for block in blocks:
            if block.get("BlockType") != "WORD":
                continue
            geometry = block.get("Geometry", {}).get("BoundingBox", {})
            boxes.append(
                WordBox(
                    text=block.get("Text", ""),
                    confidence=normalize_confidence(block.get("Confidence"), _TEXTRACT_SCALE),
                    x=float(geometry.get("Left", 0.0)),
                    y=float(geometry.get("Top", 0.0)),
                    width=float(geometry.get("Width", 0.0)),
                    height=float(geometry.get("Height", 0.0)),
                )
            )

        confidence = sum(box.confidence for box in boxes) / len(boxes) if boxes else 0.0
        return OCRResult(
            text="\n".join(lines),
            confidence=normalize_confidence(confidence),
            provider=self.name,
            bounding_boxes=boxes,
            raw={"document_pages": response.get("DocumentMetadata", {}).get("Pages")},
        )
