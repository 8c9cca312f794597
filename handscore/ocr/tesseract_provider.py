"""Local Tesseract provider, usable without network access."""

from __future__ import annotations

import io

from PIL import Image

from handscore.ocr.base import MB, BaseOCRProvider, OCROptions, OCRResult, ProviderDescriptor, WordBox, normalize_confidence

_TESSERACT_SCALE = 100.0

TESSERACT_LANGUAGE_CODES = {
    "en": "eng",
    "hi": "hin",
    "ta": "tam",
    "te": "tel",
    "kn": "kan",
    "ml": "mal",
    "gu": "guj",
    "bn": "ben",
    "pa": "pan",
    "or": "ori",
    "as": "asm",
    "mr": "mar",
}


def tesseract_language(language: str | None) -> str:
    if not language:
        return "eng+hin"
    return TESSERACT_LANGUAGE_CODES.get(language.lower(), language)


class TesseractProvider(BaseOCRProvider):
    name = "tesseract"
    error_code = "TESSERACT_ERROR"
    supported_languages = tuple(TESSERACT_LANGUAGE_CODES)
    max_payload_bytes = 10 * MB

    def __init__(self, descriptor: ProviderDescriptor | None = None) -> None:
        super().__init__(descriptor)
        try:
            import pytesseract  # type: ignore
        except Exception as exc:  # noqa: BLE001
            raise RuntimeError("pytesseract is not installed. Install with `pip install pytesseract`.") from exc
        self._pytesseract = pytesseract

    def _recognize(self, image_bytes: bytes, options: OCROptions) -> OCRResult:
        with Image.open(io.BytesIO(image_bytes)) as image:
            data = self._pytesseract.image_to_data(
                image,
                lang=tesseract_language(options.language),
                output_type=self._pytesseract.Output.DICT,
            )

        boxes: list[WordBox] = []
        lines: dict[tuple[int, int, int], list[str]] = {}
        for idx, word in enumerate(data.get("text", [])):
            conf = float(data["conf"][idx])
            # -1 marks layout rows (blocks, lines) rather than words.
            if conf < 0 or not str(word).strip():
                continue
            boxes.append(
                WordBox(
                    text=str(word),
                    confidence=normalize_confidence(conf, _TESSERACT_SCALE),
                    x=float(data["left"][idx]),
                    y=float(data["top"][idx]),
                    width=float(data["width"][idx]),
                    height=float(data["height"][idx]),
                )
            )
            line_key = (int(data["block_num"][idx]), int(data["par_num"][idx]), int(data["line_num"][idx]))
            lines.setdefault(line_key, []).append(str(word))

        text = "\n".join(" ".join(words) for words in lines.values())
        confidence = sum(box.confidence for box in boxes) / len(boxes) if boxes else 0.0
        return OCRResult(
            text=text,
            confidence=normalize_confidence(confidence),
            provider=self.name,
            detected_language=options.language,
            bounding_boxes=boxes,
        )
