"""Application settings loaded from environment variables."""

from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_LOCAL_DATA_DIR = BASE_DIR / "data"

DEFAULT_OCR_PROVIDERS = "google-vision,azure-read,aws-textract,tesseract"


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Runtime configuration for the HandScore backend."""

    model_config = SettingsConfigDict(env_prefix="HANDSCORE_", extra="ignore")

    app_name: str = "HandScore API"
    log_level: str = "INFO"
    data_dir: str = Field(
        default=str(DEFAULT_LOCAL_DATA_DIR),
        validation_alias=AliasChoices("HANDSCORE_DATA_DIR", "DATA_DIR"),
    )
    sqlite_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HANDSCORE_SQLITE_PATH", "SQLITE_PATH"),
    )

    # Submission validation
    max_upload_mb: int = 10
    allowed_content_types: str = "image/png,image/jpeg"

    # OCR orchestration
    ocr_providers: str = DEFAULT_OCR_PROVIDERS
    ocr_provider_config: str | None = None
    ocr_min_confidence: float = Field(default=0.7, ge=0, le=1)
    ocr_timeout_seconds: float = Field(default=30.0, gt=0)
    ocr_language: str = "en"

    # Pipeline
    enhance_quality_threshold: float = 70.0
    scoring_backend: str = "llm"
    openai_model: str = "gpt-4o-mini"
    cleanup_delay_seconds: int = 24 * 60 * 60
    maintenance_interval_seconds: float = 300.0
    orphan_grace_seconds: int = 900
    persist_retry_backoffs: str = "0.2,0.5,1.0"

    # Rate limiting
    rate_limit_max_requests: int = 20
    rate_limit_window_seconds: float = 3600.0

    # Blob storage
    storage_backend: str = "local"
    s3_bucket: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_public_base_url: str | None = None

    # Provider credentials
    azure_document_endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HANDSCORE_AZURE_DOCUMENT_ENDPOINT", "AZURE_DOCUMENT_ENDPOINT"),
    )
    azure_document_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HANDSCORE_AZURE_DOCUMENT_KEY", "AZURE_DOCUMENT_KEY"),
    )
    aws_region: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HANDSCORE_AWS_REGION", "AWS_REGION"),
    )

    # CORS configuration
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("HANDSCORE_CORS_ALLOW_ORIGINS", "CORS_ALLOW_ORIGINS"),
    )

    @model_validator(mode="after")
    def _set_sqlite_path(self) -> "Settings":
        if not self.sqlite_path:
            self.sqlite_path = str(Path(self.data_dir) / "handscore.db")
        return self

    @property
    def sqlite_url(self) -> str:
        return f"sqlite:///{self.sqlite_path}"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def allowed_content_type_set(self) -> set[str]:
        return {item.lower() for item in _split_csv(self.allowed_content_types)}

    @property
    def ocr_provider_names(self) -> list[str]:
        return [name.lower() for name in _split_csv(self.ocr_providers)]

    @property
    def persist_backoff_schedule(self) -> tuple[float, ...]:
        return tuple(float(item) for item in _split_csv(self.persist_retry_backoffs))

    @property
    def cors_origin_list(self) -> list[str]:
        if self.cors_allow_origins.strip() == "*":
            return ["*"]
        return _split_csv(self.cors_allow_origins)


settings = Settings()
