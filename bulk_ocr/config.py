"""Runtime configuration for the bulk OCR service.

Values come from the environment (or a local ``.env`` file). The services do
not read the config object directly; `AppConfig.ocr_settings()` and
`AppConfig.processing_settings()` project it into the plain dataclasses the
scheduler and OCR client are constructed with.

Environment variables (defaults in brackets):
 - OCR_PROVIDER [claude], OCR_MODEL
 - CLAUDE_API_KEY / ANTHROPIC_API_KEY, OPENAI_API_KEY
 - OCR_LANGUAGE [arabic], OCR_CONFIDENCE [0.8]
 - OCR_RETRY_ATTEMPTS [3], OCR_RETRY_DELAY_MS [1000], OCR_TEST_MODE [false]
 - CHUNK_SIZE [10], CONCURRENT_CHUNKS [3], MAX_CONCURRENT_JOBS [1]
 - JOB_STORE_BACKEND [memory], JOB_STORE_PATH [data/ocr.db]
 - PAGE_IMAGE_ROOT [data/uploads]
 - MAX_FILE_SIZE [500MB], ALLOWED_FILE_TYPES [.pdf,.jpg,.jpeg,.png]
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bulk_ocr.services.ocr_client import OCRSettings
from bulk_ocr.services.scheduler import ProcessingSettings


def parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class AppConfig(BaseSettings):
    ocr_provider: str = Field('claude', validation_alias='OCR_PROVIDER')
    ocr_model: str | None = Field(None, validation_alias='OCR_MODEL')
    claude_api_key: str | None = Field(
        None,
        validation_alias=AliasChoices('CLAUDE_API_KEY', 'ANTHROPIC_API_KEY'),
    )
    openai_api_key: str | None = Field(None, validation_alias='OPENAI_API_KEY')
    ocr_language: str = Field('arabic', validation_alias='OCR_LANGUAGE')
    ocr_confidence: float = Field(0.8, validation_alias='OCR_CONFIDENCE')
    retry_attempts: int = Field(3, validation_alias='OCR_RETRY_ATTEMPTS')
    retry_delay_ms: int = Field(1000, validation_alias='OCR_RETRY_DELAY_MS')
    test_mode_raw: str | bool | None = Field(False, validation_alias='OCR_TEST_MODE')
    provider_timeout_seconds: float = Field(120.0, validation_alias='OCR_PROVIDER_TIMEOUT')

    chunk_size: int = Field(10, validation_alias='CHUNK_SIZE')
    concurrent_chunks: int = Field(3, validation_alias='CONCURRENT_CHUNKS')
    max_concurrent_jobs: int = Field(1, validation_alias='MAX_CONCURRENT_JOBS')

    job_store_backend: str = Field('memory', validation_alias='JOB_STORE_BACKEND')
    job_store_path: str = Field('data/ocr.db', validation_alias='JOB_STORE_PATH')
    page_image_root: str = Field('data/uploads', validation_alias='PAGE_IMAGE_ROOT')

    max_file_size: int = Field(500 * 1024 * 1024, validation_alias='MAX_FILE_SIZE')
    allowed_file_types_raw: str = Field(
        '.pdf,.jpg,.jpeg,.png', validation_alias='ALLOWED_FILE_TYPES'
    )
    enable_metrics_raw: str | bool | None = Field(True, validation_alias='ENABLE_METRICS')

    model_config = SettingsConfigDict(env_file='.env', extra='ignore', case_sensitive=False)

    @property
    def test_mode(self) -> bool:
        raw = self.test_mode_raw
        if isinstance(raw, bool):
            return raw
        return parse_bool(str(raw))

    @property
    def enable_metrics(self) -> bool:
        raw = self.enable_metrics_raw
        if isinstance(raw, bool):
            return raw
        return parse_bool(str(raw))

    @property
    def allowed_file_types(self) -> tuple[str, ...]:
        items = []
        for item in self.allowed_file_types_raw.split(","):
            cleaned = item.strip().lower()
            if not cleaned:
                continue
            items.append(cleaned if cleaned.startswith(".") else f".{cleaned}")
        return tuple(items)

    @property
    def api_keys(self) -> dict[str, str]:
        keys: dict[str, Any] = {"claude": self.claude_api_key, "openai": self.openai_api_key}
        return {name: value for name, value in keys.items() if value}

    def ocr_settings(self) -> OCRSettings:
        return OCRSettings(
            provider=self.ocr_provider.strip().lower(),
            model=self.ocr_model,
            api_keys=self.api_keys,
            language=self.ocr_language,
            confidence=self.ocr_confidence,
            retry_attempts=self.retry_attempts,
            retry_delay_ms=self.retry_delay_ms,
            test_mode=self.test_mode,
            timeout_seconds=self.provider_timeout_seconds,
        )

    def processing_settings(self) -> ProcessingSettings:
        return ProcessingSettings(
            chunk_size=self.chunk_size,
            concurrent_chunks=self.concurrent_chunks,
            max_concurrent_jobs=self.max_concurrent_jobs,
        )

    def validate_required(self) -> None:
        invalid = [
            name
            for name, value in (
                ("CHUNK_SIZE", self.chunk_size),
                ("CONCURRENT_CHUNKS", self.concurrent_chunks),
                ("MAX_CONCURRENT_JOBS", self.max_concurrent_jobs),
            )
            if value < 1
        ]
        if self.retry_attempts < 0:
            invalid.append("OCR_RETRY_ATTEMPTS")
        if self.retry_delay_ms < 0:
            invalid.append("OCR_RETRY_DELAY_MS")
        if not 0.0 <= self.ocr_confidence <= 1.0:
            invalid.append("OCR_CONFIDENCE")
        if invalid:
            raise RuntimeError("Invalid processing configuration values: " + ", ".join(invalid))
        backend = self.job_store_backend.strip().lower()
        if backend not in {"memory", "sqlite"}:
            raise RuntimeError(f"Unsupported JOB_STORE_BACKEND: {self.job_store_backend}")


@lru_cache
def get_config() -> AppConfig:
    return AppConfig()  # type: ignore[call-arg]


__all__ = ["AppConfig", "get_config", "parse_bool"]
