from __future__ import annotations

import pytest

from bulk_ocr.config import get_config
from bulk_ocr.services.job_store import InMemoryJobStore
from tests.stubs.ocr_stub import RecordingSleep

_ENV_KEYS = (
    "OCR_PROVIDER",
    "OCR_MODEL",
    "CLAUDE_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "OCR_LANGUAGE",
    "OCR_CONFIDENCE",
    "OCR_RETRY_ATTEMPTS",
    "OCR_RETRY_DELAY_MS",
    "OCR_TEST_MODE",
    "CHUNK_SIZE",
    "CONCURRENT_CHUNKS",
    "MAX_CONCURRENT_JOBS",
    "JOB_STORE_BACKEND",
    "JOB_STORE_PATH",
    "PAGE_IMAGE_ROOT",
    "MAX_FILE_SIZE",
    "ALLOWED_FILE_TYPES",
    "ENABLE_METRICS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()
