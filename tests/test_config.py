from __future__ import annotations

import pytest

from bulk_ocr.config import AppConfig, get_config, parse_bool


def test_defaults_match_processing_limits():
    cfg = AppConfig(_env_file=None)
    assert cfg.ocr_provider == "claude"
    assert cfg.ocr_language == "arabic"
    assert cfg.ocr_confidence == 0.8
    assert cfg.chunk_size == 10
    assert cfg.concurrent_chunks == 3
    assert cfg.max_concurrent_jobs == 1
    assert cfg.retry_attempts == 3
    assert cfg.retry_delay_ms == 1000
    assert cfg.test_mode is False
    assert cfg.max_file_size == 500 * 1024 * 1024
    assert cfg.allowed_file_types == (".pdf", ".jpg", ".jpeg", ".png")
    cfg.validate_required()


def test_env_overrides_and_aliases(monkeypatch):
    monkeypatch.setenv("OCR_PROVIDER", " OpenAI ")
    monkeypatch.setenv("OCR_MODEL", "gpt-4o")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-1")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai-1")
    monkeypatch.setenv("OCR_TEST_MODE", "yes")
    monkeypatch.setenv("OCR_RETRY_DELAY_MS", "250")
    monkeypatch.setenv("CHUNK_SIZE", "5")
    monkeypatch.setenv("ALLOWED_FILE_TYPES", "pdf, .TIFF ,,")
    cfg = AppConfig(_env_file=None)

    settings = cfg.ocr_settings()
    assert settings.provider == "openai"
    assert settings.model == "gpt-4o"
    assert settings.api_keys == {"claude": "sk-ant-1", "openai": "sk-openai-1"}
    assert settings.test_mode is True
    assert settings.max_output_tokens == 100
    assert settings.retry_delay_ms == 250
    assert cfg.processing_settings().chunk_size == 5
    assert cfg.allowed_file_types == (".pdf", ".tiff")


def test_claude_key_takes_precedence_over_anthropic_alias(monkeypatch):
    monkeypatch.setenv("CLAUDE_API_KEY", "sk-claude")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-anthropic")
    assert AppConfig(_env_file=None).api_keys == {"claude": "sk-claude"}


@pytest.mark.parametrize(
    ("env", "value"),
    [
        ("CHUNK_SIZE", "0"),
        ("CONCURRENT_CHUNKS", "-1"),
        ("MAX_CONCURRENT_JOBS", "0"),
        ("OCR_RETRY_ATTEMPTS", "-1"),
        ("OCR_CONFIDENCE", "1.5"),
    ],
)
def test_validate_required_rejects_bad_values(monkeypatch, env, value):
    monkeypatch.setenv(env, value)
    with pytest.raises(RuntimeError, match=env):
        AppConfig(_env_file=None).validate_required()


def test_validate_required_rejects_unknown_backend(monkeypatch):
    monkeypatch.setenv("JOB_STORE_BACKEND", "postgres")
    with pytest.raises(RuntimeError, match="JOB_STORE_BACKEND"):
        AppConfig(_env_file=None).validate_required()


def test_get_config_is_cached(monkeypatch):
    monkeypatch.setenv("OCR_LANGUAGE", "persian")
    first = get_config()
    monkeypatch.setenv("OCR_LANGUAGE", "english")
    assert get_config() is first
    assert first.ocr_language == "persian"
    get_config.cache_clear()
    assert get_config().ocr_language == "english"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("TRUE", True), ("on", True), ("0", False), ("no", False), (None, False)],
)
def test_parse_bool(raw, expected):
    assert parse_bool(raw) is expected
