"""Provider-agnostic OCR client with configuration validation and fixed-delay retry.

The client is the only component that talks to an OCR provider. A page is
attempted at most ``retry_attempts + 1`` times; between attempts the client
waits ``retry_delay_ms`` (fixed, not exponential). The delay is an ordinary
``asyncio`` sleep, so cancelling the calling task cancels the wait.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from bulk_ocr.errors import (
    BulkOCRError,
    ConfigurationError,
    InvalidInputError,
    OCRRetryExhaustedError,
    TransientProviderError,
)
from bulk_ocr.services.interfaces import MetricsClient
from bulk_ocr.services.metrics import NullMetrics
from bulk_ocr.services.providers import OCRExtraction, OCRProvider, build_provider
from bulk_ocr.utils.images import to_data_url
from bulk_ocr.utils.logging_utils import structured_log

LOG = logging.getLogger("ocr_client")

SUPPORTED_PROVIDERS = ("claude", "openai")
CREDENTIAL_PREFIXES = {"claude": "sk-", "openai": "sk-"}
MAX_OUTPUT_TOKENS = 4096
TEST_MODE_MAX_OUTPUT_TOKENS = 100
_RETRYABLE = (TransientProviderError, InvalidInputError)


@dataclass(slots=True)
class OCRSettings:
    provider: str = "claude"
    model: str | None = None
    api_keys: dict[str, str] = field(default_factory=dict)
    language: str = "arabic"
    confidence: float = 0.8
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    test_mode: bool = False
    timeout_seconds: float = 120.0

    @property
    def max_output_tokens(self) -> int:
        return TEST_MODE_MAX_OUTPUT_TOKENS if self.test_mode else MAX_OUTPUT_TOKENS


@dataclass(slots=True)
class OCRResult:
    text: str
    confidence: float | None
    attempts: int
    metadata: dict[str, Any] = field(default_factory=dict)


def validate_configuration(settings: OCRSettings) -> None:
    """Raise `ConfigurationError` unless the provider can be called.

    Pure: no network access and no mutation of ``settings``.
    """
    provider = (settings.provider or "").strip().lower()
    if not provider:
        raise ConfigurationError("Please select an OCR provider")
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(f"Unsupported provider: {provider}", details={"provider": provider})
    api_key = (settings.api_keys.get(provider) or "").strip()
    if not api_key:
        raise ConfigurationError(f"No API key configured for {provider}", details={"provider": provider})
    if not settings.model:
        raise ConfigurationError("No model selected", details={"provider": provider})
    prefix = CREDENTIAL_PREFIXES[provider]
    if not api_key.startswith(prefix):
        raise ConfigurationError(
            f"Invalid {provider} API key format", details={"provider": provider}
        )


class RetryingOCRClient:
    """Validates configuration and retries provider calls with a fixed delay."""

    def __init__(
        self,
        settings: OCRSettings,
        *,
        provider: OCRProvider | None = None,
        metrics: MetricsClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._provider = provider
        self.metrics = metrics or NullMetrics()
        self._sleep = sleep

    def validate_configuration(self) -> None:
        validate_configuration(self.settings)

    @property
    def provider(self) -> OCRProvider:
        if self._provider is None:
            self.validate_configuration()
            name = self.settings.provider.strip().lower()
            self._provider = build_provider(
                name,
                api_key=self.settings.api_keys.get(name),
                model=self.settings.model,
                timeout_seconds=self.settings.timeout_seconds,
            )
        return self._provider

    async def process_page(
        self,
        image_data: bytes | str,
        *,
        attempt: int = 0,
        page_number: int | None = None,
    ) -> OCRResult:
        """Extract text from one encoded page image.

        ``attempt`` is the number of attempts already spent; the call makes at
        most ``retry_attempts - attempt + 1`` more. Raises
        `OCRRetryExhaustedError` (wrapping the last failure) once they are used
        up, or `ConfigurationError` before any call when the settings are
        unusable.
        """
        self.validate_configuration()
        provider = self.provider
        remaining = max(1, self.settings.retry_attempts - attempt + 1)
        used = attempt
        started = time.perf_counter()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(remaining),
            wait=wait_fixed(self.settings.retry_delay_ms / 1000.0),
            retry=retry_if_exception_type(_RETRYABLE),
            before_sleep=self._before_sleep(page_number),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for try_state in retrying:
                with try_state:
                    used = attempt + try_state.retry_state.attempt_number
                    extraction = await self._attempt(provider, image_data)
                    self.metrics.observe_latency(
                        "ocr_page_latency_seconds", time.perf_counter() - started, stage="ocr"
                    )
                    return OCRResult(
                        text=extraction.text,
                        confidence=extraction.confidence,
                        attempts=used,
                        metadata=dict(extraction.metadata),
                    )
        except _RETRYABLE as exc:
            self.metrics.increment("ocr_page_failures_total", stage="ocr")
            structured_log(
                LOG,
                logging.ERROR,
                "ocr_page_failed",
                provider=provider.name,
                page_number=page_number,
                attempts=used,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise OCRRetryExhaustedError(exc, used) from exc
        raise OCRRetryExhaustedError(TransientProviderError("OCR retries exhausted"), used)

    async def _attempt(self, provider: OCRProvider, image_data: bytes | str) -> OCRExtraction:
        self.metrics.increment("ocr_attempts_total", stage="ocr")
        if not image_data:
            raise InvalidInputError("No image data provided")
        data_url = to_data_url(image_data)
        if data_url is None:
            raise InvalidInputError("Image data is not a recognised image format")
        try:
            extraction = await provider.extract(
                data_url,
                language=self.settings.language,
                max_output_tokens=self.settings.max_output_tokens,
                test_mode=self.settings.test_mode,
            )
        except BulkOCRError:
            raise
        except Exception as exc:  # noqa: BLE001 - any provider fault is retryable
            raise TransientProviderError(f"{provider.name} OCR call failed: {exc}") from exc
        if not extraction.text or not extraction.text.strip():
            raise TransientProviderError(f"No text generated from {provider.name}")
        if extraction.confidence is not None and extraction.confidence < self.settings.confidence:
            raise TransientProviderError(
                "Text recognition confidence below threshold",
                details={"confidence": extraction.confidence},
            )
        return extraction

    def _before_sleep(self, page_number: int | None) -> Callable[[RetryCallState], None]:
        def _log(retry_state: RetryCallState) -> None:
            self.metrics.increment("ocr_retries_total", stage="ocr")
            outcome = retry_state.outcome
            error = outcome.exception() if outcome is not None else None
            structured_log(
                LOG,
                logging.WARNING,
                "ocr_page_retry",
                provider=self.settings.provider,
                page_number=page_number,
                attempt=retry_state.attempt_number,
                retry_delay_ms=self.settings.retry_delay_ms,
                error=None if error is None else str(error),
                error_type=None if error is None else type(error).__name__,
            )

        return _log


__all__ = [
    "OCRResult",
    "OCRSettings",
    "RetryingOCRClient",
    "validate_configuration",
]
