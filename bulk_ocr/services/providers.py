"""OCR capability implementations.

Each provider turns one page image (as a base64 data URL) into text. Providers
raise `TransientProviderError` for anything the retrying client should retry:
transport failures, non-success responses and empty output. They never retry
on their own.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from openai import APIError, AsyncOpenAI

from bulk_ocr.errors import ConfigurationError, InvalidInputError, TransientProviderError
from bulk_ocr.utils.images import split_data_url

LOG = logging.getLogger("ocr_provider")

SYSTEM_PROMPT = (
    "You are a specialized OCR system for extracting text from images and PDFs, "
    "with particular expertise in Arabic and Persian scripts."
)
TEST_MODE_PREFIX = "[TEST MODE] "
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


def build_instruction(language: str, test_mode: bool) -> str:
    mode_hint = (
        "This is a test run - please only process a small sample of the text."
        if test_mode
        else "Maintain all formatting, line breaks, and paragraph structures."
    )
    return (
        f"Extract text from this {language} document. {mode_hint} "
        "Only return the extracted text, no explanations or metadata."
    )


@dataclass(slots=True)
class OCRExtraction:
    text: str
    confidence: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class OCRProvider(Protocol):
    """Single-page text extraction against one vendor API."""

    name: str

    async def extract(
        self,
        image_data_url: str,
        *,
        language: str,
        max_output_tokens: int,
        test_mode: bool = False,
    ) -> OCRExtraction: ...


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"{fallback} (HTTP {response.status_code})"
    message = (payload.get("error") or {}).get("message") if isinstance(payload, dict) else None
    return message or f"{fallback} (HTTP {response.status_code})"


class ClaudeOCRProvider:
    """Anthropic Messages API over httpx."""

    name = "claude"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
        api_url: str = ANTHROPIC_API_URL,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_seconds
        self._transport = transport
        self._api_url = api_url

    async def extract(
        self,
        image_data_url: str,
        *,
        language: str,
        max_output_tokens: int,
        test_mode: bool = False,
    ) -> OCRExtraction:
        try:
            mime_type, payload = split_data_url(image_data_url)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc
        body = {
            "model": self._model,
            "max_tokens": max_output_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_instruction(language, test_mode)},
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": mime_type, "data": payload},
                        },
                    ],
                }
            ],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._api_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransientProviderError(f"Claude API request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransientProviderError(
                _error_message(response, "Claude API request failed"),
                details={"status_code": response.status_code},
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise TransientProviderError("Claude API returned a non-JSON body") from exc
        blocks = data.get("content") or []
        text = "".join(
            block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text.strip():
            raise TransientProviderError("No text generated from Claude")
        return OCRExtraction(
            text=f"{TEST_MODE_PREFIX}{text}" if test_mode else text,
            metadata={"model": data.get("model", self._model), "stop_reason": data.get("stop_reason")},
        )


class OpenAIOCRProvider:
    """OpenAI Chat Completions with an image_url content part."""

    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout_seconds: float = 120.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    async def extract(
        self,
        image_data_url: str,
        *,
        language: str,
        max_output_tokens: int,
        test_mode: bool = False,
    ) -> OCRExtraction:
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                max_tokens=max_output_tokens,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": build_instruction(language, test_mode)},
                            {"type": "image_url", "image_url": {"url": image_data_url}},
                        ],
                    },
                ],
            )
        except APIError as exc:
            raise TransientProviderError(f"OpenAI API request failed: {exc}") from exc
        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise TransientProviderError("No text generated from OpenAI")
        return OCRExtraction(
            text=f"{TEST_MODE_PREFIX}{content}" if test_mode else content,
            metadata={"model": completion.model},
        )


def build_provider(
    provider: str,
    *,
    api_key: str | None,
    model: str | None,
    timeout_seconds: float = 120.0,
) -> OCRProvider:
    """Instantiate the provider selected by configuration."""
    if not api_key or not model:
        raise ConfigurationError(f"Provider {provider} requires an API key and a model")
    if provider == "claude":
        return ClaudeOCRProvider(api_key=api_key, model=model, timeout_seconds=timeout_seconds)
    if provider == "openai":
        return OpenAIOCRProvider(api_key=api_key, model=model, timeout_seconds=timeout_seconds)
    raise ConfigurationError(f"Unsupported provider: {provider}", details={"provider": provider})


__all__ = [
    "ClaudeOCRProvider",
    "OCRExtraction",
    "OCRProvider",
    "OpenAIOCRProvider",
    "build_instruction",
    "build_provider",
]
