from __future__ import annotations

import json

import httpx
import pytest
from openai import AsyncOpenAI

from bulk_ocr.errors import ConfigurationError, InvalidInputError, TransientProviderError
from bulk_ocr.services.providers import (
    ANTHROPIC_VERSION,
    SYSTEM_PROMPT,
    ClaudeOCRProvider,
    OpenAIOCRProvider,
    build_instruction,
    build_provider,
)

DATA_URL = "data:image/png;base64,iVBORw0KGgo="


def _claude(handler) -> ClaudeOCRProvider:
    return ClaudeOCRProvider(
        api_key="sk-ant-test",
        model="claude-3-5-sonnet",
        transport=httpx.MockTransport(handler),
    )


def _openai(handler) -> OpenAIOCRProvider:
    client = AsyncOpenAI(
        api_key="sk-test",
        base_url="https://openai.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return OpenAIOCRProvider(api_key="sk-test", model="gpt-4o", client=client)


def _completion(content: str | None) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def test_instruction_mentions_language_and_mode():
    assert "arabic document" in build_instruction("arabic", False)
    assert "formatting" in build_instruction("arabic", False)
    assert "small sample" in build_instruction("persian", True)


@pytest.mark.asyncio
async def test_claude_posts_messages_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "claude-3-5-sonnet",
                "stop_reason": "end_turn",
                "content": [{"type": "text", "text": "مرحبا"}],
            },
        )

    extraction = await _claude(handler).extract(
        DATA_URL, language="arabic", max_output_tokens=4096
    )

    assert extraction.text == "مرحبا"
    assert extraction.confidence is None
    assert seen["headers"]["x-api-key"] == "sk-ant-test"
    assert seen["headers"]["anthropic-version"] == ANTHROPIC_VERSION
    body = seen["body"]
    assert body["max_tokens"] == 4096
    assert body["system"] == SYSTEM_PROMPT
    image_part = body["messages"][0]["content"][1]
    assert image_part["source"] == {
        "type": "base64",
        "media_type": "image/png",
        "data": "iVBORw0KGgo=",
    }


@pytest.mark.asyncio
async def test_claude_test_mode_prefixes_text():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["max_tokens"] == 100
        return httpx.Response(200, json={"content": [{"type": "text", "text": "sample"}]})

    extraction = await _claude(handler).extract(
        DATA_URL, language="arabic", max_output_tokens=100, test_mode=True
    )
    assert extraction.text == "[TEST MODE] sample"


@pytest.mark.asyncio
async def test_claude_error_response_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(529, json={"error": {"message": "Overloaded"}})

    with pytest.raises(TransientProviderError, match="Overloaded") as excinfo:
        await _claude(handler).extract(DATA_URL, language="arabic", max_output_tokens=10)
    assert excinfo.value.details["status_code"] == 529


@pytest.mark.asyncio
async def test_claude_network_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientProviderError, match="request failed"):
        await _claude(handler).extract(DATA_URL, language="arabic", max_output_tokens=10)


@pytest.mark.asyncio
async def test_claude_empty_text_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": []})

    with pytest.raises(TransientProviderError, match="No text generated"):
        await _claude(handler).extract(DATA_URL, language="arabic", max_output_tokens=10)


@pytest.mark.asyncio
async def test_claude_rejects_malformed_data_url():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("request should not be sent")

    with pytest.raises(InvalidInputError):
        await _claude(handler).extract("not-a-data-url", language="arabic", max_output_tokens=10)


@pytest.mark.asyncio
async def test_openai_sends_image_url_part():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion("hello"))

    extraction = await _openai(handler).extract(DATA_URL, language="arabic", max_output_tokens=4096)

    assert extraction.text == "hello"
    assert seen["path"].endswith("/chat/completions")
    body = seen["body"]
    assert body["model"] == "gpt-4o"
    assert body["max_tokens"] == 4096
    assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert body["messages"][1]["content"][1] == {
        "type": "image_url",
        "image_url": {"url": DATA_URL},
    }


@pytest.mark.asyncio
async def test_openai_api_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "boom"}})

    with pytest.raises(TransientProviderError, match="OpenAI API request failed"):
        await _openai(handler).extract(DATA_URL, language="arabic", max_output_tokens=10)


@pytest.mark.asyncio
async def test_openai_empty_content_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(""))

    with pytest.raises(TransientProviderError, match="No text generated"):
        await _openai(handler).extract(DATA_URL, language="arabic", max_output_tokens=10)


def test_build_provider_selects_implementation():
    assert isinstance(
        build_provider("claude", api_key="sk-a", model="claude-3"), ClaudeOCRProvider
    )
    assert isinstance(build_provider("openai", api_key="sk-o", model="gpt-4o"), OpenAIOCRProvider)
    with pytest.raises(ConfigurationError):
        build_provider("tesseract", api_key="sk-x", model="m")
    with pytest.raises(ConfigurationError):
        build_provider("claude", api_key=None, model="claude-3")
