import json
import logging

import httpx
import pytest

from brandprobe.engines import HttpEngineAdapter
from brandprobe.errors import PermanentProviderError, TransientProviderError


def adapter_for(test_settings, handler) -> HttpEngineAdapter:
    return HttpEngineAdapter(test_settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def chat(content: str, **extra) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}], **extra}


@pytest.mark.asyncio
async def test_openai_reply(test_settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=chat("Acme is the best."))

    reply = await adapter_for(test_settings, handler).call("openai", "sk-test", "best shoes")

    assert reply.content == "Acme is the best."
    assert reply.citations == []
    assert seen[0].headers["authorization"] == "Bearer sk-test"
    body = json.loads(seen[0].content)
    assert body["messages"] == [{"role": "user", "content": "best shoes"}]


@pytest.mark.asyncio
async def test_perplexity_citations(test_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=chat(
                "Try Acme.",
                citations=["https://www.youtube.com/watch?v=1", {"url": "https://reddit.com/r/x", "title": "x"}],
            ),
        )

    reply = await adapter_for(test_settings, handler).call("perplexity", "pplx", "q")

    assert [c.url for c in reply.citations] == ["https://www.youtube.com/watch?v=1", "https://reddit.com/r/x"]
    assert reply.citations[1].title == "x"


@pytest.mark.asyncio
async def test_gemini_joins_parts_and_sends_key_in_header(test_settings, caplog) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": "Acme "}, {"text": "wins."}]}}]}
        )

    with caplog.at_level(logging.DEBUG):
        reply = await adapter_for(test_settings, handler).call("google", "SECRET-GEMINI-KEY", "q")

    assert reply.content == "Acme wins."
    assert seen[0].headers["x-goog-api-key"] == "SECRET-GEMINI-KEY"
    assert "key" not in seen[0].url.params
    assert seen[0].url.path.endswith(":generateContent")
    assert "SECRET-GEMINI-KEY" not in caplog.text


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 503])
async def test_rate_limit_and_overload_are_transient(test_settings, status) -> None:
    adapter = adapter_for(test_settings, lambda request: httpx.Response(status, text="slow down"))
    with pytest.raises(TransientProviderError) as exc_info:
        await adapter.call("openai", "sk", "q")
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_overloaded_body_is_transient(test_settings) -> None:
    adapter = adapter_for(test_settings, lambda request: httpx.Response(500, text="Model is overloaded"))
    with pytest.raises(TransientProviderError):
        await adapter.call("google", "g", "q")


@pytest.mark.asyncio
async def test_auth_failure_is_permanent(test_settings) -> None:
    adapter = adapter_for(test_settings, lambda request: httpx.Response(401, text="bad key"))
    with pytest.raises(PermanentProviderError) as exc_info:
        await adapter.call("openai", "sk", "q")
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_timeout_is_transient(test_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransientProviderError):
        await adapter_for(test_settings, handler).call("perplexity", "pplx", "q")


@pytest.mark.asyncio
async def test_unsupported_provider(test_settings) -> None:
    adapter = adapter_for(test_settings, lambda request: httpx.Response(200, json={}))
    with pytest.raises(PermanentProviderError, match="Unsupported provider"):
        await adapter.call("anthropic", "key", "q")
