"""Adapters for the generative answer engines under test."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .config import Settings, settings as default_settings
from .errors import PermanentProviderError, TransientProviderError

TRANSIENT_STATUS_CODES = {429, 503}


@dataclass(frozen=True)
class Citation:
    url: str
    title: str | None = None


@dataclass
class EngineReply:
    """Normalized engine answer."""

    content: str
    citations: list[Citation] = field(default_factory=list)
    raw_response: dict[str, Any] | None = None


class EngineAdapter(Protocol):
    async def call(self, provider: str, credential: str, query_text: str) -> EngineReply: ...


def map_engine_to_provider(engine_name: str) -> str | None:
    """Map a display name such as "ChatGPT" or "Gemini 2.5" to a provider id."""
    name = engine_name.lower()
    if "chatgpt" in name or "openai" in name or "gpt" in name:
        return "openai"
    if "perplexity" in name:
        return "perplexity"
    if "gemini" in name or "google" in name:
        return "google"
    return None


class HttpEngineAdapter:
    """Calls provider HTTP APIs with a shared httpx client."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.engine_timeout_seconds)
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def call(self, provider: str, credential: str, query_text: str) -> EngineReply:
        if provider == "openai":
            return await self._query_openai(credential, query_text)
        if provider == "perplexity":
            return await self._query_perplexity(credential, query_text)
        if provider == "google":
            return await self._query_gemini(credential, query_text)
        raise PermanentProviderError(provider, f"Unsupported provider: {provider}")

    async def _post(
        self,
        provider: str,
        url: str,
        *,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = await self._client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            # Treated like an overloaded upstream so the retry loop picks it up.
            raise TransientProviderError(provider, f"{provider} API timeout (503 overloaded): {e}") from e
        except httpx.RequestError as e:
            raise PermanentProviderError(provider, f"{provider} request failed: {e}") from e

        if resp.status_code >= 400:
            message = f"{provider} API error: {resp.status_code} - {resp.text[:500]}"
            if resp.status_code in TRANSIENT_STATUS_CODES or "overloaded" in resp.text.lower():
                raise TransientProviderError(provider, message, status_code=resp.status_code)
            raise PermanentProviderError(provider, message, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise PermanentProviderError(provider, f"{provider} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise PermanentProviderError(provider, f"Unexpected {provider} response: {data!r:.200}")
        return data

    async def _query_openai(self, api_key: str, query: str) -> EngineReply:
        data = await self._post(
            "openai",
            self.settings.openai_api_url,
            headers={"Authorization": f"Bearer {api_key}"},
            body={
                "model": self.settings.openai_model,
                "messages": [{"role": "user", "content": query}],
                "temperature": 0.7,
            },
        )
        return EngineReply(content=_chat_content(data), raw_response=data)

    async def _query_perplexity(self, api_key: str, query: str) -> EngineReply:
        data = await self._post(
            "perplexity",
            self.settings.perplexity_api_url,
            headers={"Authorization": f"Bearer {api_key}"},
            body={
                "model": self.settings.perplexity_model,
                "messages": [{"role": "user", "content": query}],
            },
        )
        citations: list[Citation] = []
        for item in data.get("citations") or []:
            if isinstance(item, str):
                citations.append(Citation(url=item))
            elif isinstance(item, dict) and isinstance(item.get("url"), str):
                citations.append(Citation(url=item["url"], title=item.get("title")))
        return EngineReply(content=_chat_content(data), citations=citations, raw_response=data)

    async def _query_gemini(self, api_key: str, query: str) -> EngineReply:
        data = await self._post(
            "google",
            f"{self.settings.gemini_api_url.rstrip('/')}/{self.settings.gemini_model}:generateContent",
            headers={"x-goog-api-key": api_key},
            body={
                "contents": [{"parts": [{"text": query}]}],
                "generationConfig": {"temperature": 0.7, "maxOutputTokens": 2048},
            },
        )
        content = ""
        candidates = data.get("candidates")
        if isinstance(candidates, list) and candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            content = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        return EngineReply(content=content, raw_response=data)


def _chat_content(data: dict[str, Any]) -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""
