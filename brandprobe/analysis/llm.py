"""Chat-completions client used by the analysis stages."""

from __future__ import annotations

import json
import re
from typing import Any

import httpx

from ..config import Settings, settings as default_settings
from ..errors import AnalysisError

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating a surrounding markdown code fence."""
    cleaned = _CODE_FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"LLM returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError("LLM returned JSON that is not an object")
    return data


class AnalysisLLM:
    """Async client for an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.analysis_timeout_seconds)
        )

    @property
    def enabled(self) -> bool:
        return bool(self.settings.analysis_enabled and self.settings.analysis_api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete_json(self, system: str, prompt: str) -> dict[str, Any]:
        if not self.enabled:
            raise AnalysisError("Analysis LLM is not configured")

        body = {
            "model": self.settings.analysis_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }
        try:
            resp = await self._client.post(
                self.settings.analysis_api_url,
                json=body,
                headers={"Authorization": f"Bearer {self.settings.analysis_api_key}"},
            )
            resp.raise_for_status()
        except httpx.RequestError as e:
            raise AnalysisError(f"Analysis request failed: {e}") from e
        except httpx.HTTPStatusError as e:
            raise AnalysisError(
                f"Analysis API error {e.response.status_code}: {e.response.text[:300]}"
            ) from e

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AnalysisError("Analysis response has no message content") from e
        if not isinstance(content, str) or not content.strip():
            raise AnalysisError("Analysis response has no message content")
        return parse_json_object(content)
