"""Best-effort external alerts on terminal session outcomes."""

from __future__ import annotations

import logging

import httpx

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 1200
CONTENT_MAX_LENGTH = 20000


class Notifier:
    """Posts a title/content pair to the configured endpoint.

    ``notify`` reports delivery as a bool and never raises.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.settings.notification_url)

    async def notify(self, title: str, content: str) -> bool:
        if not self.configured:
            logger.debug("Notification endpoint not configured; skipping %r", title)
            return False

        headers = {"content-type": "application/json"}
        if self.settings.notification_token:
            headers["authorization"] = f"Bearer {self.settings.notification_token}"
        body = {"title": title[:TITLE_MAX_LENGTH], "content": content[:CONTENT_MAX_LENGTH]}

        try:
            if self._client is not None:
                resp = await self._client.post(self.settings.notification_url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(10.0)) as client:
                    resp = await client.post(self.settings.notification_url, json=body, headers=headers)
        except Exception as e:
            logger.warning("Notification %r failed: %s", title, e)
            return False

        if resp.status_code >= 400:
            logger.warning("Notification %r rejected with status %d", title, resp.status_code)
            return False
        return True

    async def session_completed(
        self, project_name: str, success_count: int, failed_count: int, total: int
    ) -> bool:
        return await self.notify(
            f"Analysis completed: {project_name}",
            "\n".join(
                [
                    "Your batch analysis has finished.",
                    "",
                    f"- Succeeded: {success_count}",
                    f"- Failed: {failed_count}",
                    f"- Total: {total}",
                ]
            ),
        )

    async def session_failed(self, project_name: str, error_message: str) -> bool:
        return await self.notify(f"Analysis failed: {project_name}", error_message)
