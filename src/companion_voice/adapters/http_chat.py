import logging
from collections.abc import Mapping
from typing import Any

import httpx

from companion_voice.domain.errors import AiCallFailedError

logger = logging.getLogger(__name__)


class HttpChatClient:
    """Chat client for the companion backend's ``/api/chat`` endpoint.

    The profile is forwarded untouched; persona handling lives server-side.
    """

    def __init__(
        self,
        gateway_url: str,
        token: str = "",
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._gateway_url = gateway_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def respond(
        self, utterance_text: str, profile: Mapping[str, Any] | None
    ) -> str:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        payload = {"message": utterance_text, "profile": dict(profile or {})}

        try:
            response = await self._client.post(
                f"{self._gateway_url}/api/chat",
                json=payload,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Chat backend HTTP error: %s", exc.response.status_code)
            raise AiCallFailedError(
                f"Chat backend returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise AiCallFailedError(f"Chat backend unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise AiCallFailedError("Chat backend returned invalid JSON") from exc

        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise AiCallFailedError("Chat backend returned no text")
        return text.strip()

    async def close(self) -> None:
        await self._client.aclose()
