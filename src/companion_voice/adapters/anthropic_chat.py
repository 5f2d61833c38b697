import logging
from collections.abc import Mapping
from typing import Any

import anthropic

from companion_voice.domain.conversation import ConversationHistory
from companion_voice.domain.errors import AiCallFailedError

logger = logging.getLogger(__name__)


def render_profile(profile: Mapping[str, Any] | None) -> str:
    if not profile:
        return ""
    lines = []
    for key, value in profile.items():
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


class AnthropicChatClient:
    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5",
        system_prompt: str = "",
        history: ConversationHistory | None = None,
        max_tokens: int = 300,
    ) -> None:
        self._client = anthropic.AsyncAnthropic(api_key=api_key or None)
        self._model = model.removeprefix("anthropic/")
        self._system_prompt = system_prompt
        self._history = history if history is not None else ConversationHistory()
        self._max_tokens = max_tokens

    @property
    def history(self) -> ConversationHistory:
        return self._history

    async def respond(
        self, utterance_text: str, profile: Mapping[str, Any] | None
    ) -> str:
        kwargs: dict = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": self._history.to_api_messages(utterance_text),
        }
        system = self._build_system(profile)
        if system:
            kwargs["system"] = system

        try:
            message = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            logger.error("Anthropic API error: %s %s", exc.status_code, exc.message)
            raise AiCallFailedError(f"Anthropic API error {exc.status_code}") from exc
        except anthropic.APIError as exc:
            raise AiCallFailedError(f"Anthropic request failed: {exc}") from exc

        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        ).strip()
        if not text:
            raise AiCallFailedError("Anthropic returned an empty reply")

        self._history.add_exchange(utterance_text, text)
        return text

    async def close(self) -> None:
        await self._client.close()

    def _build_system(self, profile: Mapping[str, Any] | None) -> str:
        profile_text = render_profile(profile)
        if not profile_text:
            return self._system_prompt
        parts = [self._system_prompt] if self._system_prompt else []
        parts.append("About the person you are talking with:\n" + profile_text)
        return "\n\n".join(parts)
