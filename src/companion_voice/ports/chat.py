from collections.abc import Mapping
from typing import Any, Protocol


class ChatPort(Protocol):
    async def respond(
        self, utterance_text: str, profile: Mapping[str, Any] | None
    ) -> str: ...

    async def close(self) -> None: ...
