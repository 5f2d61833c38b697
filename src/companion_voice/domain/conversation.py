from dataclasses import dataclass


@dataclass
class Message:
    role: str
    content: str


class ConversationHistory:
    """Bounded memory of completed exchanges, oldest dropped first."""

    def __init__(self, max_turns: int = 20) -> None:
        self._max_turns = max_turns
        self._messages: list[Message] = []

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_exchange(self, user_text: str, assistant_text: str) -> None:
        self._messages.append(Message(role="user", content=user_text))
        self._messages.append(Message(role="assistant", content=assistant_text))
        max_messages = self._max_turns * 2
        if len(self._messages) > max_messages:
            self._messages = self._messages[-max_messages:]

    def clear(self) -> None:
        self._messages.clear()

    def to_api_messages(self, pending_user_text: str) -> list[dict[str, str]]:
        result = [{"role": m.role, "content": m.content} for m in self._messages]
        result.append({"role": "user", "content": pending_user_text})
        return result
