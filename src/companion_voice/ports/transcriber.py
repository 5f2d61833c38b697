from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool


class TranscriberPort(Protocol):
    """Streaming recognizer opened once per speech burst.

    ``start_session`` raises ``DetectorTransientError`` when the recognizer
    cannot be reached.
    """

    @property
    def session_active(self) -> bool: ...

    async def start_session(self) -> None: ...
    async def send_audio(self, frame: bytes) -> None: ...
    def get_transcripts(self) -> AsyncIterator[TranscriptEvent]: ...
    async def close_session(self) -> None: ...
