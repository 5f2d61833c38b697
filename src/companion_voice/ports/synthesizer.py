from enum import Enum
from typing import Protocol, AsyncIterator


class VoiceHint(str, Enum):
    MALE = "male"
    FEMALE = "female"


class SynthesizerPort(Protocol):
    def synthesize(self, text: str, voice_hint: VoiceHint) -> AsyncIterator[bytes]: ...
