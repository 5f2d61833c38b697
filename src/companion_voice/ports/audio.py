from dataclasses import dataclass
from typing import Protocol, AsyncIterator


@dataclass(frozen=True)
class AudioChunk:
    data: bytes
    sequence: int


class AudioCapturePort(Protocol):
    @property
    def sample_rate(self) -> int: ...
    @property
    def frame_size(self) -> int: ...
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def read_frames(self) -> AsyncIterator[bytes]: ...


class PlaybackHandle(Protocol):
    async def wait(self) -> None: ...
    def set_volume(self, volume: float) -> None: ...
    def stop(self) -> None: ...


class AudioOutputPort(Protocol):
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def play(self, chunk: AudioChunk) -> PlaybackHandle: ...
