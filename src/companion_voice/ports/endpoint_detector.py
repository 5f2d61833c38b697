from typing import Protocol, AsyncIterator

from companion_voice.domain.events import DetectorEvent


class EndpointDetectorPort(Protocol):
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def events(self) -> AsyncIterator[DetectorEvent]: ...
