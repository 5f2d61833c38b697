from dataclasses import dataclass, field
from time import time

from companion_voice.domain.errors import ErrorKind


@dataclass(frozen=True)
class DetectorEvent:
    timestamp: float = field(default_factory=time)


@dataclass(frozen=True)
class SpeechStarted(DetectorEvent):
    pass


@dataclass(frozen=True)
class SpeechEnded(DetectorEvent):
    pass


@dataclass(frozen=True)
class PartialTranscript(DetectorEvent):
    text: str = ""


@dataclass(frozen=True)
class FinalTranscript(DetectorEvent):
    text: str = ""


@dataclass(frozen=True)
class DetectorError(DetectorEvent):
    kind: ErrorKind = ErrorKind.DETECTOR_TRANSIENT
    detail: str = ""
