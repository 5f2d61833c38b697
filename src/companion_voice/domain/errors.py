from enum import Enum, auto


class ErrorKind(Enum):
    CAPTURE_UNAVAILABLE = auto()
    DETECTOR_TRANSIENT = auto()
    AI_CALL_FAILED = auto()
    SYNTHESIS_FAILED = auto()
    PLAYBACK_CHUNK_FAILED = auto()

    @property
    def is_fatal(self) -> bool:
        return self is ErrorKind.CAPTURE_UNAVAILABLE


class CompanionVoiceError(Exception):
    kind: ErrorKind


class CaptureUnavailableError(CompanionVoiceError):
    """No microphone, or permission to use it was refused."""

    kind = ErrorKind.CAPTURE_UNAVAILABLE


class DetectorTransientError(CompanionVoiceError):
    kind = ErrorKind.DETECTOR_TRANSIENT


class AiCallFailedError(CompanionVoiceError):
    kind = ErrorKind.AI_CALL_FAILED


class SynthesisFailedError(CompanionVoiceError):
    kind = ErrorKind.SYNTHESIS_FAILED


class PlaybackChunkFailedError(CompanionVoiceError):
    kind = ErrorKind.PLAYBACK_CHUNK_FAILED


def error_for_kind(kind: ErrorKind, detail: str = "") -> CompanionVoiceError:
    for error_type in (
        CaptureUnavailableError,
        DetectorTransientError,
        AiCallFailedError,
        SynthesisFailedError,
        PlaybackChunkFailedError,
    ):
        if error_type.kind is kind:
            return error_type(detail or kind.name.lower())
    raise ValueError(f"Unknown error kind: {kind}")
