import logging
from enum import Enum, auto

import numpy as np

from companion_voice.ports.vad import VadPort

logger = logging.getLogger(__name__)

DEBUG_LOG_INTERVAL_MS = 500


class SpeechEvent(Enum):
    SILENCE = auto()
    SPEECH_START = auto()
    SPEECH_CONTINUE = auto()
    SPEECH_END = auto()

    @property
    def is_speech(self) -> bool:
        return self in (SpeechEvent.SPEECH_START, SpeechEvent.SPEECH_CONTINUE)


class SpeechDetector:
    """Turns per-frame VAD probabilities into speech start/end edges."""

    def __init__(
        self,
        vad: VadPort,
        threshold: float,
        min_silence_ms: int,
        frame_duration_ms: int,
    ) -> None:
        self._vad = vad
        self._threshold = threshold
        self._frame_duration_ms = frame_duration_ms
        self._silence_frames_required = max(1, int(min_silence_ms / frame_duration_ms))
        self._debug_interval_frames = max(1, int(DEBUG_LOG_INTERVAL_MS / frame_duration_ms))
        self._speech_active = False
        self._speech_frames = 0
        self._trailing_silence_frames = 0
        self._frame_count = 0

    @property
    def speech_active(self) -> bool:
        return self._speech_active

    @property
    def speech_duration_ms(self) -> int:
        return self._speech_frames * self._frame_duration_ms

    def process_frame(self, frame: bytes) -> SpeechEvent:
        self._frame_count += 1
        probability = self._vad.process_frame(frame)
        is_speech = probability >= self._threshold

        if self._frame_count % self._debug_interval_frames == 0:
            logger.debug(
                "VAD prob=%.3f threshold=%.2f speech=%s peak=%d",
                probability, self._threshold, is_speech, _peak_amplitude(frame),
            )

        if is_speech:
            self._trailing_silence_frames = 0
            self._speech_frames += 1
            if self._speech_active:
                return SpeechEvent.SPEECH_CONTINUE
            self._speech_active = True
            self._speech_frames = 1
            logger.info("Speech started (prob=%.2f)", probability)
            return SpeechEvent.SPEECH_START

        if not self._speech_active:
            return SpeechEvent.SILENCE

        self._trailing_silence_frames += 1
        if self._trailing_silence_frames < self._silence_frames_required:
            return SpeechEvent.SILENCE

        self._speech_active = False
        logger.info(
            "Speech ended after %dms (silence frames=%d)",
            self.speech_duration_ms, self._trailing_silence_frames,
        )
        return SpeechEvent.SPEECH_END

    def reset(self) -> None:
        self._speech_active = False
        self._speech_frames = 0
        self._trailing_silence_frames = 0
        self._frame_count = 0
        self._vad.reset()


def _peak_amplitude(frame: bytes) -> int:
    if len(frame) < 2:
        return 0
    samples = np.frombuffer(frame[: len(frame) - len(frame) % 2], dtype=np.int16)
    return int(np.abs(samples.astype(np.int32)).max())
