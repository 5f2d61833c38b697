import asyncio
import logging
from collections.abc import AsyncIterator

import numpy as np
import pytest

from companion_voice.domain.errors import (
    DetectorTransientError,
    PlaybackChunkFailedError,
    SynthesisFailedError,
)
from companion_voice.domain.events import DetectorEvent
from companion_voice.domain.speech_detector import SpeechDetector
from companion_voice.ports.audio import AudioChunk
from companion_voice.ports.synthesizer import VoiceHint
from companion_voice.ports.transcriber import TranscriptEvent


SAMPLE_RATE = 16000
FRAME_DURATION_MS = 32
FRAME_SIZE = int(SAMPLE_RATE * FRAME_DURATION_MS / 1000)


def generate_silence(duration_ms: int = FRAME_DURATION_MS, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = FRAME_DURATION_MS,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16).tobytes()


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


def state_transitions(caplog) -> list[str]:
    return [
        r.getMessage().removeprefix("State: ")
        for r in caplog.records
        if r.getMessage().startswith("State: ")
    ]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEndpointDetector:
    def __init__(
        self,
        start_failures: int = 0,
        start_error: Exception | None = None,
        stop_delay: float = 0.0,
    ) -> None:
        self.start_calls = 0
        self.stop_calls = 0
        self.running = False
        self._start_failures = start_failures
        self._start_error = start_error
        self._stop_delay = stop_delay
        self._queue: asyncio.Queue[DetectorEvent] = asyncio.Queue()

    async def start(self) -> None:
        self.start_calls += 1
        if self._start_error is not None:
            raise self._start_error
        if self._start_failures > 0:
            self._start_failures -= 1
            raise DetectorTransientError("no active capture")
        self.running = True

    async def stop(self) -> None:
        self.stop_calls += 1
        if self._stop_delay:
            await asyncio.sleep(self._stop_delay)
        self.running = False
        while not self._queue.empty():
            self._queue.get_nowait()

    async def events(self) -> AsyncIterator[DetectorEvent]:
        while True:
            yield await self._queue.get()

    def emit(self, event: DetectorEvent) -> None:
        self._queue.put_nowait(event)


class FakeChat:
    def __init__(
        self,
        reply: str = "Hello there.",
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, object]] = []
        self.closed = False

    async def respond(self, utterance_text: str, profile) -> str:
        self.calls.append((utterance_text, profile))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    async def close(self) -> None:
        self.closed = True


class FakeSynthesizer:
    def __init__(
        self,
        chunks_per_sentence: int = 2,
        fail: bool = False,
        chunk: bytes = b"\x01\x00" * 240,
    ) -> None:
        self.chunks_per_sentence = chunks_per_sentence
        self.fail = fail
        self.chunk = chunk
        self.calls: list[tuple[str, VoiceHint]] = []

    async def synthesize(self, text: str, voice_hint: VoiceHint) -> AsyncIterator[bytes]:
        self.calls.append((text, voice_hint))
        if self.fail:
            raise SynthesisFailedError("voice unavailable")
        for _ in range(self.chunks_per_sentence):
            await asyncio.sleep(0)
            yield self.chunk


class FakePlaybackHandle:
    def __init__(self, chunk: AudioChunk, duration: float | None) -> None:
        self.chunk = chunk
        self.volumes: list[float] = []
        self.stopped = False
        self._duration = duration
        self._done = asyncio.Event()

    async def wait(self) -> None:
        try:
            await asyncio.wait_for(self._done.wait(), timeout=self._duration)
        except asyncio.TimeoutError:
            pass
        self._done.set()

    def set_volume(self, volume: float) -> None:
        self.volumes.append(volume)

    def stop(self) -> None:
        self.stopped = True
        self._done.set()

    def finish(self) -> None:
        self._done.set()


class FakeAudioOutput:
    """``chunk_duration=None`` keeps every chunk playing until stopped or finished."""

    def __init__(
        self,
        chunk_duration: float | None = 0.01,
        fail_sequences: tuple[int, ...] = (),
    ) -> None:
        self.chunk_duration = chunk_duration
        self.fail_sequences = set(fail_sequences)
        self.started = False
        self.played: list[AudioChunk] = []
        self.handles: list[FakePlaybackHandle] = []

    @property
    def played_sequences(self) -> list[int]:
        return [c.sequence for c in self.played]

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    def play(self, chunk: AudioChunk) -> FakePlaybackHandle:
        self.played.append(chunk)
        if chunk.sequence in self.fail_sequences:
            raise PlaybackChunkFailedError(f"chunk #{chunk.sequence} is corrupt")
        handle = FakePlaybackHandle(chunk, self.chunk_duration)
        self.handles.append(handle)
        return handle


class FakeVad:
    def __init__(self, probabilities: list[float] | None = None) -> None:
        self._probabilities = probabilities or []
        self._call_count = 0
        self.reset_count = 0

    def process_frame(self, audio_frame: bytes) -> float:
        if self._call_count < len(self._probabilities):
            prob = self._probabilities[self._call_count]
        else:
            prob = 0.0
        self._call_count += 1
        return prob

    def reset(self) -> None:
        self.reset_count += 1

    def set_probabilities(self, probabilities: list[float]) -> None:
        self._probabilities = probabilities
        self._call_count = 0


class FakeAudioCapture:
    def __init__(self, frames: list[bytes] | None = None, hold_open: bool = True) -> None:
        self._frames = frames or []
        self._hold_open = hold_open
        self.started = False
        self.start_error: Exception | None = None

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    @property
    def frame_size(self) -> int:
        return FRAME_SIZE

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def read_frames(self) -> AsyncIterator[bytes]:
        for frame in self._frames:
            await asyncio.sleep(0)
            yield frame
        if self._hold_open:
            await asyncio.Event().wait()


class FakeTranscriber:
    def __init__(self, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.session_active = False
        self.start_count = 0
        self.audio_received: list[bytes] = []
        self._queue: asyncio.Queue[TranscriptEvent] = asyncio.Queue()

    async def start_session(self) -> None:
        self.start_count += 1
        if self.fail_start:
            raise DetectorTransientError("recognizer unreachable")
        self.session_active = True

    async def send_audio(self, frame: bytes) -> None:
        self.audio_received.append(frame)

    async def get_transcripts(self) -> AsyncIterator[TranscriptEvent]:
        while True:
            yield await self._queue.get()

    async def close_session(self) -> None:
        self.session_active = False
        while not self._queue.empty():
            self._queue.get_nowait()

    def push(self, text: str, is_final: bool) -> None:
        self._queue.put_nowait(TranscriptEvent(text=text, is_final=is_final))


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_detector():
    return FakeEndpointDetector()


@pytest.fixture
def fake_chat():
    return FakeChat()


@pytest.fixture
def fake_synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def fake_output():
    return FakeAudioOutput()


@pytest.fixture
def fake_vad():
    return FakeVad()


@pytest.fixture
def fake_speech_detector(fake_vad):
    return SpeechDetector(
        vad=fake_vad,
        threshold=0.5,
        min_silence_ms=96,
        frame_duration_ms=FRAME_DURATION_MS,
    )


@pytest.fixture
def info_logs(caplog):
    caplog.set_level(logging.INFO, logger="companion_voice")
    return caplog
