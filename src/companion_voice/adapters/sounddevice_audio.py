import asyncio
import logging
import os
import threading
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd

from companion_voice.domain.errors import CaptureUnavailableError, PlaybackChunkFailedError
from companion_voice.ports.audio import AudioChunk

logger = logging.getLogger(__name__)


class SounddeviceCapture:
    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = 16000,
        frame_duration_ms: int = 32,
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._frame_duration_ms = frame_duration_ms
        self._frame_size = int(sample_rate * frame_duration_ms / 1000)
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[bytes] | None = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    async def start(self) -> None:
        if self._stream is not None:
            return
        self._queue = janus.Queue(maxsize=100)
        queue = self._queue

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            pcm_bytes = (indata[:, 0] * 32767).astype(np.int16).tobytes()
            try:
                queue.sync_q.put_nowait(pcm_bytes)
            except janus.SyncQueueFull:
                pass

        device = self._resolve_device()
        try:
            self._stream = sd.InputStream(
                device=device,
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._frame_size,
                callback=audio_callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._stream = None
            self._queue.close()
            self._queue = None
            raise CaptureUnavailableError(f"Cannot open microphone: {exc}") from exc

        logger.info(
            "Audio capture started (device=%s, rate=%d, frame=%dms)",
            device, self._sample_rate, self._frame_duration_ms,
        )

    async def stop(self) -> None:
        if self._stream:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        if self._queue:
            self._queue.close()
            self._queue = None

    async def read_frames(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if not queue:
            return
        while True:
            try:
                frame = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
                yield frame
            except asyncio.TimeoutError:
                if self._queue is not queue:
                    break
            except janus.AsyncQueueShutDown:
                break

    def _resolve_device(self) -> str | int | None:
        if self._device is None or self._device == "":
            return None
        if isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        for i, dev in enumerate(sd.query_devices()):
            if self._device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", self._device, i, dev["name"])
                return i
        os.environ["PIPEWIRE_NODE"] = self._device
        logger.info("Device '%s' not in PortAudio, set PIPEWIRE_NODE for PipeWire routing", self._device)
        return None


class _PcmSource:
    """One chunk being rendered by the output stream's audio thread."""

    def __init__(self, samples: np.ndarray, loop: asyncio.AbstractEventLoop) -> None:
        self._samples = samples
        self._loop = loop
        self._position = 0
        self._volume = 1.0
        self._lock = threading.Lock()
        self._finished = asyncio.Event()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    async def wait(self) -> None:
        await self._finished.wait()

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self._volume = min(1.0, max(0.0, volume))

    def stop(self) -> None:
        with self._lock:
            self._position = len(self._samples)
        self._finished.set()

    def render(self, frames: int) -> np.ndarray:
        with self._lock:
            start = self._position
            end = min(start + frames, len(self._samples))
            self._position = end
            block = self._samples[start:end]
            if self._volume < 1.0:
                block = (block.astype(np.float32) * self._volume).astype(np.int16)
            exhausted = end >= len(self._samples)
        if exhausted:
            self._loop.call_soon_threadsafe(self._finished.set)
        return block


class SounddeviceOutput:
    """Persistent output stream playing one chunk source at a time."""

    def __init__(self, sample_rate: int = 24000, device: str | int | None = None) -> None:
        self._sample_rate = sample_rate
        self._device = device if device != "" else None
        self._stream: sd.OutputStream | None = None
        self._source: _PcmSource | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def start(self) -> None:
        if self._stream is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._stream = sd.OutputStream(
            device=self._device,
            samplerate=self._sample_rate,
            channels=1,
            dtype="int16",
            callback=self._render,
        )
        self._stream.start()
        logger.info("Audio output started (rate=%d)", self._sample_rate)

    async def stop(self) -> None:
        if self._source:
            self._source.stop()
            self._source = None
        if self._stream:
            self._stream.stop()
            self._stream.close()
            self._stream = None

    def play(self, chunk: AudioChunk) -> _PcmSource:
        if self._stream is None or self._loop is None:
            raise PlaybackChunkFailedError("Output stream is not started")
        if len(chunk.data) % 2:
            raise PlaybackChunkFailedError(f"Chunk #{chunk.sequence} is not 16-bit PCM")
        samples = np.frombuffer(chunk.data, dtype=np.int16)
        source = _PcmSource(samples, self._loop)
        self._source = source
        return source

    def _render(self, outdata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug("Audio output status: %s", status)
        outdata.fill(0)
        source = self._source
        if source is None or source.finished:
            return
        block = source.render(frames)
        outdata[: len(block), 0] = block
