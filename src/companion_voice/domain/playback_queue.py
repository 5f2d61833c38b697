import asyncio
import collections
import logging
from collections.abc import Callable

from companion_voice.domain.errors import PlaybackChunkFailedError
from companion_voice.ports.audio import AudioChunk, AudioOutputPort, PlaybackHandle

logger = logging.getLogger(__name__)

DEFAULT_FADE_OUT_SECONDS = 0.2
DEFAULT_FADE_STEPS = 10


class AudioPlaybackQueue:
    """Strict FIFO player for synthesized audio chunks.

    Owns the single player task and the single live playback handle. A
    chunk leaves the pending deque the moment it is picked for playback, so
    it can never be played twice, even when its playback fails.

    ``on_playback_started`` fires when the first chunk of a burst starts.
    ``on_drained`` fires once each time a burst ends with nothing left to
    play, including after ``interrupt()``. ``hard_stop()`` never fires it.
    """

    def __init__(
        self,
        output: AudioOutputPort,
        fade_out_seconds: float = DEFAULT_FADE_OUT_SECONDS,
        fade_steps: int = DEFAULT_FADE_STEPS,
    ) -> None:
        self._output = output
        self._fade_out_seconds = fade_out_seconds
        self._fade_steps = max(1, fade_steps)
        self._pending: collections.deque[AudioChunk] = collections.deque()
        self._current: AudioChunk | None = None
        self._handle: PlaybackHandle | None = None
        self._player_task: asyncio.Task | None = None
        self._interrupted = False
        self._on_playback_started: Callable[[], None] | None = None
        self._on_drained: Callable[[], None] | None = None

    @property
    def is_playing(self) -> bool:
        return self._player_task is not None and not self._player_task.done()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def current(self) -> AudioChunk | None:
        return self._current

    def set_callbacks(
        self,
        on_playback_started: Callable[[], None] | None = None,
        on_drained: Callable[[], None] | None = None,
    ) -> None:
        self._on_playback_started = on_playback_started
        self._on_drained = on_drained

    async def open(self) -> None:
        await self._output.start()

    async def close(self) -> None:
        self.hard_stop()
        await self._output.stop()

    def enqueue(self, chunk: AudioChunk) -> None:
        self._pending.append(chunk)
        logger.debug(
            "Enqueued chunk #%d (%d bytes, %d pending)",
            chunk.sequence, len(chunk.data), len(self._pending),
        )
        if not self.is_playing:
            self._player_task = asyncio.create_task(self._play_burst())

    async def interrupt(self) -> None:
        discarded = len(self._pending)
        self._pending.clear()
        handle = self._handle
        if handle is None:
            if self.is_playing:
                # The burst was scheduled but has not started a chunk yet.
                self._interrupted = True
            logger.debug("Interrupt with nothing playing (discarded %d)", discarded)
            return

        logger.info("Fading out playback (discarded %d pending chunks)", discarded)
        step_delay = self._fade_out_seconds / self._fade_steps
        for step in range(self._fade_steps - 1, -1, -1):
            if self._handle is not handle:
                return
            handle.set_volume(step / self._fade_steps)
            await asyncio.sleep(step_delay)
        if self._handle is handle:
            handle.stop()

    def hard_stop(self) -> None:
        discarded = len(self._pending)
        self._pending.clear()
        if self._handle is not None:
            self._handle.stop()
            self._handle = None
        if self._player_task and not self._player_task.done():
            if self._player_task is not asyncio.current_task():
                self._player_task.cancel()
        self._player_task = None
        self._current = None
        self._interrupted = False
        if discarded:
            logger.info("Playback stopped, discarded %d pending chunks", discarded)

    async def _play_burst(self) -> None:
        burst_started = False
        dequeued_any = False

        while self._pending:
            chunk = self._pending.popleft()
            dequeued_any = True
            self._current = chunk
            try:
                self._handle = self._output.play(chunk)
                if not burst_started:
                    burst_started = True
                    self._notify(self._on_playback_started)
                await self._handle.wait()
            except PlaybackChunkFailedError as exc:
                logger.warning("Skipping chunk #%d: %s", chunk.sequence, exc)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error playing chunk #%d", chunk.sequence)
            finally:
                self._handle = None
                self._current = None

        self._player_task = None
        interrupted = self._interrupted
        self._interrupted = False
        if dequeued_any or interrupted:
            logger.debug("Playback drained")
            self._notify(self._on_drained)

    @staticmethod
    def _notify(callback: Callable[[], None] | None) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Playback callback failed")
