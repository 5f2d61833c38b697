import asyncio
import collections
import logging
from collections.abc import AsyncIterator

from companion_voice.domain.errors import DetectorTransientError, ErrorKind
from companion_voice.domain.events import (
    DetectorError,
    DetectorEvent,
    FinalTranscript,
    PartialTranscript,
    SpeechEnded,
    SpeechStarted,
)
from companion_voice.domain.speech_detector import SpeechDetector, SpeechEvent
from companion_voice.ports.audio import AudioCapturePort
from companion_voice.ports.transcriber import TranscriberPort

logger = logging.getLogger(__name__)


class VadEndpointDetector:
    """Endpoint detector that gates a streaming recognizer with a local VAD.

    Speech edges come from the VAD so they arrive without network latency.
    The recognizer session is opened on the first detected speech and is
    fed a short pre-roll so the first syllable is not lost.
    """

    def __init__(
        self,
        capture: AudioCapturePort,
        speech_detector: SpeechDetector,
        transcriber: TranscriberPort,
        pre_roll_ms: int = 300,
        frame_duration_ms: int = 32,
    ) -> None:
        self._capture = capture
        self._speech_detector = speech_detector
        self._transcriber = transcriber
        self._pre_roll: collections.deque[bytes] = collections.deque(
            maxlen=max(1, pre_roll_ms // frame_duration_ms),
        )
        self._events: asyncio.Queue[DetectorEvent] = asyncio.Queue()
        self._running = False
        self._transcriber_open = False
        self._frame_task: asyncio.Task | None = None
        self._transcript_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.debug("Endpoint detector already started")
            return
        await self._capture.start()
        self._speech_detector.reset()
        self._pre_roll.clear()
        self._running = True
        self._frame_task = asyncio.create_task(self._frame_loop())
        self._transcript_task = asyncio.create_task(self._transcript_loop())
        logger.info("Endpoint detector started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for task in (self._frame_task, self._transcript_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._frame_task = None
        self._transcript_task = None
        await self._close_transcriber()
        await self._capture.stop()

        discarded = 0
        while not self._events.empty():
            self._events.get_nowait()
            discarded += 1
        logger.info("Endpoint detector stopped (discarded %d undelivered events)", discarded)

    async def events(self) -> AsyncIterator[DetectorEvent]:
        while True:
            yield await self._events.get()

    def _emit(self, event: DetectorEvent) -> None:
        if self._running:
            self._events.put_nowait(event)

    async def _frame_loop(self) -> None:
        try:
            async for frame in self._capture.read_frames():
                speech_event = self._speech_detector.process_frame(frame)
                if speech_event == SpeechEvent.SPEECH_START:
                    self._emit(SpeechStarted())
                    await self._open_transcriber()
                elif speech_event == SpeechEvent.SPEECH_END:
                    self._emit(SpeechEnded())

                if self._transcriber_open:
                    await self._send_to_transcriber(frame)
                else:
                    self._pre_roll.append(frame)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Audio frame loop failed")
            self._emit(DetectorError(kind=ErrorKind.DETECTOR_TRANSIENT, detail=str(exc)))
            return

        if self._running:
            logger.warning("Audio capture ended unexpectedly")
            self._emit(DetectorError(kind=ErrorKind.DETECTOR_TRANSIENT, detail="capture ended"))

    async def _transcript_loop(self) -> None:
        async for transcript in self._transcriber.get_transcripts():
            if not transcript.text.strip():
                continue
            if transcript.is_final:
                self._emit(FinalTranscript(text=transcript.text))
            else:
                self._emit(PartialTranscript(text=transcript.text))

    async def _open_transcriber(self) -> None:
        if self._transcriber_open:
            return
        try:
            await self._transcriber.start_session()
        except DetectorTransientError as exc:
            logger.warning("Recognizer unavailable: %s", exc)
            self._emit(DetectorError(kind=ErrorKind.DETECTOR_TRANSIENT, detail=str(exc)))
            return
        self._transcriber_open = True
        pre_roll = list(self._pre_roll)
        self._pre_roll.clear()
        for buffered in pre_roll:
            await self._send_to_transcriber(buffered)

    async def _send_to_transcriber(self, frame: bytes) -> None:
        try:
            await self._transcriber.send_audio(frame)
        except DetectorTransientError as exc:
            logger.warning("Recognizer dropped: %s", exc)
            await self._close_transcriber()
            self._emit(DetectorError(kind=ErrorKind.DETECTOR_TRANSIENT, detail=str(exc)))

    async def _close_transcriber(self) -> None:
        if not self._transcriber_open:
            return
        self._transcriber_open = False
        await self._transcriber.close_session()
