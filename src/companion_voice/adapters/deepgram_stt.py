import asyncio
import logging
from collections.abc import AsyncIterator

from deepgram import AsyncDeepgramClient
from deepgram.extensions.types.sockets.listen_v1_results_event import ListenV1ResultsEvent
from deepgram.listen.v1.socket_client import EventType

from companion_voice.domain.errors import DetectorTransientError
from companion_voice.ports.transcriber import TranscriptEvent

logger = logging.getLogger(__name__)


class DeepgramStreamingTranscriber:
    def __init__(
        self,
        api_key: str,
        sample_rate: int = 16000,
        language: str = "en-US",
        model: str = "nova-2",
    ) -> None:
        self._api_key = api_key
        self._sample_rate = sample_rate
        self._language = language
        self._model = model
        self._socket = None
        self._context_manager = None
        self._transcript_queue: asyncio.Queue[TranscriptEvent] = asyncio.Queue()
        self._listener_task: asyncio.Task | None = None

    @property
    def session_active(self) -> bool:
        return self._socket is not None

    async def start_session(self) -> None:
        if self._socket is not None:
            await self.close_session()

        client = AsyncDeepgramClient(api_key=self._api_key)
        self._context_manager = client.listen.v1.connect(
            model=self._model,
            language=self._language,
            encoding="linear16",
            sample_rate=str(self._sample_rate),
            channels="1",
            interim_results="true",
            smart_format="true",
            endpointing="300",
        )
        try:
            self._socket = await self._context_manager.__aenter__()
        except Exception as exc:
            self._context_manager = None
            raise DetectorTransientError(f"Deepgram connection failed: {exc}") from exc

        self._socket.on(EventType.MESSAGE, self._on_message)
        self._socket.on(EventType.ERROR, self._on_error)
        self._listener_task = asyncio.create_task(self._socket.start_listening())
        logger.info("Deepgram session started")

    async def send_audio(self, frame: bytes) -> None:
        if self._socket is None:
            return
        try:
            await self._socket._send(frame)
        except Exception as exc:
            raise DetectorTransientError(f"Deepgram send failed: {exc}") from exc

    async def get_transcripts(self) -> AsyncIterator[TranscriptEvent]:
        while True:
            yield await self._transcript_queue.get()

    async def close_session(self) -> None:
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.debug("Deepgram listener ended with an error", exc_info=True)
        self._listener_task = None

        if self._context_manager:
            try:
                await self._context_manager.__aexit__(None, None, None)
            except Exception:
                logger.debug("Deepgram socket close failed", exc_info=True)
        if self._socket is not None:
            logger.info("Deepgram session closed")
        self._context_manager = None
        self._socket = None

        dropped = 0
        while not self._transcript_queue.empty():
            self._transcript_queue.get_nowait()
            dropped += 1
        if dropped:
            logger.debug("Dropped %d undelivered transcripts", dropped)

    async def _on_message(self, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            return
        try:
            transcript = message.channel.alternatives[0].transcript
        except (IndexError, AttributeError):
            return
        if not transcript:
            return
        await self._transcript_queue.put(
            TranscriptEvent(text=transcript, is_final=bool(message.is_final or message.speech_final))
        )

    async def _on_error(self, error) -> None:
        logger.error("Deepgram error: %s", error)
