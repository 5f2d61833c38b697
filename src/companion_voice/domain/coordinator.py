import asyncio
import logging
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from companion_voice.domain.deaf_window import DeafWindow
from companion_voice.domain.errors import (
    AiCallFailedError,
    CaptureUnavailableError,
    CompanionVoiceError,
    DetectorTransientError,
    ErrorKind,
    SynthesisFailedError,
    error_for_kind,
)
from companion_voice.domain.events import (
    DetectorError,
    DetectorEvent,
    FinalTranscript,
    PartialTranscript,
    SpeechEnded,
    SpeechStarted,
)
from companion_voice.domain.playback_queue import AudioPlaybackQueue
from companion_voice.domain.retry import RetryAborted, retry_with_backoff
from companion_voice.domain.silence_timer import SilenceTimer
from companion_voice.domain.state import TurnState, validate_transition
from companion_voice.domain.utterance import UtteranceBuffer
from companion_voice.ports.audio import AudioChunk
from companion_voice.ports.chat import ChatPort
from companion_voice.ports.endpoint_detector import EndpointDetectorPort
from companion_voice.ports.synthesizer import SynthesizerPort, VoiceHint

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_PHRASE = "I'm having a little trouble right now, but I'm here with you."

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


@dataclass
class Session:
    profile: Mapping[str, Any] | None
    voice_hint: VoiceHint
    active: bool = True


class TurnCoordinator:
    """Decides who holds the floor: the microphone, the AI round-trip, or playback.

    All detector events, timer firings and playback callbacks read the
    current state through this object. Deferred work captures the
    generation it was started under and is dropped once the generation has
    moved on (new turn, barge-in or session end).
    """

    def __init__(
        self,
        detector: EndpointDetectorPort,
        chat: ChatPort,
        synthesizer: SynthesizerPort,
        playback: AudioPlaybackQueue,
        fallback_synthesizer: SynthesizerPort | None = None,
        silence_threshold_ms: int = 1500,
        min_fragment_chars: int = 2,
        min_speech_ms: int = 250,
        deaf_period_ms: int = 500,
        barge_in_enabled: bool = True,
        chat_timeout_seconds: float = 20.0,
        fallback_phrase: str = DEFAULT_FALLBACK_PHRASE,
        default_voice: VoiceHint = VoiceHint.FEMALE,
        detector_restart_attempts: int = 5,
        detector_restart_delay_ms: int = 100,
        detector_restart_backoff: float = 2.0,
        on_speaking_state_changed: Callable[[bool], None] | None = None,
        on_session_error: Callable[[CompanionVoiceError], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._detector = detector
        self._chat = chat
        self._synthesizer = synthesizer
        self._fallback_synthesizer = fallback_synthesizer
        self._playback = playback

        self._min_fragment_chars = min_fragment_chars
        self._min_speech_ms = min_speech_ms
        self._barge_in_enabled = barge_in_enabled
        self._chat_timeout_seconds = chat_timeout_seconds
        self._fallback_phrase = fallback_phrase
        self._default_voice = default_voice
        self._restart_attempts = detector_restart_attempts
        self._restart_delay_seconds = detector_restart_delay_ms / 1000
        self._restart_backoff = detector_restart_backoff
        self._on_speaking_state_changed = on_speaking_state_changed
        self._on_session_error = on_session_error

        self._state = TurnState.IDLE
        self._session: Session | None = None
        self._generation = 0
        self._utterance = UtteranceBuffer()
        self._silence_timer = SilenceTimer(silence_threshold_ms / 1000, self._on_silence)
        self._deaf_window = DeafWindow(deaf_period_ms / 1000, clock=clock)
        self._speech_started_at: float | None = None
        self._synthesis_pending = False
        self._next_sequence = 0
        self._speaking = False
        self._last_error: CompanionVoiceError | None = None
        self._session_ended = asyncio.Event()
        self._released = asyncio.Event()
        self._released.set()
        self._flushing_detector = False

        self._event_pump_task: asyncio.Task | None = None
        self._turn_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._interrupt_task: asyncio.Task | None = None

        self._playback.set_callbacks(
            on_playback_started=self._on_playback_started,
            on_drained=self._on_playback_drained,
        )

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def utterance(self) -> UtteranceBuffer:
        return self._utterance

    @property
    def deaf_window(self) -> DeafWindow:
        return self._deaf_window

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    @property
    def last_error(self) -> CompanionVoiceError | None:
        return self._last_error

    @property
    def session_ended(self) -> asyncio.Event:
        return self._session_ended

    def _transition_to(self, target: TurnState) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target

    async def start_session(
        self,
        profile: Mapping[str, Any] | None = None,
        voice_hint: VoiceHint | None = None,
    ) -> None:
        if not self._released.is_set():
            logger.debug("Waiting for the previous session to release its devices")
            await self._released.wait()
        if self._state != TurnState.IDLE:
            logger.warning("Session already active (state=%s), ignoring start", self._state.name)
            return

        session = Session(profile=profile, voice_hint=voice_hint or self._default_voice)
        self._session = session
        self._generation += 1
        self._last_error = None
        self._session_ended.clear()
        self._flushing_detector = False
        self._utterance.clear()
        self._transition_to(TurnState.LISTENING)
        logger.info("Session started (voice=%s)", session.voice_hint.value)

        try:
            await self._playback.open()
            await self._start_detector(session)
        except RetryAborted:
            logger.info("Session ended while the detector was starting")
            return
        except DetectorTransientError as exc:
            await self.end_session()
            raise CaptureUnavailableError(f"Detector never became ready: {exc}") from exc
        except Exception:
            await self.end_session()
            raise

        if self._session is not session:
            if self._session is None:
                await self._stop_detector()
            return
        self._event_pump_task = asyncio.create_task(self._pump_events(session))

    async def end_session(self) -> None:
        session = self._session
        if session is None and self._state == TurnState.IDLE:
            logger.debug("end_session while idle, nothing to do")
            await self._released.wait()
            return

        self._released.clear()
        self._generation += 1
        self._session = None
        if session:
            session.active = False
        if self._state != TurnState.IDLE:
            self._transition_to(TurnState.IDLE)

        self._silence_timer.cancel()
        self._deaf_window.clear()
        self._utterance.clear()
        self._speech_started_at = None
        self._synthesis_pending = False
        self._flushing_detector = False
        for task in (
            self._event_pump_task,
            self._turn_task,
            self._restart_task,
            self._interrupt_task,
        ):
            _cancel_task(task)
        self._event_pump_task = None
        self._turn_task = None
        self._restart_task = None
        self._interrupt_task = None
        self._playback.hard_stop()
        self._set_speaking(False)
        logger.info("Session ended")

        try:
            await self._detector.stop()
            await self._playback.close()
        except Exception:
            logger.exception("Error while releasing audio devices")
        finally:
            self._released.set()
            self._session_ended.set()

    async def close(self) -> None:
        """End any session and release the chat client."""
        await self.end_session()
        await self._chat.close()

    async def handle_event(self, event: DetectorEvent) -> None:
        if self._session is None:
            logger.debug("Ignoring %s, no active session", type(event).__name__)
            return
        if self._flushing_detector and not isinstance(event, DetectorError):
            self._ignore(event, "detector restarting")
            return

        if isinstance(event, SpeechStarted):
            self._on_speech_started(event)
        elif isinstance(event, SpeechEnded):
            self._on_speech_ended(event)
        elif isinstance(event, PartialTranscript):
            self._on_partial_transcript(event)
        elif isinstance(event, FinalTranscript):
            self._on_final_transcript(event)
        elif isinstance(event, DetectorError):
            await self._on_detector_error(event)
        else:
            logger.warning("Unknown detector event: %r", event)

    async def _pump_events(self, session: Session) -> None:
        try:
            async for event in self._detector.events():
                if self._session is not session:
                    break
                await self.handle_event(event)
                if self._session is not session:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Detector event stream failed")
            if self._session is session:
                await self._fail_session(CaptureUnavailableError(f"Detector event stream failed: {exc}"))

    def _ignore(self, event: DetectorEvent, reason: str = "") -> None:
        logger.debug(
            "Ignoring %s in %s%s",
            type(event).__name__, self._state.name, f" ({reason})" if reason else "",
        )

    def _on_speech_started(self, event: SpeechStarted) -> None:
        if self._state == TurnState.LISTENING:
            self._begin_user_turn(event.timestamp)
        elif self._state == TurnState.USER_SPEAKING:
            self._silence_timer.cancel()
            self._speech_started_at = event.timestamp
        elif self._state == TurnState.AI_SPEAKING:
            if not self._barge_in_enabled:
                self._ignore(event, "barge-in disabled")
                return
            if self._deaf_window.is_deaf():
                self._ignore(
                    event, f"deaf window, {self._deaf_window.remaining_seconds() * 1000:.0f}ms left"
                )
                return
            self._barge_in()
            self._begin_user_turn(event.timestamp)
        else:
            self._ignore(event)

    def _on_speech_ended(self, event: SpeechEnded) -> None:
        if self._state != TurnState.USER_SPEAKING:
            self._ignore(event)
            return

        if self._speech_started_at is not None:
            burst_ms = (event.timestamp - self._speech_started_at) * 1000
            if burst_ms < self._min_speech_ms:
                logger.info("Speech burst too short (%.0fms), treating as noise", burst_ms)
                self._utterance.clear_interim()
        self._speech_started_at = None

        if self._utterance.is_empty():
            self._silence_timer.cancel()
            self._transition_to(TurnState.LISTENING)
        elif not self._silence_timer.armed:
            self._silence_timer.arm(self._generation)

    def _on_partial_transcript(self, event: PartialTranscript) -> None:
        text = event.text.strip()
        if not text:
            return
        if self._state == TurnState.LISTENING:
            self._begin_user_turn(event.timestamp)
        if self._state != TurnState.USER_SPEAKING:
            self._ignore(event)
            return

        if text != self._utterance.interim:
            logger.debug("Transcript (interim): %s", text)
        self._utterance.set_interim(text)
        if not self._utterance.is_empty():
            self._silence_timer.arm(self._generation)

    def _on_final_transcript(self, event: FinalTranscript) -> None:
        text = event.text.strip()
        if len(text) < self._min_fragment_chars:
            logger.debug("Discarding short fragment %r", text)
            return
        if self._state == TurnState.LISTENING:
            self._begin_user_turn(event.timestamp)
        if self._state != TurnState.USER_SPEAKING:
            self._ignore(event, repr(text))
            return

        logger.info("Transcript: %s", text)
        self._utterance.append_final(text)
        self._silence_timer.arm(self._generation)

    async def _on_detector_error(self, event: DetectorError) -> None:
        if event.kind.is_fatal:
            logger.error("Detector lost audio capture: %s", event.detail)
            await self._fail_session(error_for_kind(event.kind, event.detail))
            return

        if event.kind is not ErrorKind.DETECTOR_TRANSIENT:
            logger.warning("Unexpected detector error %s: %s", event.kind.name, event.detail)
            return

        listening_states = {TurnState.LISTENING, TurnState.USER_SPEAKING}
        if self._barge_in_enabled:
            listening_states.add(TurnState.AI_SPEAKING)
        if self._state not in listening_states:
            self._ignore(event, event.detail)
            return

        logger.warning("Detector transient error (%s), restarting", event.detail)
        self._resume_listening(restart=True)

    def _begin_user_turn(self, started_at: float) -> None:
        self._silence_timer.cancel()
        self._utterance.clear()
        self._speech_started_at = started_at
        self._transition_to(TurnState.USER_SPEAKING)

    async def _on_silence(self, generation: int) -> None:
        if generation != self._generation or self._session is None:
            logger.debug("Stale silence timer (generation %d), ignoring", generation)
            return
        if self._state != TurnState.USER_SPEAKING:
            logger.debug("Silence timer fired in %s, ignoring", self._state.name)
            return
        if self._utterance.is_empty():
            self._transition_to(TurnState.LISTENING)
            return
        await self._dispatch_utterance()

    async def _dispatch_utterance(self) -> None:
        session = self._session
        text = self._utterance.take()
        self._speech_started_at = None
        self._generation += 1
        generation = self._generation
        self._transition_to(TurnState.PROCESSING)
        logger.info("Utterance: %s", text)

        _cancel_task(self._restart_task)
        self._restart_task = None
        self._flushing_detector = False
        await self._stop_detector()
        if not self._is_current(generation):
            return
        self._turn_task = asyncio.create_task(self._run_turn(session, generation, text))

    async def _run_turn(self, session: Session, generation: int, text: str) -> None:
        try:
            reply = await self._request_reply(session, text)
            if not self._is_current(generation):
                logger.debug("Discarding stale reply (generation %d)", generation)
                return
            logger.info("Reply: %s", reply)

            self._synthesis_pending = True
            self._next_sequence = 0
            produced = await self._speak(session, generation, reply)
            if not self._is_current(generation):
                return
            self._synthesis_pending = False

            if not produced:
                logger.warning("No audio could be synthesized, returning to listening")
                self._transition_to(TurnState.LISTENING)
                self._resume_listening()
            elif not self._playback.is_playing:
                self._finish_reply()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during AI turn")
            if self._is_current(generation):
                self._recover_to_listening()

    async def _request_reply(self, session: Session, text: str) -> str:
        try:
            reply = await asyncio.wait_for(
                self._chat.respond(text, session.profile),
                timeout=self._chat_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "AI call timed out after %.1fs, using fallback phrase", self._chat_timeout_seconds
            )
            return self._fallback_phrase
        except AiCallFailedError as exc:
            logger.warning("AI call failed (%s), using fallback phrase", exc)
            return self._fallback_phrase

        if not reply or not reply.strip():
            logger.warning("AI returned an empty reply, using fallback phrase")
            return self._fallback_phrase
        return reply.strip()

    async def _speak(self, session: Session, generation: int, text: str) -> bool:
        use_fallback = False
        for sentence in _split_into_sentences(text):
            if not self._is_current(generation):
                break
            if not use_fallback:
                try:
                    await self._stream_sentence(self._synthesizer, sentence, session, generation)
                    continue
                except SynthesisFailedError as exc:
                    logger.warning("Synthesis failed (%s), switching to fallback voice", exc)
                    use_fallback = True

            if self._fallback_synthesizer is None:
                logger.error("No fallback voice configured, skipping: %s", sentence[:50])
                continue
            try:
                await self._stream_sentence(self._fallback_synthesizer, sentence, session, generation)
            except SynthesisFailedError as exc:
                logger.error("Fallback synthesis failed (%s), skipping: %s", exc, sentence[:50])

        return self._next_sequence > 0

    async def _stream_sentence(
        self,
        synthesizer: SynthesizerPort,
        sentence: str,
        session: Session,
        generation: int,
    ) -> None:
        produced = 0
        try:
            async for data in synthesizer.synthesize(sentence, session.voice_hint):
                if not self._is_current(generation):
                    return
                if data:
                    self._enqueue_audio(data)
                    produced += 1
        except SynthesisFailedError as exc:
            if produced == 0:
                raise
            logger.warning("Synthesis broke off after %d chunks: %s", produced, exc)

    def _enqueue_audio(self, data: bytes) -> None:
        if self._state == TurnState.PROCESSING:
            self._transition_to(TurnState.AI_SPEAKING)
            self._deaf_window.arm()
            if self._barge_in_enabled:
                self._resume_listening()
        self._playback.enqueue(AudioChunk(data=data, sequence=self._next_sequence))
        self._next_sequence += 1

    def _on_playback_started(self) -> None:
        if self._state != TurnState.AI_SPEAKING:
            logger.debug("Playback started in %s, ignoring", self._state.name)
            return
        self._deaf_window.arm()
        self._set_speaking(True)

    def _on_playback_drained(self) -> None:
        if self._state != TurnState.AI_SPEAKING:
            logger.debug("Playback drained in %s, ignoring", self._state.name)
            return
        if self._synthesis_pending:
            logger.debug("Playback caught up with synthesis, waiting for more audio")
            return
        self._finish_reply()

    def _finish_reply(self) -> None:
        self._deaf_window.clear()
        self._transition_to(TurnState.LISTENING)
        self._utterance.clear()
        self._set_speaking(False)
        self._resume_listening(restart=True)

    def _barge_in(self) -> None:
        logger.info("Barge-in: user took the floor")
        self._generation += 1
        self._synthesis_pending = False
        _cancel_task(self._turn_task)
        self._turn_task = None
        self._deaf_window.clear()
        self._transition_to(TurnState.LISTENING)
        self._utterance.clear()
        self._set_speaking(False)
        self._interrupt_task = asyncio.create_task(self._playback.interrupt())

    def _recover_to_listening(self) -> None:
        self._synthesis_pending = False
        if self._state == TurnState.AI_SPEAKING:
            self._playback.hard_stop()
            self._deaf_window.clear()
            self._set_speaking(False)
        if self._state in (TurnState.PROCESSING, TurnState.AI_SPEAKING):
            self._transition_to(TurnState.LISTENING)
        self._utterance.clear()
        self._resume_listening(restart=True)

    def _resume_listening(self, restart: bool = False) -> None:
        """Arm the detector, or with ``restart`` stop it first to drop anything it still holds.

        Events delivered while a restart is pending belong to the previous
        run and are ignored.
        """
        session = self._session
        if session is None:
            return
        pending = self._restart_task
        if pending is not None and pending.done():
            pending = None
        if pending is not None and not restart:
            logger.debug("Detector restart already in progress")
            return
        if restart:
            self._flushing_detector = True
        self._restart_task = asyncio.create_task(
            self._restart_detector(session, restart, after=pending)
        )

    async def _restart_detector(
        self,
        session: Session,
        restart: bool,
        after: asyncio.Task | None = None,
    ) -> None:
        if after is not None:
            await asyncio.wait({after})
        try:
            if restart:
                await self._stop_detector()
                if self._session is session:
                    self._flushing_detector = False
            await self._start_detector(session)
        except RetryAborted:
            return
        except CompanionVoiceError as exc:
            await self._fail_session(exc)

    async def _start_detector(self, session: Session) -> None:
        await retry_with_backoff(
            self._detector.start,
            max_attempts=self._restart_attempts,
            initial_delay=self._restart_delay_seconds,
            backoff=self._restart_backoff,
            retry_on=(DetectorTransientError,),
            should_continue=lambda: self._session is session,
            description="Detector start",
        )

    async def _stop_detector(self) -> None:
        try:
            await self._detector.stop()
        except Exception:
            logger.exception("Error stopping detector")

    async def _fail_session(self, error: CompanionVoiceError) -> None:
        logger.error("Session failed: %s", error)
        self._last_error = error
        await self.end_session()
        if self._on_session_error:
            try:
                self._on_session_error(error)
            except Exception:
                logger.exception("Session error callback failed")

    def _set_speaking(self, speaking: bool) -> None:
        if speaking == self._speaking:
            return
        self._speaking = speaking
        if self._on_speaking_state_changed:
            try:
                self._on_speaking_state_changed(speaking)
            except Exception:
                logger.exception("Speaking state callback failed")

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._session is not None


def _cancel_task(task: asyncio.Task | None) -> None:
    if task and not task.done() and task is not asyncio.current_task():
        task.cancel()


def _split_into_sentences(text: str) -> list[str]:
    sentences = [part.strip() for part in _SENTENCE_END.split(text)]
    return [s for s in sentences if s] or [text.strip()]
