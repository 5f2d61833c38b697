import logging
from collections.abc import Callable

from companion_voice.adapters.deepgram_stt import DeepgramStreamingTranscriber
from companion_voice.adapters.silero_vad import SileroVad
from companion_voice.adapters.sounddevice_audio import SounddeviceCapture, SounddeviceOutput
from companion_voice.adapters.vad_endpoint_detector import VadEndpointDetector
from companion_voice.config import CompanionVoiceConfig
from companion_voice.domain.conversation import ConversationHistory
from companion_voice.domain.coordinator import TurnCoordinator
from companion_voice.domain.errors import CompanionVoiceError
from companion_voice.domain.playback_queue import AudioPlaybackQueue
from companion_voice.domain.speech_detector import SpeechDetector
from companion_voice.ports.chat import ChatPort
from companion_voice.ports.endpoint_detector import EndpointDetectorPort
from companion_voice.ports.synthesizer import SynthesizerPort, VoiceHint

logger = logging.getLogger(__name__)


def create_detector(config: CompanionVoiceConfig) -> EndpointDetectorPort:
    capture = SounddeviceCapture(
        device=config.capture_device,
        sample_rate=config.sample_rate,
        frame_duration_ms=config.frame_duration_ms,
    )
    vad = SileroVad(model_path=config.vad_model_path, sample_rate=config.sample_rate)
    speech_detector = SpeechDetector(
        vad=vad,
        threshold=config.vad_threshold,
        min_silence_ms=config.vad_min_silence_ms,
        frame_duration_ms=config.frame_duration_ms,
    )
    transcriber = DeepgramStreamingTranscriber(
        api_key=config.read_secret(config.deepgram_api_key_file),
        sample_rate=config.sample_rate,
        language=config.language,
    )
    return VadEndpointDetector(
        capture=capture,
        speech_detector=speech_detector,
        transcriber=transcriber,
        frame_duration_ms=config.frame_duration_ms,
    )


def create_chat(config: CompanionVoiceConfig) -> ChatPort:
    if config.chat_engine == "anthropic":
        from companion_voice.adapters.anthropic_chat import AnthropicChatClient

        return AnthropicChatClient(
            api_key=config.read_secret(config.anthropic_api_key_file),
            model=config.model,
            system_prompt=config.system_prompt,
            history=ConversationHistory(max_turns=config.max_history_turns),
        )

    from companion_voice.adapters.http_chat import HttpChatClient

    return HttpChatClient(
        gateway_url=config.gateway_url,
        token=config.read_secret(config.gateway_token_file),
        timeout=config.chat_timeout_seconds,
    )


def create_synthesizers(
    config: CompanionVoiceConfig,
) -> tuple[SynthesizerPort, SynthesizerPort | None]:
    """Primary voice plus the local fallback, or no fallback when Edge TTS is primary."""
    from companion_voice.adapters.edge_tts_synthesizer import EdgeTtsSynthesizer

    fallback = EdgeTtsSynthesizer(
        voices=config.fallback_voices,
        sample_rate=config.output_sample_rate,
    )
    if config.tts_engine == "edge-tts":
        return fallback, None

    from companion_voice.adapters.openai_tts import OpenAITtsSynthesizer

    primary = OpenAITtsSynthesizer(
        api_key=config.read_secret(config.openai_api_key_file),
        voices=config.tts_voices,
    )
    return primary, fallback


def create_coordinator(
    config: CompanionVoiceConfig,
    on_session_error: Callable[[CompanionVoiceError], None] | None = None,
) -> TurnCoordinator:
    output = SounddeviceOutput(
        sample_rate=config.output_sample_rate,
        device=config.output_device or None,
    )
    playback = AudioPlaybackQueue(output, fade_out_seconds=config.fade_out_ms / 1000)
    synthesizer, fallback_synthesizer = create_synthesizers(config)

    logger.info(
        "Building coordinator (chat=%s, tts=%s, barge_in=%s)",
        config.chat_engine, config.tts_engine, config.barge_in_enabled,
    )
    return TurnCoordinator(
        detector=create_detector(config),
        chat=create_chat(config),
        synthesizer=synthesizer,
        playback=playback,
        fallback_synthesizer=fallback_synthesizer,
        silence_threshold_ms=config.silence_threshold_ms,
        min_fragment_chars=config.min_fragment_chars,
        min_speech_ms=config.min_speech_ms,
        deaf_period_ms=config.deaf_period_ms,
        barge_in_enabled=config.barge_in_enabled,
        chat_timeout_seconds=config.chat_timeout_seconds,
        fallback_phrase=config.fallback_phrase,
        default_voice=VoiceHint(config.default_voice),
        detector_restart_attempts=config.detector_restart_attempts,
        detector_restart_delay_ms=config.detector_restart_delay_ms,
        detector_restart_backoff=config.detector_restart_backoff,
        on_session_error=on_session_error,
    )
