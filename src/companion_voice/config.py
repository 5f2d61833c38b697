from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from companion_voice.domain.coordinator import DEFAULT_FALLBACK_PHRASE


class CompanionVoiceConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="COMPANION_VOICE_")

    silence_threshold_ms: int = 1500
    min_fragment_chars: int = 2
    min_speech_ms: int = 250
    deaf_period_ms: int = 500
    fade_out_ms: int = 200
    barge_in_enabled: bool = True
    detector_restart_attempts: int = 5
    detector_restart_delay_ms: int = 100
    detector_restart_backoff: float = 2.0
    chat_timeout_seconds: float = 20.0
    fallback_phrase: str = DEFAULT_FALLBACK_PHRASE
    default_voice: Literal["male", "female"] = "female"

    chat_engine: Literal["http", "anthropic"] = "http"
    gateway_url: str = "http://localhost:3000"
    gateway_token_file: str = ""
    anthropic_api_key_file: str = ""
    model: str = "claude-sonnet-4-5"
    max_history_turns: int = 20

    system_prompt: str = (
        "You are a warm, patient companion having a spoken conversation. "
        "Keep replies short and gentle, one to three sentences. "
        "Never include markdown, lists, URLs, or any formatting."
    )

    tts_engine: Literal["openai", "edge-tts"] = "openai"
    openai_api_key_file: str = ""
    tts_voices: dict[str, str] = {"female": "nova", "male": "onyx"}
    fallback_voices: dict[str, str] = {
        "female": "en-US-JennyNeural",
        "male": "en-US-GuyNeural",
    }

    deepgram_api_key_file: str = ""
    language: str = "en-US"

    capture_device: str = ""
    output_device: str = ""
    sample_rate: int = 16000
    frame_duration_ms: int = 32
    output_sample_rate: int = 24000

    vad_threshold: float = 0.5
    vad_min_silence_ms: int = 600
    vad_model_path: str = ""

    socket_path: str = "/tmp/companion-voice.sock"
    log_file: str = "/tmp/companion-voice.log"

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""
