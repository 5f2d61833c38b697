import logging
from dataclasses import dataclass

import numpy as np
import sounddevice as sd

from companion_voice.config import CompanionVoiceConfig

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = {"input_device", "output_device", "vad_model", "api_keys"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: CompanionVoiceConfig) -> list[HealthCheckResult]:
    results = [
        _check_input_device(config),
        _check_output_device(config),
        _check_vad_model(config),
        _check_api_keys(config),
    ]

    passed = sum(1 for r in results if r.passed)
    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _check_input_device(config: CompanionVoiceConfig) -> HealthCheckResult:
    name = "input_device"
    try:
        if config.capture_device:
            for dev in sd.query_devices():
                if config.capture_device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    return HealthCheckResult(name=name, passed=True, detail=f"Device '{dev['name']}' found")
        default = sd.query_devices(kind="input")
        detail = f"Default input: {default['name']}"
        if config.capture_device:
            detail = f"'{config.capture_device}' not in PortAudio (will use PIPEWIRE_NODE), {detail}"
        return HealthCheckResult(name=name, passed=True, detail=detail)
    except sd.PortAudioError:
        return HealthCheckResult(name=name, passed=False, detail="No input devices available")
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_output_device(config: CompanionVoiceConfig) -> HealthCheckResult:
    name = "output_device"
    try:
        device = sd.query_devices(config.output_device or None, kind="output")
        sd.check_output_settings(
            device=config.output_device or None,
            samplerate=config.output_sample_rate,
            channels=1,
            dtype="int16",
        )
        return HealthCheckResult(
            name=name, passed=True, detail=f"{device['name']} @ {config.output_sample_rate} Hz"
        )
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_vad_model(config: CompanionVoiceConfig) -> HealthCheckResult:
    name = "vad_model"
    try:
        from companion_voice.adapters.silero_vad import SileroVad

        vad = SileroVad(model_path=config.vad_model_path, sample_rate=config.sample_rate)
        frame_samples = int(config.sample_rate * config.frame_duration_ms / 1000)
        silence = np.zeros(frame_samples, dtype=np.int16).tobytes()
        prob = vad.process_frame(silence)

        if prob > 0.3:
            return HealthCheckResult(name=name, passed=False, detail=f"Silence gave prob={prob:.4f}, model may be broken")
        return HealthCheckResult(name=name, passed=True, detail=f"Loaded, silence prob={prob:.4f}")
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_api_keys(config: CompanionVoiceConfig) -> HealthCheckResult:
    name = "api_keys"
    missing = []

    if not config.read_secret(config.deepgram_api_key_file):
        missing.append(f"deepgram ({config.deepgram_api_key_file or 'not configured'})")

    if config.tts_engine == "openai" and not config.read_secret(config.openai_api_key_file):
        missing.append(f"openai ({config.openai_api_key_file or 'not configured'})")

    if config.chat_engine == "anthropic" and not config.read_secret(config.anthropic_api_key_file):
        missing.append(f"anthropic ({config.anthropic_api_key_file or 'not configured'})")

    if missing:
        return HealthCheckResult(name=name, passed=False, detail=f"Missing: {', '.join(missing)}")
    return HealthCheckResult(name=name, passed=True, detail="All API keys loaded")
