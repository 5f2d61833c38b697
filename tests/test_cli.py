import json

import pytest

from companion_voice.__main__ import _load_profile, make_control_handler
from companion_voice.config import CompanionVoiceConfig
from companion_voice.domain.coordinator import DEFAULT_FALLBACK_PHRASE, TurnCoordinator
from companion_voice.domain.errors import CaptureUnavailableError
from companion_voice.domain.playback_queue import AudioPlaybackQueue
from companion_voice.ports.control import ControlCommand
from companion_voice.ports.synthesizer import VoiceHint
from tests.conftest import FakeAudioOutput, FakeChat, FakeEndpointDetector, FakeSynthesizer


def make_coordinator(detector=None) -> TurnCoordinator:
    return TurnCoordinator(
        detector=detector or FakeEndpointDetector(),
        chat=FakeChat(),
        synthesizer=FakeSynthesizer(),
        playback=AudioPlaybackQueue(FakeAudioOutput()),
        detector_restart_delay_ms=1,
    )


class TestConfig:
    def test_defaults(self):
        config = CompanionVoiceConfig()
        assert config.silence_threshold_ms == 1500
        assert config.min_fragment_chars == 2
        assert config.default_voice == "female"
        assert config.fallback_phrase == DEFAULT_FALLBACK_PHRASE
        assert config.barge_in_enabled

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("COMPANION_VOICE_SILENCE_THRESHOLD_MS", "900")
        monkeypatch.setenv("COMPANION_VOICE_BARGE_IN_ENABLED", "false")
        monkeypatch.setenv("COMPANION_VOICE_CHAT_ENGINE", "anthropic")

        config = CompanionVoiceConfig()

        assert config.silence_threshold_ms == 900
        assert not config.barge_in_enabled
        assert config.chat_engine == "anthropic"

    def test_read_secret(self, tmp_path):
        key_file = tmp_path / "key"
        key_file.write_text("  sk-test\n")
        config = CompanionVoiceConfig()

        assert config.read_secret(str(key_file)) == "sk-test"
        assert config.read_secret(str(tmp_path / "missing")) == ""
        assert config.read_secret("") == ""


class TestProfileLoading:
    def test_no_path(self):
        assert _load_profile(None) is None

    def test_json_object(self, tmp_path):
        path = tmp_path / "profile.json"
        path.write_text(json.dumps({"name": "Rose", "age": 84}))
        assert _load_profile(str(path)) == {"name": "Rose", "age": 84}

    def test_non_object_is_rejected(self, tmp_path):
        path = tmp_path / "profile.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            _load_profile(str(path))


class TestControlHandler:
    @pytest.mark.asyncio
    async def test_start_status_end(self):
        coordinator = make_coordinator()
        handle = make_control_handler(coordinator, {"name": "Rose"}, None)

        started = await handle(ControlCommand(action="start", payload={"voice": "male"}))
        assert started["state"] == "LISTENING"
        assert started["session_active"]
        assert coordinator.session.profile == {"name": "Rose"}
        assert coordinator.session.voice_hint == VoiceHint.MALE

        status = await handle(ControlCommand(action="status"))
        assert status == {"status": "ok", "state": "LISTENING", "session_active": True, "speaking": False}

        ended = await handle(ControlCommand(action="end"))
        assert ended["state"] == "IDLE"
        assert not ended["session_active"]

    @pytest.mark.asyncio
    async def test_start_reports_capture_failure(self):
        detector = FakeEndpointDetector(start_error=CaptureUnavailableError("no microphone"))
        handle = make_control_handler(make_coordinator(detector), None, None)

        result = await handle(ControlCommand(action="start"))

        assert result == {"status": "error", "error": "no microphone"}

    @pytest.mark.asyncio
    async def test_unknown_voice_and_action(self):
        handle = make_control_handler(make_coordinator(), None, None)

        assert (await handle(ControlCommand(action="start", payload={"voice": "robot"})))["status"] == "error"
        assert (await handle(ControlCommand(action="dance")))["status"] == "error"

