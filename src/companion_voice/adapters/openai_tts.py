import logging
from collections.abc import AsyncIterator, Mapping

import openai
from openai import AsyncOpenAI

from companion_voice.domain.errors import SynthesisFailedError
from companion_voice.ports.synthesizer import VoiceHint

logger = logging.getLogger(__name__)

DEFAULT_VOICES = {
    VoiceHint.FEMALE: "nova",
    VoiceHint.MALE: "onyx",
}


class OpenAITtsSynthesizer:
    def __init__(
        self,
        api_key: str,
        model: str = "tts-1",
        voices: Mapping[str, str] | None = None,
        min_chunk_bytes: int = 4800,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model
        self._voices = {VoiceHint(k): v for k, v in (voices or DEFAULT_VOICES).items()}
        # 16-bit samples must not be split across chunks
        self._min_chunk_bytes = min_chunk_bytes + (min_chunk_bytes % 2)

    def voice_for(self, voice_hint: VoiceHint) -> str:
        return self._voices.get(voice_hint, DEFAULT_VOICES[voice_hint])

    async def synthesize(self, text: str, voice_hint: VoiceHint) -> AsyncIterator[bytes]:
        voice = self.voice_for(voice_hint)
        pending = b""
        try:
            async with self._client.audio.speech.with_streaming_response.create(
                model=self._model,
                voice=voice,
                input=text,
                response_format="pcm",
            ) as response:
                async for data in response.iter_bytes(chunk_size=4096):
                    pending += data
                    if len(pending) >= self._min_chunk_bytes:
                        cut = len(pending) - (len(pending) % 2)
                        yield pending[:cut]
                        pending = pending[cut:]
        except openai.OpenAIError as exc:
            logger.warning("OpenAI TTS failed for: %s", text[:50])
            raise SynthesisFailedError(f"OpenAI TTS failed: {exc}") from exc

        if len(pending) >= 2:
            yield pending[: len(pending) - (len(pending) % 2)]
