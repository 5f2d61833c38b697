import asyncio
import logging
from collections.abc import AsyncIterator, Mapping

from edge_tts import Communicate

from companion_voice.domain.errors import SynthesisFailedError
from companion_voice.ports.synthesizer import VoiceHint

logger = logging.getLogger(__name__)

DEFAULT_VOICES = {
    VoiceHint.FEMALE: "en-US-JennyNeural",
    VoiceHint.MALE: "en-US-GuyNeural",
}


def ffmpeg_decode_command(sample_rate: int) -> list[str]:
    return [
        "ffmpeg",
        "-i", "pipe:0",
        "-f", "s16le",
        "-acodec", "pcm_s16le",
        "-ar", str(sample_rate),
        "-ac", "1",
        "-loglevel", "error",
        "pipe:1",
    ]


class EdgeTtsSynthesizer:
    """Edge TTS voice decoded to raw PCM through an ffmpeg subprocess."""

    def __init__(
        self,
        voices: Mapping[str, str] | None = None,
        sample_rate: int = 24000,
        read_size: int = 4800,
    ) -> None:
        self._voices = {VoiceHint(k): v for k, v in (voices or DEFAULT_VOICES).items()}
        self._sample_rate = sample_rate
        self._read_size = read_size + (read_size % 2)

    def voice_for(self, voice_hint: VoiceHint) -> str:
        return self._voices.get(voice_hint, DEFAULT_VOICES[voice_hint])

    async def synthesize(self, text: str, voice_hint: VoiceHint) -> AsyncIterator[bytes]:
        voice = self.voice_for(voice_hint)
        try:
            process = await asyncio.create_subprocess_exec(
                *ffmpeg_decode_command(self._sample_rate),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SynthesisFailedError(f"Cannot start ffmpeg: {exc}") from exc

        feed_task = asyncio.create_task(self._feed_mp3(process, text, voice))
        produced = 0
        try:
            while True:
                chunk = await process.stdout.read(self._read_size)
                if not chunk:
                    break
                produced += len(chunk)
                yield chunk
            await feed_task
        except Exception as exc:
            logger.warning("Edge TTS synthesis failed for: %s", text[:50])
            raise SynthesisFailedError(f"Edge TTS failed: {exc}") from exc
        finally:
            if not feed_task.done():
                feed_task.cancel()
                try:
                    await feed_task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.debug("Edge TTS feed ended with an error", exc_info=True)
            if process.returncode is None:
                process.kill()
                await process.wait()

        if produced == 0:
            raise SynthesisFailedError("Edge TTS produced no audio")

    async def _feed_mp3(
        self, process: asyncio.subprocess.Process, text: str, voice: str
    ) -> None:
        try:
            communicate = Communicate(text, voice=voice)
            async for chunk in communicate.stream():
                if chunk["type"] == "audio" and chunk["data"]:
                    process.stdin.write(chunk["data"])
                    await process.stdin.drain()
        finally:
            if not process.stdin.is_closing():
                process.stdin.close()
