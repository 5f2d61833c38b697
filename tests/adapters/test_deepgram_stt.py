import asyncio

import pytest

from companion_voice.adapters.deepgram_stt import DeepgramStreamingTranscriber
from companion_voice.ports.transcriber import TranscriptEvent


class TestDeepgramStreamingTranscriber:
    def test_no_session_before_start(self):
        transcriber = DeepgramStreamingTranscriber(api_key="test-key")
        assert not transcriber.session_active

    @pytest.mark.asyncio
    async def test_close_drops_undelivered_transcripts(self):
        transcriber = DeepgramStreamingTranscriber(api_key="test-key")
        transcriber._transcript_queue.put_nowait(TranscriptEvent(text="echo of the reply", is_final=True))
        transcriber._transcript_queue.put_nowait(TranscriptEvent(text="echo", is_final=False))

        await transcriber.close_session()

        stream = transcriber.get_transcripts()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(stream.__anext__(), timeout=0.05)

    @pytest.mark.asyncio
    async def test_send_without_session_is_ignored(self):
        transcriber = DeepgramStreamingTranscriber(api_key="test-key")
        await transcriber.send_audio(b"\x00\x00" * 512)
        assert not transcriber.session_active
