import pytest

from companion_voice.domain.errors import (
    AiCallFailedError,
    CaptureUnavailableError,
    DetectorTransientError,
    ErrorKind,
    PlaybackChunkFailedError,
    SynthesisFailedError,
    error_for_kind,
)


class TestErrorKinds:
    def test_only_capture_loss_is_fatal(self):
        assert ErrorKind.CAPTURE_UNAVAILABLE.is_fatal
        assert not any(kind.is_fatal for kind in ErrorKind if kind is not ErrorKind.CAPTURE_UNAVAILABLE)

    @pytest.mark.parametrize(
        "kind,error_type",
        [
            (ErrorKind.CAPTURE_UNAVAILABLE, CaptureUnavailableError),
            (ErrorKind.DETECTOR_TRANSIENT, DetectorTransientError),
            (ErrorKind.AI_CALL_FAILED, AiCallFailedError),
            (ErrorKind.SYNTHESIS_FAILED, SynthesisFailedError),
            (ErrorKind.PLAYBACK_CHUNK_FAILED, PlaybackChunkFailedError),
        ],
    )
    def test_error_for_kind(self, kind, error_type):
        error = error_for_kind(kind, "details")
        assert type(error) is error_type
        assert error.kind is kind
        assert str(error) == "details"

    def test_missing_detail_falls_back_to_kind_name(self):
        assert str(error_for_kind(ErrorKind.CAPTURE_UNAVAILABLE)) == "capture_unavailable"
