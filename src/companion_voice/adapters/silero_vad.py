import logging
import urllib.request
from pathlib import Path

import numpy as np
import onnxruntime as ort

logger = logging.getLogger(__name__)

SILERO_MODEL_URL = "https://github.com/snakers4/silero-vad/raw/master/src/silero_vad/data/silero_vad.onnx"
DEFAULT_MODEL_PATH = Path.home() / ".cache" / "companion-voice" / "silero_vad.onnx"
LEGACY_HIDDEN_DIM = 64


class SileroVad:
    """Speech probability per 16-bit PCM frame from the Silero ONNX model.

    Handles both the single ``state`` tensor layout of current model
    releases and the older ``h``/``c`` layout.
    """

    def __init__(self, model_path: str = "", sample_rate: int = 16000) -> None:
        resolved_path = Path(model_path) if model_path else DEFAULT_MODEL_PATH
        if not resolved_path.exists():
            download_model(resolved_path)

        self._session = ort.InferenceSession(
            str(resolved_path),
            providers=["CPUExecutionProvider"],
        )
        self._sample_rate = sample_rate
        inputs = {i.name: i.shape for i in self._session.get_inputs()}
        self._use_state_tensor = "state" in inputs
        if self._use_state_tensor:
            shape = inputs["state"]
            self._state_shape = (2, 1, shape[2] if len(shape) > 2 else 128)
        else:
            self._state_shape = (2, 1, LEGACY_HIDDEN_DIM)
        self.reset()
        logger.info("Silero VAD loaded from %s", resolved_path)

    def process_frame(self, audio_frame: bytes) -> float:
        audio = np.frombuffer(audio_frame, dtype=np.int16).astype(np.float32) / 32767.0
        audio = audio[np.newaxis, :]

        if self._use_state_tensor:
            output, self._state = self._session.run(None, {
                "input": audio,
                "state": self._state,
                "sr": np.array(self._sample_rate, dtype=np.int64),
            })
        else:
            output, self._h, self._c = self._session.run(None, {
                "input": audio,
                "h": self._h,
                "c": self._c,
                "sr": np.array([self._sample_rate], dtype=np.int64),
            })
        return float(output[0][0])

    def reset(self) -> None:
        self._state = np.zeros(self._state_shape, dtype=np.float32)
        self._h = np.zeros(self._state_shape, dtype=np.float32)
        self._c = np.zeros(self._state_shape, dtype=np.float32)


def download_model(target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading Silero VAD model to %s", target)
    urllib.request.urlretrieve(SILERO_MODEL_URL, str(target))
    logger.info("Silero VAD model downloaded")
