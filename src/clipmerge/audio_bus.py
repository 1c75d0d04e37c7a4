"""Audio mixing bus — one persistent sink for the whole run.

The bus pulls PCM from whichever clip source is connected, one render
tick at a time. With nothing connected it yields silence, so the encoder
always receives a continuous stereo track. At most one source may be
connected at any instant; a second connect raises AudioBusBusyError.

Samples are float32 in [-1, 1], shape (n, 2).
"""

import numpy as np
from loguru import logger

from .errors import AudioBusBusyError, AudioConnectError


CHANNELS = 2


def to_stereo(samples: np.ndarray) -> np.ndarray:
    """Normalize decoded audio to (n, 2) float32.

    Mono is duplicated into both channels; channels beyond two are dropped.
    """
    samples = np.asarray(samples, dtype=np.float32)
    if samples.ndim == 1:
        samples = samples[:, None]
    if samples.shape[1] == 1:
        samples = np.repeat(samples, CHANNELS, axis=1)
    elif samples.shape[1] > CHANNELS:
        samples = samples[:, :CHANNELS]
    return np.clip(samples, -1.0, 1.0)


class ClipAudioSource:
    """Reads a clip's audio track sequentially at the bus sample rate.

    Wraps a moviepy AudioClip (anything with `duration` and a
    `get_frame(tt)` that accepts an array of timestamps).
    """

    def __init__(self, audio_clip, sample_rate: int):
        if audio_clip is None:
            raise AudioConnectError("clip has no audio track")
        self.audio_clip = audio_clip
        self.sample_rate = sample_rate
        self.duration = float(audio_clip.duration or 0.0)
        self.position = 0  # samples handed out so far

    def read(self, n: int) -> np.ndarray:
        out = np.zeros((n, CHANNELS), dtype=np.float32)
        tt = (self.position + np.arange(n)) / self.sample_rate
        self.position += n

        # moviepy's reader refuses a request with no timestamp inside the
        # track, so only the in-range part is asked for.
        k = int((tt < self.duration).sum())
        if k:
            decoded = to_stereo(self.audio_clip.get_frame(tt[:k]))
            out[:k] = decoded[:k]
        return out


class AudioConnection:
    """Handle for a live source connection. disconnect() is idempotent."""

    def __init__(self, bus: "AudioBus", source):
        self.bus = bus
        self.source = source
        self.connected = True

    def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            self.bus._detach(self)


class AudioBus:
    def __init__(self, sample_rate: int = 44100):
        self.sample_rate = sample_rate
        self.channels = CHANNELS
        self.closed = False
        self._active: AudioConnection | None = None
        self.connections_made = 0

    @property
    def active(self) -> AudioConnection | None:
        return self._active

    def connect(self, source) -> AudioConnection:
        """Route `source` into the bus. Raises if another source is live."""
        if self.closed:
            raise AudioConnectError("audio bus is closed")
        if self._active is not None:
            raise AudioBusBusyError(
                "audio bus already has a connected source; "
                "the previous session must disconnect first"
            )
        conn = AudioConnection(self, source)
        self._active = conn
        self.connections_made += 1
        logger.debug(f"Audio bus: source connected ({self.connections_made} so far)")
        return conn

    def _detach(self, conn: AudioConnection) -> None:
        if self._active is conn:
            self._active = None
            logger.debug("Audio bus: source disconnected")

    def read(self, n: int) -> np.ndarray:
        """Next n stereo samples from the live source, or silence."""
        if n <= 0:
            return np.zeros((0, CHANNELS), dtype=np.float32)
        if self._active is None:
            return np.zeros((n, CHANNELS), dtype=np.float32)
        return self._active.source.read(n)

    def close(self) -> None:
        """Tear down the bus at the end of a run. Safe to call twice."""
        if self._active is not None:
            self._active.disconnect()
        self.closed = True
