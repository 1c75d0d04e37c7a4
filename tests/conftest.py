"""Shared test fixtures for clipmerge tests.

Two kinds of clips:
  - make_clip: real mp4 files synthesised with the bundled ffmpeg, for
    tests that decode and encode for real.
  - clip_library: in-memory fake clips served through the session's
    opener hook, for pipeline logic (ordering, failures, cancellation).
"""

import asyncio
import subprocess
import sys
from pathlib import Path

import numpy as np
import pytest
import imageio_ffmpeg
from loguru import logger

from clipmerge.clips import ClipDescriptor
from clipmerge.encoder import Artifact, samples_for_frame

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


@pytest.fixture(autouse=True)
def _restore_logging():
    """CLI tests reconfigure loguru onto a captured stderr; undo that."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def make_clip(tmp_path):
    """Factory: write a solid-color test clip, optionally with a sine tone.

    make_clip("a.mp4", seconds=2, size=(320, 240)) -> Path
    """
    def _make(name, seconds=1.0, size=(320, 240), color="blue", audio=True, fps=10):
        out = tmp_path / "clips" / name
        out.parent.mkdir(parents=True, exist_ok=True)
        w, h = size
        cmd = [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", f"color=c={color}:s={w}x{h}:d={seconds}:r={fps}",
        ]
        if audio:
            cmd += [
                "-f", "lavfi",
                "-i", f"sine=frequency=440:sample_rate=44100:duration={seconds}",
                "-shortest",
                "-c:a", "aac", "-b:a", "32k",
            ]
        else:
            cmd += ["-an"]
        cmd += ["-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p", str(out)]
        subprocess.run(cmd, check=True, capture_output=True)
        return out
    return _make


# ── Fakes ─────────────────────────────────────────────────────────


class FakeAudio:
    """Constant-level audio track."""

    def __init__(self, duration, level=0.5, channels=1):
        self.duration = duration
        self.level = level
        self.channels = channels

    def get_frame(self, tt):
        return np.full((len(tt), self.channels), self.level)


class BrokenAudio:
    """Audio track that cannot even report its duration."""

    @property
    def duration(self):
        raise OSError("audio stream unreadable")


class FakeVideo:
    """Stands in for moviepy's VideoFileClip. Every frame is filled with
    `value`, so the frame buffer shows which clip drew last."""

    def __init__(self, library, name, size, duration, value, audio, fail_at=None):
        self.library = library
        self.name = name
        self.size = size
        self.duration = duration
        self.value = value
        self.audio = audio
        self.fail_at = fail_at
        self.closed = False

    def get_frame(self, t):
        if self.fail_at is not None and t >= self.fail_at:
            raise OSError(f"corrupt frame at {t:.2f}s")
        w, h = self.size
        return np.full((h, w, 3), self.value, dtype=np.uint8)

    def close(self):
        self.closed = True
        self.library.events.append(f"close:{self.name}")
        if self.library.on_close is not None:
            self.library.on_close(self.name)


class FakeLibrary:
    """Registry of fake clips plus an `open` method usable as opener."""

    def __init__(self):
        self.specs = {}
        self.events = []
        self.opened = []
        self.on_close = None

    def add(self, name, duration=1.0, size=(64, 48), value=None, audio=True,
            broken=False, fail_at=None):
        if value is None:
            value = 10 * (len(self.specs) + 1)
        self.specs[name] = dict(
            duration=duration, size=size, value=value, audio=audio,
            broken=broken, fail_at=fail_at,
        )
        return ClipDescriptor(path=Path("/fake") / name, name=name)

    def open(self, path):
        name = Path(path).name
        spec = self.specs[name]
        self.events.append(f"open:{name}")
        self.opened.append(name)
        if spec["broken"]:
            raise OSError(f"MoviePy error: failed to read the first frame of {name}")
        if spec["audio"] is True:
            audio = FakeAudio(spec["duration"])
        else:
            audio = spec["audio"] or None
        return FakeVideo(
            self, name, spec["size"], spec["duration"], spec["value"], audio,
            fail_at=spec["fail_at"],
        )


class FakeEncoder:
    """Records each capture instead of running ffmpeg."""

    def __init__(self, fps=30):
        self.fps = fps
        self.started = False
        self.stopped = False
        self.aborted = False
        self.captures = []
        self.on_capture = None
        self.spec = None

    def start(self, spec, frame_buffer, audio_bus):
        self.started = True
        self.spec = spec
        self.frame_buffer = frame_buffer
        self.audio_bus = audio_bus

    async def capture(self):
        if not self.frame_buffer.locked:
            return
        n = samples_for_frame(len(self.captures), self.audio_bus.sample_rate, self.fps)
        audio = self.audio_bus.read(n)
        pixels = self.frame_buffer.array()
        self.captures.append({
            "value": int(pixels[0, 0, 0]),
            "size": self.frame_buffer.size,
            "audio": float(audio.mean()) if len(audio) else 0.0,
        })
        if self.on_capture is not None:
            self.on_capture(len(self.captures))
        await asyncio.sleep(0)

    async def stop(self):
        if not self.started or self.stopped:
            return None
        self.stopped = True
        return Artifact(bytes(len(self.captures)), self.spec.mime_type, len(self.captures))

    async def abort(self):
        self.aborted = True
        self.captures = []


@pytest.fixture
def clip_library():
    return FakeLibrary()


@pytest.fixture
def fake_encoder():
    """A FakeEncoder plus a factory returning it, for MergeOrchestrator."""
    encoder = FakeEncoder()

    def factory(fps):
        encoder.fps = fps
        return encoder
    return encoder, factory


@pytest.fixture
def broken_audio():
    return BrokenAudio()
