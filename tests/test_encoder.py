"""Tests for the streaming encoder. Uses the bundled ffmpeg."""

import asyncio
import os

import imageio_ffmpeg
import numpy as np
import pytest

from clipmerge.audio_bus import AudioBus
from clipmerge.encoder import (
    Artifact,
    PipeWriter,
    StreamingEncoder,
    build_ffmpeg_command,
    samples_for_frame,
)
from clipmerge.formats import (
    FALLBACK_FORMAT,
    PREFERRED_FORMAT,
    FfmpegCapabilities,
    build_output_spec,
)
from clipmerge.frame_buffer import FrameBuffer

# Real encodes fail instead of hanging the suite.
ENCODE_TIMEOUT = 60


class _ToneSource:
    def read(self, n):
        return np.full((n, 2), 0.25, dtype=np.float32)


def _encode(spec, frames=15, size=(64, 48), chunks=None):
    return asyncio.run(asyncio.wait_for(
        _encode_frames(spec, frames, size, chunks), timeout=ENCODE_TIMEOUT,
    ))


async def _encode_frames(spec, frames, size, chunks):
    buffer = FrameBuffer()
    buffer.lock(size)
    bus = AudioBus()
    bus.connect(_ToneSource())
    encoder = StreamingEncoder(fps=30)
    if chunks is not None:
        encoder.on_chunk(chunks.append)
    encoder.start(spec, buffer, bus)
    w, h = size
    for i in range(frames):
        buffer.draw(np.full((h, w, 3), (i * 16) % 256, dtype=np.uint8))
        await encoder.capture()
    return await encoder.stop()


class TestSamplesForFrame:
    def test_one_second_adds_up(self):
        assert sum(samples_for_frame(k, 44100, 30) for k in range(30)) == 44100

    def test_uneven_rate_does_not_drift(self):
        total = sum(samples_for_frame(k, 44100, 24) for k in range(24 * 10))
        assert total == 441000
        assert {samples_for_frame(k, 44100, 24) for k in range(24)} <= {1837, 1838}


class TestBuildCommand:
    def test_mp4_command(self):
        spec = build_output_spec(PREFERRED_FORMAT)
        cmd = build_ffmpeg_command("ffmpeg", spec, (320, 240), 30, 44100, 7)
        assert cmd[0] == "ffmpeg"
        assert "320x240" in cmd
        assert "pipe:7" in cmd
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-b:v") + 1] == "5000000"
        assert "empty_moov" in cmd[cmd.index("-movflags") + 1]
        assert cmd[-1] == "pipe:1"

    def test_no_audio_codec_uses_container_default(self):
        spec = build_output_spec("video/mp4")
        cmd = build_ffmpeg_command("ffmpeg", spec, (320, 240), 30, 44100, 7)
        assert "-c:a" not in cmd


class TestLifecycle:
    def test_stop_when_inactive_returns_none(self):
        assert asyncio.run(StreamingEncoder().stop()) is None

    def test_stop_without_captures_is_empty(self):
        async def run():
            encoder = StreamingEncoder()
            encoder.start(build_output_spec(PREFERRED_FORMAT), FrameBuffer(), AudioBus())
            return await encoder.stop()

        artifact = asyncio.run(run())
        assert artifact == Artifact(b"", PREFERRED_FORMAT, 0)
        assert artifact.size == 0

    def test_capture_before_dimensions_is_skipped(self):
        async def run():
            encoder = StreamingEncoder()
            encoder.start(build_output_spec(PREFERRED_FORMAT), FrameBuffer(), AudioBus())
            await encoder.capture()
            frames = encoder.frames
            await encoder.stop()
            return frames

        assert asyncio.run(run()) == 0

    def test_double_start_rejected(self):
        encoder = StreamingEncoder()
        spec = build_output_spec(PREFERRED_FORMAT)
        encoder.start(spec, FrameBuffer(), AudioBus())
        with pytest.raises(RuntimeError, match="already started"):
            encoder.start(spec, FrameBuffer(), AudioBus())

    def test_abort_discards_output(self):
        async def run():
            buffer = FrameBuffer()
            buffer.lock((64, 48))
            encoder = StreamingEncoder()
            encoder.start(build_output_spec(PREFERRED_FORMAT), buffer, AudioBus())
            for _ in range(5):
                await encoder.capture()
            await encoder.abort()
            return encoder

        encoder = asyncio.run(asyncio.wait_for(run(), timeout=ENCODE_TIMEOUT))
        assert not encoder.active
        assert encoder.chunks == []


class TestEncodeOutput:
    def test_mp4_output(self, tmp_path):
        chunks = []
        artifact = _encode(build_output_spec(PREFERRED_FORMAT), chunks=chunks)
        assert artifact.mime_type == PREFERRED_FORMAT
        assert artifact.extension == "mp4"
        assert artifact.data[4:8] == b"ftyp"
        assert b"".join(chunks) == artifact.data
        assert artifact.chunk_count == len(chunks)

        out = tmp_path / "out.mp4"
        out.write_bytes(artifact.data)
        nframes, _ = imageio_ffmpeg.count_frames_and_secs(str(out))
        assert nframes == 15

    def test_webm_output(self, tmp_path):
        if not FfmpegCapabilities().is_type_supported(FALLBACK_FORMAT):
            pytest.skip("bundled ffmpeg lacks vp8/opus")
        artifact = _encode(build_output_spec(FALLBACK_FORMAT))
        assert artifact.extension == "webm"
        assert artifact.data[:4] == b"\x1a\x45\xdf\xa3"

    def test_odd_dimensions_are_padded(self, tmp_path):
        artifact = _encode(build_output_spec(PREFERRED_FORMAT), size=(63, 47))
        out = tmp_path / "odd.mp4"
        out.write_bytes(artifact.data)
        nframes, _ = imageio_ffmpeg.count_frames_and_secs(str(out))
        assert nframes == 15

    def test_long_encode_with_audio_finishes(self, tmp_path):
        # Enough ticks to fill both input pipes many times over.
        artifact = _encode(build_output_spec(PREFERRED_FORMAT), frames=90, size=(320, 240))
        out = tmp_path / "long.mp4"
        out.write_bytes(artifact.data)
        nframes, secs = imageio_ffmpeg.count_frames_and_secs(str(out))
        assert nframes == 90
        assert secs == pytest.approx(3.0, abs=0.2)


class TestPipeWriter:
    def test_stalled_pipe_does_not_hold_back_the_other(self):
        stalled_r, stalled_w = os.pipe()
        live_r, live_w = os.pipe()
        stalled = PipeWriter(os.fdopen(stalled_w, "wb"), "stalled")
        live = PipeWriter(os.fdopen(live_w, "wb"), "live")

        # Far more than a pipe buffer holds; nobody reads stalled_r yet.
        for _ in range(64):
            stalled.put(b"\x00" * 16384)
        live.put(b"hello")
        assert os.read(live_r, 5) == b"hello"

        live.close()
        os.close(stalled_r)
        stalled.close()
        assert isinstance(stalled.error, BrokenPipeError)
        assert live.error is None
        os.close(live_r)

    def test_bounded_put_waits_for_reader(self):
        r, w = os.pipe()
        writer = PipeWriter(os.fdopen(w, "wb"), "video", maxsize=2)
        payload = b"\x01" * 4096
        for _ in range(4):
            writer.put(payload)
        received = b""
        while len(received) < 4 * len(payload):
            received += os.read(r, 65536)
        writer.close()
        assert received == payload * 4
        assert os.read(r, 1) == b""
        os.close(r)
