"""Streaming encoder/muxer — ffmpeg fed from the frame buffer and audio bus.

One ffmpeg process per run:
  - stdin:     raw RGB24 frames, one per render tick
  - pipe:N:    raw f32le stereo PCM, exactly one tick's worth per frame
  - stdout:    streamable container (fragmented mp4 or webm)

The process is spawned at the first capture after the frame buffer has
its size, since raw video input needs dimensions up front. Output is read
in a background task and appended to the chunk log as it arrives; stop()
joins the log into one Artifact.

Each input pipe has its own writer thread and queue, so ffmpeg can read
its inputs in any order without one full pipe holding back the other.
A tick's audio is queued before its video, and only the video queue is
bounded: capture() waits when ffmpeg falls behind on video, never while
ffmpeg is waiting for audio.
"""

import asyncio
import os
import queue
import subprocess
import tempfile
import threading
from collections.abc import Callable
from dataclasses import dataclass

import imageio_ffmpeg
from loguru import logger

from .audio_bus import AudioBus
from .errors import EncodeFinalizeError
from .formats import OutputSpec, extension_for
from .frame_buffer import FrameBuffer


CHUNK_SIZE = 64 * 1024

# Raw video held back while ffmpeg is busy; at least MIN_VIDEO_BACKLOG frames.
VIDEO_BACKLOG_BYTES = 64 * 1024 * 1024
MIN_VIDEO_BACKLOG = 8

# Raw inputs carry their format on the command line; skip probing them.
RAW_INPUT_ARGS = ["-probesize", "32", "-analyzeduration", "0"]

# Container flags for writing to a non-seekable pipe.
CONTAINER_ARGS = {
    "mp4": ["-movflags", "frag_keyframe+empty_moov+default_base_moof", "-f", "mp4"],
    "webm": ["-f", "webm"],
}


@dataclass(frozen=True)
class Artifact:
    data: bytes
    mime_type: str
    chunk_count: int = 0

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)

    @property
    def size(self) -> int:
        return len(self.data)


def build_ffmpeg_command(
    ffmpeg: str,
    spec: OutputSpec,
    size: tuple[int, int],
    fps: int,
    sample_rate: int,
    audio_fd: int,
) -> list[str]:
    """ffmpeg argv for one run: raw video on stdin, raw audio on audio_fd."""
    w, h = size
    audio_codec = ["-c:a", spec.audio_codec] if spec.audio_codec else []
    return [
        ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
        *RAW_INPUT_ARGS,
        "-f", "rawvideo", "-pix_fmt", "rgb24",
        "-s", f"{w}x{h}", "-r", str(fps),
        "-i", "pipe:0",
        *RAW_INPUT_ARGS,
        "-f", "f32le", "-ar", str(sample_rate), "-ac", "2",
        "-i", f"pipe:{audio_fd}",
        "-map", "0:v", "-map", "1:a",
        # yuv420p needs even dimensions.
        "-vf", "pad=ceil(iw/2)*2:ceil(ih/2)*2",
        "-c:v", spec.video_codec, "-b:v", str(spec.bitrate),
        "-pix_fmt", "yuv420p",
        *audio_codec,
        *CONTAINER_ARGS[spec.container],
        "pipe:1",
    ]


def samples_for_frame(index: int, sample_rate: int, fps: int) -> int:
    """Audio samples that belong to output frame `index`.

    Rounds cumulative boundaries, so rates that don't divide evenly
    (44100 / 24) never drift.
    """
    return round((index + 1) * sample_rate / fps) - round(index * sample_rate / fps)


def _close(pipe) -> None:
    # A dead ffmpeg is reported through its exit status in stop().
    try:
        pipe.close()
    except BrokenPipeError:
        pass


class PipeWriter:
    """Feeds one ffmpeg input pipe from a dedicated thread.

    put() queues bytes and returns; it only blocks when a bounded queue is
    full. After a write fails the thread keeps draining the queue, so
    put() and close() never wait on a dead reader. The failure is kept in
    `error`.
    """

    def __init__(self, pipe, name: str, maxsize: int = 0):
        self.pipe = pipe
        self.name = name
        self.error: OSError | None = None
        self._queue: queue.Queue = queue.Queue(maxsize)
        self._thread = threading.Thread(
            target=self._run, name=f"ffmpeg-{name}", daemon=True,
        )
        self._thread.start()

    def _run(self) -> None:
        while True:
            data = self._queue.get()
            if data is None:
                break
            if self.error is not None:
                continue
            try:
                self.pipe.write(data)
                self.pipe.flush()
            except OSError as e:
                self.error = e
        _close(self.pipe)

    def put(self, data: bytes) -> None:
        self._queue.put(data)

    def close(self) -> None:
        """Flush what is queued, close the pipe, and wait for the thread."""
        self._queue.put(None)
        self._thread.join()


class StreamingEncoder:
    def __init__(self, fps: int = 30, ffmpeg: str | None = None):
        self.fps = fps
        self.ffmpeg = ffmpeg
        self.spec: OutputSpec | None = None
        self.frame_buffer: FrameBuffer | None = None
        self.audio_bus: AudioBus | None = None

        self.chunks: list[bytes] = []
        self.frames = 0
        self._handlers: list[Callable[[bytes], None]] = []
        self._active = False
        self._proc: subprocess.Popen | None = None
        self._video: PipeWriter | None = None
        self._audio: PipeWriter | None = None
        self._stderr = None
        self._reader: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._active

    def on_chunk(self, handler: Callable[[bytes], None]) -> None:
        """Call `handler(chunk)` for every chunk, in emission order."""
        self._handlers.append(handler)

    def start(self, spec: OutputSpec, frame_buffer: FrameBuffer, audio_bus: AudioBus) -> None:
        """Begin accepting captures. The buffer may still be blank."""
        if self._active:
            raise RuntimeError("Encoder already started")
        self.spec = spec
        self.frame_buffer = frame_buffer
        self.audio_bus = audio_bus
        self.chunks = []
        self.frames = 0
        self._active = True
        logger.debug(f"Encoder started for {spec.mime_type}")

    # ── Capture ───────────────────────────────────────────────────

    def _spawn(self) -> None:
        exe = self.ffmpeg or imageio_ffmpeg.get_ffmpeg_exe()
        w, h = self.frame_buffer.size
        audio_r, audio_w = os.pipe()
        cmd = build_ffmpeg_command(
            exe, self.spec, (w, h), self.fps, self.audio_bus.sample_rate, audio_r,
        )
        logger.debug(f"Encoder command: {' '.join(cmd)}")
        self._stderr = tempfile.TemporaryFile()
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self._stderr,
                pass_fds=(audio_r,),
            )
        except OSError as e:
            os.close(audio_w)
            raise EncodeFinalizeError(f"Could not start ffmpeg: {e}") from e
        finally:
            os.close(audio_r)

        backlog = max(MIN_VIDEO_BACKLOG, VIDEO_BACKLOG_BYTES // (w * h * 3))
        self._video = PipeWriter(self._proc.stdin, "video", maxsize=backlog)
        self._audio = PipeWriter(os.fdopen(audio_w, "wb"), "audio")
        self._reader = asyncio.create_task(self._pump_output())

    async def _pump_output(self) -> None:
        while True:
            chunk = await asyncio.to_thread(self._proc.stdout.read1, CHUNK_SIZE)
            if not chunk:
                break
            self.chunks.append(chunk)
            for handler in self._handlers:
                handler(chunk)

    def _check_inputs(self) -> None:
        for writer in (self._video, self._audio):
            if writer.error is not None:
                raise EncodeFinalizeError(
                    f"ffmpeg stopped accepting {writer.name}: "
                    f"{writer.error}{self._stderr_tail()}"
                ) from writer.error

    async def capture(self) -> None:
        """Encode one render tick: the buffer snapshot plus its audio."""
        if not self._active or not self.frame_buffer.locked:
            return
        if self._proc is None:
            self._spawn()
        self._check_inputs()

        n = samples_for_frame(self.frames, self.audio_bus.sample_rate, self.fps)
        video = self.frame_buffer.snapshot()
        audio = await asyncio.to_thread(self.audio_bus.read, n)
        self.frames += 1
        self._audio.put(audio.astype("<f4").tobytes())
        await asyncio.to_thread(self._video.put, video)

    # ── Finalize ──────────────────────────────────────────────────

    def _stderr_tail(self, lines: int = 10) -> str:
        if self._stderr is None:
            return ""
        self._stderr.seek(0)
        text = self._stderr.read().decode(errors="replace").strip()
        if not text:
            return ""
        return "\n" + "\n".join(text.splitlines()[-lines:])

    def _close_inputs(self) -> None:
        self._video.close()
        self._audio.close()

    def _cleanup(self) -> None:
        if self._stderr is not None:
            self._stderr.close()
        self._stderr = None
        self._proc = None
        self._video = None
        self._audio = None
        self._reader = None

    async def stop(self) -> Artifact | None:
        """Flush ffmpeg and assemble every chunk into one artifact.

        Returns:
            The artifact, empty if nothing was ever captured, or None if
            the encoder was not active.

        Raises:
            EncodeFinalizeError: ffmpeg exited with an error.
        """
        if not self._active:
            return None
        self._active = False

        if self._proc is None:
            return Artifact(b"", self.spec.mime_type, 0)

        try:
            await asyncio.to_thread(self._close_inputs)
            await self._reader
            returncode = await asyncio.to_thread(self._proc.wait)
            if returncode != 0:
                raise EncodeFinalizeError(
                    f"ffmpeg exited with status {returncode}{self._stderr_tail()}"
                )
            self._check_inputs()
            artifact = Artifact(b"".join(self.chunks), self.spec.mime_type, len(self.chunks))
        finally:
            self._cleanup()

        logger.info(
            f"Encoded {self.frames} frames into {artifact.size} bytes "
            f"({artifact.chunk_count} chunks)"
        )
        return artifact

    async def abort(self) -> None:
        """Kill ffmpeg and discard whatever was captured."""
        self._active = False
        if self._proc is not None:
            self._proc.kill()
            await asyncio.to_thread(self._close_inputs)
            await self._reader
            await asyncio.to_thread(self._proc.wait)
            self._cleanup()
        self.chunks = []
        logger.debug("Encoder aborted, captured data discarded")
