"""Playback session — decode one clip into the shared buffer and bus.

One session per clip, one session alive at a time:

  created -> awaiting_metadata -> connecting_audio -> playing -> ended
                                                            \\-> failed

The frame loop is its own task. At tick k it decodes the frame at k / fps
in a worker thread, draws it into the frame buffer, awaits the render
tick (the encoder capture, which also pulls this tick's audio through
the bus), then yields to the event loop. It runs while the session is
playing and stops at end of clip or when stop() is called.

Teardown (frame loop cancelled, audio disconnected, clip closed) runs on
every exit path.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from .audio_bus import AudioBus, ClipAudioSource
from .clips import ClipDescriptor
from .common import open_clip
from .errors import AudioBusBusyError, DecodeError, EncodeFinalizeError
from .frame_buffer import FrameBuffer


class SessionState(str, Enum):
    CREATED = "created"
    AWAITING_METADATA = "awaiting_metadata"
    CONNECTING_AUDIO = "connecting_audio"
    PLAYING = "playing"
    ENDED = "ended"
    FAILED = "failed"


class AudioMode(str, Enum):
    FULL = "full"
    VIDEO_ONLY = "video_only"


@dataclass(frozen=True)
class PlaybackResult:
    clip: ClipDescriptor
    mode: AudioMode
    frames: int
    stopped_early: bool = False


class PlaybackSession:
    def __init__(
        self,
        clip: ClipDescriptor,
        frame_buffer: FrameBuffer,
        audio_bus: AudioBus,
        fps: int = 30,
        render_tick: Callable[[], Awaitable[None]] | None = None,
        opener: Callable = open_clip,
    ):
        self.clip = clip
        self.frame_buffer = frame_buffer
        self.audio_bus = audio_bus
        self.fps = fps
        self.render_tick = render_tick
        self.opener = opener

        self.state = SessionState.CREATED
        self.mode = AudioMode.VIDEO_ONLY
        self.frames = 0
        self.duration = 0.0
        self._video = None
        self._connection = None
        self._frame_task: asyncio.Task | None = None
        self._stop_requested = False

    @property
    def playing(self) -> bool:
        return self.state is SessionState.PLAYING and not self._stop_requested

    def _enter(self, state: SessionState) -> None:
        logger.debug(f"[{self.clip.name}] {self.state.value} -> {state.value}")
        self.state = state

    def stop(self) -> None:
        """End playback early. The frame loop exits at its next tick."""
        self._stop_requested = True

    async def play(self) -> PlaybackResult:
        """Play the clip to the end.

        Returns:
            PlaybackResult with the audio mode the clip ended up using.

        Raises:
            DecodeError: The clip could not be opened or a frame failed
                to decode.
        """
        if self.state is not SessionState.CREATED:
            raise RuntimeError(f"Session for {self.clip.name} already used")

        try:
            self._enter(SessionState.AWAITING_METADATA)
            self._video = await asyncio.to_thread(self.opener, self.clip.path)
            self._apply_metadata()

            self._enter(SessionState.CONNECTING_AUDIO)
            self.mode = self._connect_audio()

            self._enter(SessionState.PLAYING)
            self._frame_task = asyncio.create_task(self._frame_loop())
            await self._frame_task

            self._enter(SessionState.ENDED)
            return PlaybackResult(
                clip=self.clip,
                mode=self.mode,
                frames=self.frames,
                stopped_early=self._stop_requested,
            )
        except asyncio.CancelledError:
            self._enter(SessionState.FAILED)
            raise
        except (DecodeError, EncodeFinalizeError, AudioBusBusyError):
            self._enter(SessionState.FAILED)
            raise
        except Exception as e:
            self._enter(SessionState.FAILED)
            raise DecodeError(self.clip.name, e) from e
        finally:
            self._teardown()

    def _apply_metadata(self) -> None:
        duration = self._video.duration
        if not duration or duration <= 0:
            raise DecodeError(self.clip.name, "clip has no playable duration")
        self.duration = float(duration)

        # First clip decides the output size for the whole run.
        if not self.frame_buffer.locked:
            self.frame_buffer.lock(tuple(self._video.size))
            logger.debug(
                f"[{self.clip.name}] output size locked at "
                f"{self.frame_buffer.size[0]}x{self.frame_buffer.size[1]}"
            )

    def _connect_audio(self) -> AudioMode:
        """Wire the clip's audio into the bus, or fall back to video-only."""
        try:
            source = ClipAudioSource(self._video.audio, self.audio_bus.sample_rate)
            self._connection = self.audio_bus.connect(source)
        except AudioBusBusyError:
            raise
        except Exception as e:
            logger.warning(f"Audio source creation failed for {self.clip.name}: {e}")
            return AudioMode.VIDEO_ONLY
        return AudioMode.FULL

    async def _frame_loop(self) -> None:
        k = 0
        while self.playing:
            t = k / self.fps
            if t >= self.duration:
                break
            frame = await asyncio.to_thread(self._video.get_frame, t)
            self.frame_buffer.draw(frame)
            k += 1
            self.frames = k
            if self.render_tick is not None:
                await self.render_tick()
            await asyncio.sleep(0)

    def _teardown(self) -> None:
        if self._frame_task is not None and not self._frame_task.done():
            self._frame_task.cancel()
        if self._connection is not None:
            self._connection.disconnect()
            self._connection = None
        if self._video is not None:
            self._video.close()
            self._video = None
