"""Merge orchestrator — play every clip, in order, into one encoder.

The orchestrator owns the run's shared resources (frame buffer, audio
bus, encoder) and lends the buffer and bus to exactly one playback
session at a time. A session is fully torn down before the next clip is
opened, so the bus and buffer only ever have one writer.

Run outline:
  1. Empty clip list -> error, nothing created.
  2. processing / "Initializing processing engine..." / 0%.
  3. Negotiate the output format, create bus + buffer, start the encoder.
  4. For each clip: stop if cancelled, report progress, play the clip.
     A clip failure aborts the encoder and ends the run in error.
  5. Stop the encoder and publish the artifact (completed, 100%).
"""

import asyncio
from collections.abc import Callable

from loguru import logger

from .audio_bus import AudioBus
from .clips import ClipDescriptor
from .common import open_clip
from .config import load_merge_config
from .encoder import StreamingEncoder
from .errors import ClipMergeError, DecodeError, EncodeFinalizeError, InputError
from .formats import OutputSpec, negotiate_format
from .frame_buffer import FrameBuffer
from .session import PlaybackResult, PlaybackSession
from .state import PipelineState, RunState, clip_progress


class MergeOrchestrator:
    def __init__(
        self,
        config: dict | None = None,
        negotiate: Callable[..., OutputSpec] = negotiate_format,
        encoder_factory: Callable[[int], StreamingEncoder] | None = None,
        opener: Callable = open_clip,
        state: PipelineState | None = None,
    ):
        self.config = config or load_merge_config()
        self.state = state or PipelineState()
        self._negotiate = negotiate
        self._encoder_factory = encoder_factory or (lambda fps: StreamingEncoder(fps=fps))
        self._opener = opener

        self.output_spec: OutputSpec | None = None
        self.output_size: tuple[int, int] | None = None
        self.results: list[PlaybackResult] = []
        self._cancelled = False
        self.results = []
        self.output_size = None
        total = len(clips)
        self.state.begin("Initializing processing engine...")

        video = self.config["video"]
        fps = video["fps"]
        bus = buffer = encoder = None
        try:
            self.output_spec = self._negotiate(bitrate=video["bitrate"])
            bus = AudioBus(sample_rate=self.config["audio"]["sample_rate"])
            buffer = FrameBuffer(fit=video["fit"])
            encoder = self._encoder_factory(fps)
            encoder.start(self.output_spec, buffer, bus)

            for i, clip in enumerate(clips):
                if self._cancelled:
                    logger.info(f"Run cancelled before clip {i + 1}/{total}")
                    break
                self.state.update(
                    f"Processing clip {i + 1}/{total}: {clip.name}",
                    clip_progress(i, total),
                )
                self.results.append(await self._play(clip, buffer, bus, encoder, fps))
            artifact = await encoder.stop()
        except (DecodeError, EncodeFinalizeError) as e:
            logger.error(f"Merge failed: {e}")
            await _abort(encoder)
            message = str(e) if isinstance(e, DecodeError) else None
            return self.state.fail(e, message)
        except asyncio.CancelledError:
            await _abort(encoder)
            self.state.fail(ClipMergeError("Run interrupted"))
            raise
        except Exception as e:
            logger.error(f"Merge failed: {e}")
            await _abort(encoder)
            self.state.fail(e)
            raise
        finally:
            if buffer is not None:
                self.output_size = buffer.size
                buffer.release()
            if bus is not None:
                bus.close()

        if self._cancelled:
            message = f"Cancelled after {len(self.results)}/{total} clips."
        else:
            message = "Processing complete!"
        return self.state.complete(artifact, message)

    async def _play(self, clip, buffer, bus, encoder, fps) -> PlaybackResult:
        self._session = PlaybackSession(
            clip, buffer, bus,
            fps=fps,
            render_tick=encoder.capture,
            opener=self._opener,
        )
        try:
            return await self._session.play()
        finally:
            self._session = None


async def _abort(encoder) -> None:
    if encoder is not None:
        await encoder.abort()
