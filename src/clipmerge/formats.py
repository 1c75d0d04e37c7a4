"""Output format negotiation.

Picks the container/codec pair for a run from a fixed preference list,
asking the bundled ffmpeg which muxers and encoders it actually has:

  1. video/mp4; codecs="avc1.42E01E, mp4a.40.2"   H.264 + AAC
  2. video/mp4                                   H.264, default audio
  3. video/webm; codecs="vp8, opus"              fallback

The first supported entry wins. When nothing reports supported the
fallback is returned anyway, so negotiation never fails.
"""

import subprocess
from collections.abc import Callable
from dataclasses import dataclass

import imageio_ffmpeg
from loguru import logger


PREFERRED_FORMAT = 'video/mp4; codecs="avc1.42E01E, mp4a.40.2"'
PLAIN_MP4_FORMAT = "video/mp4"
FALLBACK_FORMAT = 'video/webm; codecs="vp8, opus"'

DEFAULT_BITRATE = 5_000_000

# MIME subtype -> ffmpeg muxer.
CONTAINER_MUXERS = {"mp4": "mp4", "webm": "webm"}

# Codec tag prefix (before the first '.') -> ffmpeg encoder.
CODEC_ENCODERS = {
    "avc1": "libx264",
    "avc3": "libx264",
    "mp4a": "aac",
    "vp8": "libvpx",
    "vp9": "libvpx-vp9",
    "vp09": "libvpx-vp9",
    "opus": "libopus",
}

# Encoders used when the MIME type names no codecs.
DEFAULT_VIDEO_ENCODERS = {"mp4": "libx264", "webm": "libvpx"}


@dataclass(frozen=True)
class OutputSpec:
    """Negotiated output: MIME type, ffmpeg muxer/encoders and bitrate.

    audio_codec None means the muxer's default audio encoder.
    """

    mime_type: str
    container: str
    video_codec: str
    audio_codec: str | None
    bitrate: int = DEFAULT_BITRATE

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)


def extension_for(mime_type: str) -> str:
    """File extension for a negotiated MIME type: 'mp4' or 'webm'."""
    return "mp4" if "mp4" in mime_type else "webm"


def parse_mime_type(mime_type: str) -> tuple[str, list[str]]:
    """Split 'video/mp4; codecs="avc1.42E01E, mp4a.40.2"' into parts.

    Returns:
        (subtype, codec tags) e.g. ("mp4", ["avc1.42E01E", "mp4a.40.2"]).
        Codec tags are empty when no codecs parameter is given.
    """
    head, _, params = mime_type.partition(";")
    subtype = head.strip().partition("/")[2].strip().lower()
    codecs = []
    for param in params.split(";"):
        key, _, value = param.partition("=")
        if key.strip().lower() == "codecs":
            value = value.strip().strip('"').strip("'")
            codecs = [c.strip() for c in value.split(",") if c.strip()]
    return subtype, codecs


def build_output_spec(mime_type: str, bitrate: int = DEFAULT_BITRATE) -> OutputSpec:
    """Map a MIME type onto the ffmpeg muxer and encoders that produce it.

    Raises:
        ValueError: Unknown container or codec tag.
    """
    subtype, codecs = parse_mime_type(mime_type)
    if subtype not in CONTAINER_MUXERS:
        raise ValueError(f"Unsupported container in {mime_type!r}")

    video_codec = None
    audio_codec = None
    for tag in codecs:
        encoder = CODEC_ENCODERS.get(tag.split(".")[0].lower())
        if encoder is None:
            raise ValueError(f"Unknown codec {tag!r} in {mime_type!r}")
        if encoder in ("aac", "libopus"):
            audio_codec = encoder
        else:
            video_codec = encoder

    return OutputSpec(
        mime_type=mime_type,
        container=CONTAINER_MUXERS[subtype],
        video_codec=video_codec or DEFAULT_VIDEO_ENCODERS[subtype],
        audio_codec=audio_codec,
        bitrate=bitrate,
    )


# ── Capability query ──────────────────────────────────────────────


def _list_names(text: str) -> set[str]:
    """Pull component names out of `ffmpeg -encoders` / `-muxers` output.

    Both listings print a flags column then the name; header lines end at
    a ' --' or '  --' separator line.
    """
    names = set()
    body = text.split("--", 1)[1] if "--" in text else text
    for line in body.splitlines():
        fields = line.split()
        if len(fields) >= 2:
            names.add(fields[1])
    return names


class FfmpegCapabilities:
    """Answers `is_type_supported(mime)` from the bundled ffmpeg build.

    The listings are fetched once, on first use. If ffmpeg cannot be run
    every type reports unsupported.
    """

    def __init__(self, ffmpeg: str | None = None):
        self.ffmpeg = ffmpeg
        self._encoders: set[str] | None = None
        self._muxers: set[str] | None = None

    def _query(self, flag: str) -> set[str]:
        exe = self.ffmpeg or imageio_ffmpeg.get_ffmpeg_exe()
        try:
            result = subprocess.run(
                [exe, "-hide_banner", flag],
                capture_output=True, text=True, check=True,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            logger.warning(f"Could not query ffmpeg {flag}: {e}")
            return set()
        return _list_names(result.stdout)

    @property
    def encoders(self) -> set[str]:
        if self._encoders is None:
            self._encoders = self._query("-encoders")
        return self._encoders

    @property
    def muxers(self) -> set[str]:
        if self._muxers is None:
            self._muxers = self._query("-muxers")
        return self._muxers

    def is_type_supported(self, mime_type: str) -> bool:
        try:
            spec = build_output_spec(mime_type)
        except ValueError:
            return False
        needed = [spec.video_codec]
        if spec.audio_codec:
            needed.append(spec.audio_codec)
        return spec.container in self.muxers and all(
            enc in self.encoders for enc in needed
        )


# ── Negotiation ───────────────────────────────────────────────────

FORMAT_PREFERENCES = [PREFERRED_FORMAT, PLAIN_MP4_FORMAT, FALLBACK_FORMAT]


def negotiate_format(
    is_supported: Callable[[str], bool] | None = None,
    bitrate: int = DEFAULT_BITRATE,
) -> OutputSpec:
    """Return the first supported entry of FORMAT_PREFERENCES.

    Args:
        is_supported: Predicate over MIME strings. Defaults to a fresh
            FfmpegCapabilities query.
        bitrate: Target video bitrate in bits per second.
    """
    if is_supported is None:
        is_supported = FfmpegCapabilities().is_type_supported

    chosen = FALLBACK_FORMAT
    for mime_type in FORMAT_PREFERENCES:
        if is_supported(mime_type):
            chosen = mime_type
            break

    logger.info(f"Using format: {chosen}")
    return build_output_spec(chosen, bitrate=bitrate)
