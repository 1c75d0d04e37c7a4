"""clipmerge.common — shared utilities for the merge pipeline.

Contains: natural sort keys, path variable resolution, clip opening,
and the loguru format used by the CLI.
"""

import re
import sys
from pathlib import Path

from loguru import logger
from moviepy import VideoFileClip


LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


# ── Ordering ───────────────────────────────────────────────────────

def natural_key(name: str) -> list:
    """Sort key that compares digit runs numerically, case-insensitively.

    'clip2.mp4' < 'clip10.mp4', and 'Clip1' == 'clip1' for ordering.
    Digit runs and text runs alternate in the split result, so every
    position compares like with like.
    """
    parts = re.split(r"(\d+)", name)
    return [int(p) if p.isdigit() else p.casefold() for p in parts]


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return str(paths[key])
    return re.sub(r"\$\{(\w+)\}", _replace, text)


# ── Clip loading ───────────────────────────────────────────────────

def open_clip(path: str | Path) -> VideoFileClip:
    """Open a clip for decoding, audio track included when present.

    Frames are sampled by timestamp during playback, so the clip keeps
    its native fps. The caller owns the clip and must close() it.
    """
    return VideoFileClip(str(path))


# ── Logging ────────────────────────────────────────────────────────

def configure_logging(verbose: bool = False) -> None:
    """Route loguru to stderr at INFO, or DEBUG when verbose."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=LOGGER_FORMAT)
