"""Clip discovery — build the ordered clip list from a folder.

Walks the folder recursively, keeps files whose guessed MIME type is
video/*, and sorts them in natural name order (clip1, clip2, clip10).
The order defines the merged timeline.
"""

import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path

from .common import natural_key
from .errors import InputError


DEFAULT_BASE_NAME = "merged_video"

# Not every platform's mimetypes table knows these.
mimetypes.add_type("video/webm", ".webm")
mimetypes.add_type("video/x-matroska", ".mkv")
mimetypes.add_type("video/quicktime", ".mov")
mimetypes.add_type("video/mp4", ".m4v")


@dataclass(frozen=True)
class ClipDescriptor:
    path: Path
    name: str

    @classmethod
    def from_path(cls, path: str | Path) -> "ClipDescriptor":
        path = Path(path)
        return cls(path=path, name=path.name)


def is_video_file(path: str | Path) -> bool:
    mime, _ = mimetypes.guess_type(str(path))
    return mime is not None and mime.startswith("video/")


def sort_clips(clips: list[ClipDescriptor]) -> list[ClipDescriptor]:
    """Natural, case-insensitive order by clip name.

    Ties (names equal ignoring case and zero padding) fall back to the
    full path so the order is stable across runs.
    """
    return sorted(clips, key=lambda c: (natural_key(c.name), str(c.path)))


def discover_clips(folder: str | Path) -> list[ClipDescriptor]:
    """List the video clips under `folder` in timeline order.

    Raises:
        FileNotFoundError: Folder does not exist.
        InputError: No video files found.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Clip folder not found: {folder}")

    clips = [
        ClipDescriptor.from_path(p)
        for p in folder.rglob("*")
        if p.is_file() and is_video_file(p)
    ]
    if not clips:
        raise InputError("No video files found in the selected folder.")
    return sort_clips(clips)


def suggest_base_name(clips: list[ClipDescriptor]) -> str:
    """Output base name: the folder all clips share, or 'merged_video'."""
    if not clips:
        return DEFAULT_BASE_NAME
    parents = [str(c.path.resolve().parent) for c in clips]
    common = Path(os.path.commonpath(parents))
    return common.name or DEFAULT_BASE_NAME
