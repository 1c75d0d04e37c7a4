"""Merge config loader.

Optional YAML file with run settings. Every key has a default, so an
absent file or an empty one yields DEFAULT_CONFIG.

Merge config schema:
  video:
    fps: 30              # output frame cadence
    bitrate: 5000000     # target video bitrate, bits per second
    fit: stretch         # "stretch" or "letterbox" for off-size clips
  audio:
    sample_rate: 44100
  paths:
    footage: "/data/clips"
  input: "${footage}/day1"         # default clip folder
  output_dir: "${footage}/merged"  # where the merged file is saved
"""

import copy
from pathlib import Path

import yaml

from .common import resolve_path_vars
from .frame_buffer import VALID_FITS


DEFAULT_CONFIG = {
    "video": {"fps": 30, "bitrate": 5_000_000, "fit": "stretch"},
    "audio": {"sample_rate": 44100},
    "input": None,
    "output_dir": ".",
}


def _positive_number(section: dict, key: str, where: str) -> None:
    value = section[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"Merge config: {where}.{key} must be > 0, got {value!r}")


def load_merge_config(config_path: str | Path | None = None) -> dict:
    """Load, validate, and normalize a merge config.

    Processing pipeline:
      1. Parse YAML (skipped when no path is given).
      2. Overlay video/audio settings on the defaults.
      3. Validate fps, bitrate, fit and sample_rate.
      4. Resolve ${path} variables in input and output_dir.

    Args:
        config_path: Path to the YAML config, or None for defaults.

    Returns:
        Normalized config dict.

    Raises:
        ValueError: Invalid field.
        FileNotFoundError: Missing config file.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path is None:
        return config

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError("Merge config: top level must be a mapping")

    for section in ("video", "audio"):
        values = raw.get(section) or {}
        if not isinstance(values, dict):
            raise ValueError(f"Merge config: '{section}' must be a mapping")
        unknown = set(values) - set(config[section])
        if unknown:
            raise ValueError(
                f"Merge config: unknown {section} field(s) {sorted(unknown)}"
            )
        config[section].update(values)

    video = config["video"]
    _positive_number(video, "fps", "video")
    _positive_number(video, "bitrate", "video")
    if video["fit"] not in VALID_FITS:
        raise ValueError(
            f"Merge config: invalid video.fit '{video['fit']}'. "
            f"Valid: {sorted(VALID_FITS)}"
        )
    video["bitrate"] = int(video["bitrate"])
    _positive_number(config["audio"], "sample_rate", "audio")
    config["audio"]["sample_rate"] = int(config["audio"]["sample_rate"])

    paths = raw.get("paths", {})
    for key in ("input", "output_dir"):
        if raw.get(key) is not None:
            config[key] = resolve_path_vars(str(raw[key]), paths)

    return config
