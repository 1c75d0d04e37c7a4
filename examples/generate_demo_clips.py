#!/usr/bin/env python3
"""Generate a folder of synthetic clips for trying out clipmerge.

Creates clips in examples/demo-clips/ that exercise the merge pipeline:
numbered without zero padding (clip2 must come before clip10), sizes that
differ from the first clip, and a few clips with no audio track. Each
clip shows its number on a solid color and plays its own tone, so the
merged order is easy to see and hear.

Usage:
    python examples/generate_demo_clips.py
    # Then merge:
    clipmerge merge examples/demo-clips --output-dir examples/demo-renders/
"""

import numpy as np
from moviepy import AudioClip, ColorClip, CompositeVideoClip, ImageClip
from pathlib import Path
from PIL import Image, ImageDraw, ImageFont

OUTPUT_DIR = Path(__file__).resolve().parent / "demo-clips"
FPS = 30

# name, color, duration, size, tone (Hz, None = no audio track)
CLIPS = [
    ("clip1",  (180, 60, 60),  2.0, (320, 240), 330),
    ("clip2",  (60, 60, 180),  1.5, (320, 240), 392),
    ("clip3",  (60, 160, 60),  2.0, (640, 360), None),  # wider, silent
    ("clip4",  (200, 130, 40), 1.0, (320, 240), 440),
    ("clip9",  (130, 60, 180), 1.5, (160, 120), 494),   # smaller
    ("clip10", (40, 170, 170), 2.0, (320, 240), None),  # sorts after clip9
    ("clip11", (200, 200, 50), 1.5, (320, 240), 587),
]


def _make_label(text: str, size: tuple[int, int]) -> np.ndarray:
    """White clip number on a transparent canvas."""
    img = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    try:
        font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", size[1] // 4
        )
    except OSError:
        font = ImageFont.load_default()
    bbox = draw.textbbox((0, 0), text, font=font)
    tw, th = bbox[2] - bbox[0], bbox[3] - bbox[1]
    draw.text(
        ((size[0] - tw) / 2, (size[1] - th) / 2),
        text,
        fill=(255, 255, 255, 255),
        font=font,
    )
    return np.array(img)


def _tone(freq: float, duration: float) -> AudioClip:
    def frame(t):
        t = np.asarray(t)
        wave = 0.3 * np.sin(2 * np.pi * freq * t)
        return np.stack([wave, wave], axis=-1)
    return AudioClip(frame, duration=duration, fps=44100)


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    for name, color, duration, size, freq in CLIPS:
        out = OUTPUT_DIR / f"{name}.mp4"
        if out.exists():
            print(f"  skip {name} (exists)")
            continue

        body = ColorClip(size=size, color=color, duration=duration)
        label = ImageClip(_make_label(name, size), duration=duration)
        final = CompositeVideoClip([body, label], size=size)
        if freq is not None:
            final = final.with_audio(_tone(freq, duration))

        final.write_videofile(
            str(out), fps=FPS, audio=freq is not None, logger=None,
        )
        audio = f"{freq} Hz" if freq is not None else "no audio"
        print(f"  wrote {name} ({duration}s, {size[0]}x{size[1]}, {audio})")

    print(f"\nDone. {len(CLIPS)} clips in {OUTPUT_DIR}")


if __name__ == "__main__":
    main()
