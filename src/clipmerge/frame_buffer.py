"""Shared output canvas.

The buffer has no size until the first clip's metadata arrives; lock()
sets it exactly once for the rest of the run. Frames of any size are then
drawn at the fixed size:
  - stretch: scale to fill the whole canvas (aspect ratio not kept).
  - letterbox: scale to fit, centered on black bars.
"""

import numpy as np
from PIL import Image


VALID_FITS = {"stretch", "letterbox"}


class FrameBuffer:
    def __init__(self, fit: str = "stretch"):
        if fit not in VALID_FITS:
            raise ValueError(f"Unknown fit '{fit}'. Valid: {sorted(VALID_FITS)}")
        self.fit = fit
        self._pixels: np.ndarray | None = None
        self.frames_drawn = 0

    @property
    def locked(self) -> bool:
        return self._pixels is not None

    @property
    def size(self) -> tuple[int, int] | None:
        """(width, height) once locked, else None."""
        if self._pixels is None:
            return None
        h, w = self._pixels.shape[:2]
        return (w, h)

    def lock(self, size: tuple[int, int]) -> None:
        """Fix the canvas to (width, height). Only allowed once."""
        if self._pixels is not None:
            raise RuntimeError(f"Frame buffer already locked at {self.size}")
        w, h = int(size[0]), int(size[1])
        if w <= 0 or h <= 0:
            raise ValueError(f"Invalid frame size {w}x{h}")
        self._pixels = np.zeros((h, w, 3), dtype=np.uint8)

    def draw(self, frame: np.ndarray) -> None:
        """Copy one decoded RGB frame into the canvas at its fixed size."""
        if self._pixels is None:
            raise RuntimeError("Frame buffer has no dimensions yet")
        frame = np.asarray(frame)
        if frame.ndim == 2:
            frame = np.stack([frame] * 3, axis=-1)
        frame = frame[..., :3]
        if frame.dtype != np.uint8:
            frame = np.clip(frame, 0, 255).astype(np.uint8)

        if frame.shape == self._pixels.shape:
            self._pixels[...] = frame
        elif self.fit == "stretch":
            self._pixels[...] = _resize(frame, self.size)
        else:
            self._letterbox(frame)
        self.frames_drawn += 1

    def _letterbox(self, frame: np.ndarray) -> None:
        cw, ch = self.size
        fh, fw = frame.shape[:2]
        scale = min(cw / fw, ch / fh)
        w = max(1, round(fw * scale))
        h = max(1, round(fh * scale))
        x = (cw - w) // 2
        y = (ch - h) // 2
        self._pixels[...] = 0
        self._pixels[y:y + h, x:x + w] = _resize(frame, (w, h))

    def snapshot(self) -> bytes:
        """Raw RGB24 bytes of the current canvas, row-major."""
        if self._pixels is None:
            raise RuntimeError("Frame buffer has no dimensions yet")
        return self._pixels.tobytes()

    def array(self) -> np.ndarray:
        """A copy of the current canvas."""
        if self._pixels is None:
            raise RuntimeError("Frame buffer has no dimensions yet")
        return self._pixels.copy()

    def release(self) -> None:
        self._pixels = None


def _resize(frame: np.ndarray, size: tuple[int, int]) -> np.ndarray:
    img = Image.fromarray(np.ascontiguousarray(frame)).resize(size, Image.Resampling.BILINEAR)
    return np.asarray(img)
