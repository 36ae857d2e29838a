"""
Image preprocessing — decoded pixels → fixed-size normalised tensor.

Every image that reaches the feature extractor, at training time and at
inference time, goes through ``preprocess``.  There is exactly one resize +
normalise path so the two can never drift apart.

Pipeline::

    PixelBuffer (W×H, L / LA / RGB / RGBA)
      → drop alpha, replicate grey to 3 channels
      → bilinear resize to 224×224 (axes scaled independently)
      → float32 / 255.0                       ← values in [0, 1]
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Iterable, Tuple, Union

import numpy as np
import tensorflow as tf
from PIL import Image

from .config import CHANNELS, IMAGE_SIZE
from .errors import InvalidImageFormat

logger = logging.getLogger(__name__)

# Supported buffer modes → channel count (Pillow naming).
MODE_CHANNELS = {
    "L": 1,
    "LA": 2,
    "RGB": 3,
    "RGBA": 4,
}

# Display thumbnails: longest side, JPEG quality.
THUMBNAIL_SIZE: Tuple[int, int] = (224, 224)
THUMBNAIL_QUALITY: int = 80


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """A decoded image: raw bytes (or a uint8 array) plus its geometry.

    ``data`` is row-major, ``height × width × channels`` with channels
    given by ``mode``.
    """

    data: Union[bytes, np.ndarray]
    width: int
    height: int
    mode: str = "RGB"

    @property
    def channels(self) -> int:
        return MODE_CHANNELS.get(self.mode, 0)

    def to_array(self) -> np.ndarray:
        """Return the pixels as a ``(H, W, C)`` uint8 array.

        Raises
        ------
        InvalidImageFormat
            Unsupported mode, non-positive size, or size mismatch.
        """
        if self.mode not in MODE_CHANNELS:
            raise InvalidImageFormat(
                f"Unsupported pixel mode {self.mode!r}; "
                f"expected one of {sorted(MODE_CHANNELS)}."
            )
        if self.width <= 0 or self.height <= 0:
            raise InvalidImageFormat(
                f"Image dimensions must be positive, got {self.width}x{self.height}."
            )

        expected = self.width * self.height * self.channels
        raw = np.asarray(
            np.frombuffer(self.data, dtype=np.uint8)
            if isinstance(self.data, (bytes, bytearray, memoryview))
            else self.data,
            dtype=np.uint8,
        )
        if raw.size != expected:
            raise InvalidImageFormat(
                f"Buffer holds {raw.size} bytes, expected {expected} "
                f"for {self.width}x{self.height} {self.mode}."
            )
        return raw.reshape(self.height, self.width, self.channels)

    # ── Constructors ───────────────────────────────────────────────────

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Wrap a ``(H, W)`` or ``(H, W, C)`` uint8 array."""
        array = np.ascontiguousarray(array, dtype=np.uint8)
        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        if array.ndim != 3:
            raise InvalidImageFormat(f"Expected a 2-D or 3-D array, got shape {array.shape}.")
        modes = {c: m for m, c in MODE_CHANNELS.items()}
        mode = modes.get(array.shape[2])
        if mode is None:
            raise InvalidImageFormat(f"Unsupported channel count {array.shape[2]}.")
        return cls(data=array, width=array.shape[1], height=array.shape[0], mode=mode)

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        """Build from a Pillow image, converting exotic modes to RGB."""
        if image.mode not in MODE_CHANNELS:
            logger.debug("Converting %s image to RGB", image.mode)
            image = image.convert("RGB")
        return cls(
            data=image.tobytes(),
            width=image.width,
            height=image.height,
            mode=image.mode,
        )

    @classmethod
    def from_bytes(cls, encoded: bytes) -> "PixelBuffer":
        """Decode an encoded image file (JPEG, PNG, …).

        Raises
        ------
        InvalidImageFormat
            If Pillow cannot decode the bytes.
        """
        try:
            with Image.open(io.BytesIO(encoded)) as img:
                img.load()
                return cls.from_image(img)
        except (OSError, SyntaxError, ValueError) as exc:
            raise InvalidImageFormat(f"Could not decode image: {exc}") from exc


# ═══════════════════════════════════════════════════════════════════════════
# Tensor conversion
# ═══════════════════════════════════════════════════════════════════════════

def _to_rgb(pixels: np.ndarray) -> np.ndarray:
    channels = pixels.shape[2]
    if channels in (2, 4):
        pixels = pixels[:, :, :-1]
    if pixels.shape[2] == 1:
        pixels = np.repeat(pixels, CHANNELS, axis=2)
    return pixels


def preprocess(buffer: PixelBuffer) -> np.ndarray:
    """Return a ``(224, 224, 3)`` float32 array in [0, 1].

    Bilinear resize with both axes scaled independently, then /255.

    Raises
    ------
    InvalidImageFormat
        If the buffer cannot be interpreted.
    """
    pixels = _to_rgb(buffer.to_array())
    h, w = IMAGE_SIZE
    resized = tf.image.resize(
        tf.convert_to_tensor(pixels.astype(np.float32)),
        [h, w],
        method=tf.image.ResizeMethod.BILINEAR,
        antialias=False,
    )
    normalized = tf.clip_by_value(resized / 255.0, 0.0, 1.0)
    return normalized.numpy().astype(np.float32, copy=False)


def preprocess_batch(buffers: Iterable[PixelBuffer]) -> np.ndarray:
    """Preprocess several buffers into one ``(n, 224, 224, 3)`` array."""
    arrays = [preprocess(b) for b in buffers]
    if not arrays:
        return np.zeros((0, *IMAGE_SIZE, CHANNELS), dtype=np.float32)
    return np.stack(arrays)


def make_thumbnail(buffer: PixelBuffer) -> bytes:
    """Encode a JPEG display thumbnail, aspect ratio preserved."""
    pixels = _to_rgb(buffer.to_array())
    img = Image.fromarray(np.ascontiguousarray(pixels))
    img.thumbnail(THUMBNAIL_SIZE, Image.Resampling.BILINEAR)
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=THUMBNAIL_QUALITY)
    return out.getvalue()
