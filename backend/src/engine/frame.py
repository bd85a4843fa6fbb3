"""Frame container — one RGBA image buffer at a frame number.

Effects receive a Frame, replace its pixels in place and hand the same object
back. Also holds the PNG codec used for IPC transport.

Frames carry premultiplied RGBA. PNG stores straight alpha, so the transport
converts with premultiply() after decoding and unpremultiply() before encoding.
"""

import io

import cv2
import numpy as np
from PIL import Image


class Frame:
    """Mutable (H, W, 4) uint8 RGBA buffer tagged with a frame number."""

    def __init__(self, number: int, image: np.ndarray):
        self.number = number
        self._image = _check_rgba(image)

    @classmethod
    def blank(cls, width: int, height: int, number: int = 1) -> "Frame":
        """Fully transparent frame."""
        return cls(number, np.zeros((height, width, 4), dtype=np.uint8))

    @property
    def width(self) -> int:
        return self._image.shape[1]

    @property
    def height(self) -> int:
        return self._image.shape[0]

    def get_image(self) -> np.ndarray:
        return self._image

    def add_image(self, image: np.ndarray):
        """Replace the pixel contents. The Frame object itself is kept."""
        self._image = _check_rgba(image)


def _check_rgba(image: np.ndarray) -> np.ndarray:
    if not isinstance(image, np.ndarray):
        raise TypeError(f"expected ndarray, got {type(image).__name__}")
    if image.ndim != 3 or image.shape[2] != 4:
        raise ValueError(f"expected (H, W, 4) RGBA image, got shape {image.shape}")
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    return image


def premultiply(image: np.ndarray) -> np.ndarray:
    """Straight RGBA to premultiplied RGBA (what effects operate on)."""
    if image.size == 0:
        return image.copy()
    return cv2.cvtColor(np.ascontiguousarray(image), cv2.COLOR_RGBA2mRGBA)


def unpremultiply(image: np.ndarray) -> np.ndarray:
    """Premultiplied RGBA back to straight RGBA. Fully transparent pixels become 0."""
    if image.size == 0:
        return image.copy()
    return cv2.cvtColor(np.ascontiguousarray(image), cv2.COLOR_mRGBA2RGBA)


def encode_png(image: np.ndarray) -> bytes:
    """Encode an RGBA frame to PNG bytes (lossless, keeps alpha)."""
    img = Image.fromarray(image)  # (H, W, 4) uint8 → RGBA
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def decode_png(data: bytes) -> np.ndarray:
    """Decode PNG bytes to an RGBA numpy array."""
    img = Image.open(io.BytesIO(data)).convert("RGBA")
    return np.array(img)
