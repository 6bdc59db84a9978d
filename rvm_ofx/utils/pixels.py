"""
Pixel buffer <-> tensor conversion.

Centralizes all pixel format handling so that other modules never deal
with strides, bit depths or channel layouts directly.

Supported formats: RGBA / RGB / Alpha  x  8-bit int, 16-bit int,
16-bit float, 32-bit float.

Design:
    - The format is validated once (PixelFormat.of) and anything outside
      the supported set raises UnsupportedFormat.
    - Reading is zero-copy: a strided numpy view over the host memory.
      The first copy happens at the device / dtype conversion.
    - Rows may be padded; row_bytes is always honored.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
import torch

from ..errors import UnsupportedFormat


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------

class Components(Enum):
    RGBA = "RGBA"
    RGB = "RGB"
    ALPHA = "Alpha"
    NONE = "None"       # disconnected optional clip

    @property
    def channels(self) -> int:
        return _CHANNELS[self]


class BitDepth(Enum):
    BYTE = "Byte"
    SHORT = "Short"
    HALF = "Half"
    FLOAT = "Float"
    NONE = "None"


_CHANNELS = {
    Components.RGBA: 4,
    Components.RGB: 3,
    Components.ALPHA: 1,
    Components.NONE: 0,
}

# depth -> (numpy dtype, scale applied when reading, clamp range when writing)
_DEPTHS = {
    BitDepth.BYTE: (np.dtype(np.uint8), 1.0 / 255.0, (0, 255)),
    BitDepth.SHORT: (np.dtype(np.uint16), 1.0 / 32768.0, (0, 65535)),
    BitDepth.HALF: (np.dtype(np.float16), None, None),
    BitDepth.FLOAT: (np.dtype(np.float32), None, None),
}


@dataclass(frozen=True)
class Rect:
    """Integer rectangle, x2/y2 exclusive."""

    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    def contains(self, other: "Rect") -> bool:
        return (self.x1 <= other.x1 and self.y1 <= other.y1
                and self.x2 >= other.x2 and self.y2 >= other.y2)


@dataclass
class PixelBufferView:
    """
    Borrowed view on host-owned pixel memory.

    ``data`` is any object exposing the buffer protocol.  Byte offset 0 is
    the first sample of the first row of ``bounds``; consecutive rows are
    ``row_bytes`` apart.  Must not be retained past the render call.
    """

    data: Any
    row_bytes: int
    depth: BitDepth
    components: Components
    bounds: Rect
    clip_name: str = ""


@dataclass(frozen=True)
class PixelFormat:
    """Validated (components, depth) pair."""

    components: Components
    depth: BitDepth

    @classmethod
    def validate(cls, components: Components, depth: BitDepth) -> "PixelFormat":
        if components not in (Components.RGBA, Components.RGB, Components.ALPHA):
            raise UnsupportedFormat(f"Unsupported pixel components: {components.value}")
        if depth not in _DEPTHS:
            raise UnsupportedFormat(f"Unsupported pixel depth: {depth.value}")
        return cls(components, depth)

    @classmethod
    def of(cls, view: PixelBufferView) -> "PixelFormat":
        return cls.validate(view.components, view.depth)

    @property
    def channels(self) -> int:
        return self.components.channels

    @property
    def numpy_dtype(self) -> np.dtype:
        return _DEPTHS[self.depth][0]

    @property
    def scale(self):
        return _DEPTHS[self.depth][1]

    @property
    def clamp_range(self):
        return _DEPTHS[self.depth][2]


# ---------------------------------------------------------------------------
# Host memory
# ---------------------------------------------------------------------------

def _host_array(view: PixelBufferView, fmt: PixelFormat) -> np.ndarray:
    """Zero-copy (H, W, C) numpy view over the host buffer."""
    h, w, nc = view.bounds.height, view.bounds.width, fmt.channels
    itemsize = fmt.numpy_dtype.itemsize
    packed = w * nc * itemsize

    if h <= 0 or w <= 0:
        raise ValueError(f"Empty pixel bounds: {view.bounds}")
    if view.row_bytes < packed:
        raise ValueError(
            f"row_bytes={view.row_bytes} smaller than a packed row ({packed} bytes)"
        )
    if view.row_bytes % itemsize:
        raise ValueError(f"row_bytes={view.row_bytes} not a multiple of the sample size")

    raw = np.frombuffer(view.data, dtype=np.uint8)
    needed = view.row_bytes * (h - 1) + packed
    if raw.nbytes < needed:
        raise ValueError(f"Pixel buffer too small: {raw.nbytes} < {needed} bytes")

    return np.ndarray(
        shape=(h, w, nc),
        dtype=fmt.numpy_dtype,
        buffer=raw,
        strides=(view.row_bytes, nc * itemsize, itemsize),
    )


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------

def image_to_tensor(
    view: PixelBufferView,
    device: torch.device,
    dtype: torch.dtype,
) -> torch.Tensor:
    """
    Convert a host pixel buffer to a normalized tensor.

    Args:
        view: Source pixel buffer.
        device: Target device.
        dtype: Target element type (float16 / float32).

    Returns:
        Tensor of shape (1, C, H, W).  Integer sources are scaled to [0, 1]
        (8-bit by 1/255, 16-bit by 1/32768); float sources keep their range.

    Raises:
        UnsupportedFormat: unknown components or bit depth.
    """
    fmt = PixelFormat.of(view)
    arr = _host_array(view, fmt)
    # torch can only wrap writable memory
    readonly = not arr.flags.writeable
    if readonly:
        arr = arr.copy()

    if fmt.depth is BitDepth.SHORT:
        # torch has no general uint16 support: reinterpret, widen, mask
        t = torch.from_numpy(arr.view(np.int16)).to(torch.int32) & 0xFFFF
    else:
        t = torch.from_numpy(arr)

    if fmt.scale is not None:
        t = t.to(device=device, dtype=torch.float32) * fmt.scale
        t = t.to(dtype)
    else:
        # never alias the host buffer
        t = t.to(device=device, dtype=dtype, copy=not readonly)

    return t.permute(2, 0, 1).unsqueeze(0)


def tensor_to_image(tensor: torch.Tensor, view: PixelBufferView) -> None:
    """
    Write a (1, C, H, W) tensor into a host pixel buffer.

    Inverse of image_to_tensor.  Integer destinations are rounded and clamped
    so out-of-range values saturate instead of wrapping.

    Raises:
        UnsupportedFormat: unknown destination format, or tensor shape not
            matching the destination.  Nothing is written in that case.
    """
    fmt = PixelFormat.of(view)
    expected = (1, fmt.channels, view.bounds.height, view.bounds.width)
    if tuple(tensor.shape) != expected:
        raise UnsupportedFormat(
            f"Tensor shape {tuple(tensor.shape)} does not match "
            f"{fmt.components.value} destination {expected}"
        )

    dst = _host_array(view, fmt)
    if not dst.flags.writeable:
        raise ValueError(f"Destination buffer of clip '{view.clip_name}' is read-only")

    t = tensor.squeeze(0).permute(1, 2, 0)
    if fmt.scale is not None:
        lo, hi = fmt.clamp_range
        t = (t.to(torch.float32) / fmt.scale).round().clamp(lo, hi)
        src = t.to(device="cpu", dtype=torch.int32).numpy().astype(fmt.numpy_dtype)
    else:
        src = t.to(device="cpu", dtype=torch.float32).numpy().astype(fmt.numpy_dtype)

    dst[...] = src


def packed_row_bytes(width: int, components: Components, depth: BitDepth) -> int:
    """Row size in bytes for a tightly packed buffer."""
    fmt = PixelFormat.validate(components, depth)
    return width * fmt.channels * fmt.numpy_dtype.itemsize
