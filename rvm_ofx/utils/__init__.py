# Utility functions for rvm_ofx

from .pixels import (
    BitDepth,
    Components,
    PixelBufferView,
    PixelFormat,
    Rect,
    image_to_tensor,
    tensor_to_image,
    packed_row_bytes,
)
from .log import setup_logging

__all__ = [
    "BitDepth",
    "Components",
    "PixelBufferView",
    "PixelFormat",
    "Rect",
    "image_to_tensor",
    "tensor_to_image",
    "packed_row_bytes",
    "setup_logging",
]
