"""
Preprocessor: turn the host's input image into the model's source tensor.

Design:
    - Stateless: each call is independent.
    - The model takes 3-channel color only.  RGBA inputs lose their alpha,
      anything else is rejected.
"""

import torch

from ..errors import UnsupportedFormat
from ..utils.pixels import PixelBufferView, image_to_tensor


class Preprocessor:
    """
    Convert an input pixel buffer to a (1, 3, H, W) source tensor.

    Usage:
        prep = Preprocessor()
        src = prep.process(view, handle.device, handle.dtype)
    """

    def process(
        self,
        view: PixelBufferView,
        device: torch.device,
        dtype: torch.dtype,
    ) -> torch.Tensor:
        """
        Args:
            view: Input clip image (RGB or RGBA).
            device: Model device.
            dtype: Model element type.

        Returns:
            (1, 3, H, W) tensor on ``device`` in ``dtype``.

        Raises:
            UnsupportedFormat: format not convertible, or not 3/4 channels.
        """
        src = image_to_tensor(view, device, dtype)

        channels = src.shape[1]
        if channels == 4:
            src = src.narrow(1, 0, 3)
        elif channels != 3:
            raise UnsupportedFormat(
                f"Input clip must be RGB or RGBA, got {channels} channel(s)"
            )
        return src
