"""
Postprocessor: compose the model outputs into the image written to the host.

Two output policies:
    - RGBA: foreground color (model prediction or input clip) next to
      the predicted alpha, optionally premultiplied.
    - Alpha: the alpha matte replicated to the output clip's channel count.

Design:
    - Stateless, pure tensor arithmetic in the model's dtype and device.
    - Never modifies its inputs in place: the source tensor can be a view
      on host memory.
"""

import torch

from ..config import ColorSource, EffectConfiguration, OutputType
from ..errors import UnsupportedFormat
from ..utils.pixels import Components


class Postprocessor:
    """
    Build the output tensor for one frame.

    Usage:
        post = Postprocessor()
        out = post.compose(fgr, pha, src, config, output_view.components)
    """

    def compose(
        self,
        fgr: torch.Tensor,
        pha: torch.Tensor,
        src: torch.Tensor,
        config: EffectConfiguration,
        output_components: Components,
    ) -> torch.Tensor:
        """
        Args:
            fgr: (1, 3, H, W) predicted foreground.
            pha: (1, 1, H, W) predicted alpha.
            src: (1, 3, H, W) model input color.
            config: Effect configuration (output type, color source, premultiply).
            output_components: Channel layout of the output clip.

        Returns:
            (1, C, H, W) tensor ready for tensor_to_image().
        """
        if config.output_type is OutputType.RGBA:
            return self.compose_rgba(
                fgr, pha, src,
                color_source=config.color_source,
                premultiply=config.premultiply_alpha,
            )
        return self.compose_alpha(pha, output_components)

    def compose_rgba(
        self,
        fgr: torch.Tensor,
        pha: torch.Tensor,
        src: torch.Tensor,
        color_source: ColorSource = ColorSource.MODEL,
        premultiply: bool = False,
    ) -> torch.Tensor:
        color = src if color_source is ColorSource.INPUT else fgr
        if premultiply:
            color = color * pha.repeat(1, 3, 1, 1)
        return torch.cat([color, pha], dim=1)

    def compose_alpha(
        self,
        pha: torch.Tensor,
        output_components: Components,
    ) -> torch.Tensor:
        if output_components not in (Components.RGBA, Components.RGB, Components.ALPHA):
            raise UnsupportedFormat(
                f"Cannot write an alpha matte to {output_components.value} output"
            )
        channels = output_components.channels
        return pha if channels == 1 else pha.repeat(1, channels, 1, 1)
