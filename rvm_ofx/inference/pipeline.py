"""
InferencePipeline: render one frame of the matting effect.

This is the integration point that composes all inference modules:
    ModelRegistry -> Preprocessor -> RecurrentStateCache -> Model
        -> Postprocessor -> host output image

Design:
    - One pipeline per effect instance; renders are strictly sequential
      because the recurrent state follows the frame order.
    - Host images are borrowed: every view obtained from the host is
      released before render() returns, whatever happens.
    - A missing clip is an expected outcome, reported through RenderResult
      (after notifying the host), not an exception.
    - Everything else that goes wrong surfaces as RenderError with the
      underlying error chained.  Nothing is written to the output on failure.
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Optional

import torch

from ..config import EffectConfiguration
from ..errors import MattingError, ModelLoadError, RenderError
from ..services import INPUT_CLIP, OUTPUT_CLIP, HostServices
from ..utils.pixels import PixelBufferView, Rect, tensor_to_image
from .model_registry import ModelHandle, ModelRegistry
from .postprocessor import Postprocessor
from .preprocessor import Preprocessor
from .recurrent_state import RecurrentStateCache

logger = logging.getLogger(__name__)

NUM_MODEL_OUTPUTS = 6


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FrameDescriptor:
    """One render request."""

    time: float
    region: Optional[Rect] = None     # render window; None means full frame


@dataclass(frozen=True)
class RenderResult:
    """Outcome of a render call that did not fail."""

    rendered: bool
    cold_start: bool = False
    missing_clip: Optional[str] = None
    host_aborted: bool = False


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class InferencePipeline:
    """
    Per-instance render orchestrator.

    Usage:
        cache = RecurrentStateCache()
        registry = ModelRegistry(bundle_path, cache)
        pipeline = InferencePipeline(host, registry, cache)
        result = pipeline.render(FrameDescriptor(time=10.0), config)
    """

    def __init__(
        self,
        host: HostServices,
        registry: ModelRegistry,
        state_cache: RecurrentStateCache,
    ):
        self.host = host
        self.registry = registry
        self.state_cache = state_cache
        self.preprocessor = Preprocessor()
        self.postprocessor = Postprocessor()

    def render(self, frame: FrameDescriptor, config: EffectConfiguration) -> RenderResult:
        """
        Render the matte for ``frame`` into the host's output clip.

        Args:
            frame: Time and render window of the request.
            config: Effect configuration snapshot for this call.

        Returns:
            RenderResult.  ``rendered`` is False when a clip was missing.

        Raises:
            RenderError: model loading, format or inference failure.
        """
        try:
            handle = self.registry.ensure_ready(config)
        except ModelLoadError as e:
            raise RenderError(f"Model not available: {e}") from e

        with ExitStack() as views:
            output = self._acquire(views, OUTPUT_CLIP, frame.time)
            if output is None:
                return self._missing_clip(OUTPUT_CLIP, frame.time)
            source = self._acquire(views, INPUT_CLIP, frame.time)
            if source is None:
                return self._missing_clip(INPUT_CLIP, frame.time)

            if frame.region is not None and not frame.region.contains(output.bounds):
                raise RenderError(
                    f"Tiled render requested ({frame.region} inside {output.bounds}); "
                    "only full frames are supported"
                )

            try:
                with torch.no_grad():
                    cold_start = self._run(handle, frame, config, source, output)
            except RenderError:
                raise
            except MattingError as e:
                raise RenderError(f"Render failed at t={frame.time}: {e}") from e

        return RenderResult(rendered=True, cold_start=cold_start)

    def _run(
        self,
        handle: ModelHandle,
        frame: FrameDescriptor,
        config: EffectConfiguration,
        source: PixelBufferView,
        output: PixelBufferView,
    ) -> bool:
        src = self.preprocessor.process(source, handle.device, handle.dtype)

        kwargs = {}
        if config.downsample_ratio != 0.0:
            kwargs["downsample_ratio"] = config.downsample_ratio

        state, reusable = self.state_cache.state_for(frame.time)
        if reusable:
            logger.debug(f"t={frame.time}: reusing recurrent state from t={state.time}")
            outputs = handle(src, *state.tensors, **kwargs)
        else:
            logger.debug(f"t={frame.time}: cold start")
            outputs = handle(src, **kwargs)

        if len(outputs) != NUM_MODEL_OUTPUTS:
            raise RenderError(
                f"Model returned {len(outputs)} outputs, expected {NUM_MODEL_OUTPUTS}"
            )
        fgr, pha = outputs[0], outputs[1]
        self.state_cache.record(frame.time, outputs[2:6])

        result = self.postprocessor.compose(fgr, pha, src, config, output.components)
        tensor_to_image(result, output)
        return not reusable

    def _acquire(
        self,
        views: ExitStack,
        clip_name: str,
        time: float,
    ) -> Optional[PixelBufferView]:
        view = self.host.get_view(clip_name, time)
        if view is not None:
            views.callback(self.host.release_view, view)
        return view

    def _missing_clip(self, clip_name: str, time: float) -> RenderResult:
        aborted = bool(self.host.abort())
        logger.warning(
            f"Clip '{clip_name}' has no image at t={time}, "
            f"{'host is aborting' if aborted else 'host is not aborting'}"
        )
        return RenderResult(rendered=False, missing_clip=clip_name, host_aborted=aborted)
