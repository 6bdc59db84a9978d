"""
EffectInstance: per-instance state of the matting effect.

Owns the parameter values, the matte connectivity flags and the inference
components (ModelRegistry, RecurrentStateCache, InferencePipeline) of one
effect instance, and maps host change notifications onto them:

    device / model / modelPrecision / modelFile  -> reload model, clear history
    downsampleRatio, Input clip                   -> clear history
    GarbageMatte / SolidMatte clips               -> connectivity flags only

Only user edits are acted upon; other change reasons are left to the host.
"""

import logging
import threading
from enum import Enum
from typing import Any, Dict, Optional

from ..config import Backbone, Device, EffectConfiguration, OutputType, Precision
from ..inference import (
    FrameDescriptor,
    InferencePipeline,
    ModelRegistry,
    RecurrentStateCache,
    RenderResult,
)
from ..inference.model_registry import ModelLoader
from ..services import (
    GARBAGE_MATTE_CLIP,
    INPUT_CLIP,
    MATTE_CLIPS,
    OUTPUT_CLIP,
    SOLID_MATTE_CLIP,
    HostServices,
)
from ..utils.pixels import BitDepth, Components, Rect
from . import params as P

logger = logging.getLogger(__name__)

CHANGE_USER_EDITED = "user_edited"
CHANGE_PLUGIN_EDITED = "plugin_edited"

KIND_PARAM = "param"
KIND_CLIP = "clip"

MODEL_PARAMS = frozenset({P.DEVICE, P.MODEL, P.MODEL_PRECISION, P.MODEL_FILE})


class ChangeAction(Enum):
    """What an instance_changed() notification did."""

    NONE = "none"                     # not handled, host default applies
    RELOAD_MODEL = "reload_model"
    CLEAR_HISTORY = "clear_history"
    MATTE_CONNECTIVITY = "matte_connectivity"


class EffectInstance:
    """
    State machine of one effect instance.

    Usage:
        instance = EffectInstance(host, bundle_path)
        instance.params.set("downsampleRatio", 0.25)
        instance.instance_changed("user_edited", "param", "downsampleRatio")
        instance.end_instance_changed("user_edited")
        result = instance.render(time=10.0)
    """

    def __init__(
        self,
        host: HostServices,
        bundle_path: str,
        values: Optional[Dict[str, Any]] = None,
        loader: Optional[ModelLoader] = None,
    ):
        self.host = host
        self.params = P.ParamSet(values)
        self.has_garbage_matte = False
        self.has_solid_matte = False

        self.state_cache = RecurrentStateCache()
        self.registry = ModelRegistry(bundle_path, self.state_cache, loader=loader)
        self.pipeline = InferencePipeline(host, self.registry, self.state_cache)

        self._lock = threading.RLock()
        self.update_params_validity()

    @classmethod
    def from_configuration(
        cls,
        host: HostServices,
        bundle_path: str,
        config: EffectConfiguration,
        loader: Optional[ModelLoader] = None,
    ) -> "EffectInstance":
        """Create an instance whose parameters mirror ``config``."""
        instance = cls(host, bundle_path, values={
            P.DEVICE: config.device,
            P.MODEL: config.backbone,
            P.MODEL_FILE: config.model_file,
            P.MODEL_PRECISION: config.precision,
            P.DOWNSAMPLE_RATIO: config.downsample_ratio,
            P.OUTPUT_TYPE: config.output_type,
            P.COLOR_SOURCE: config.color_source,
            P.POSTMULTIPLY_ALPHA: config.premultiply_alpha,
        }, loader=loader)
        instance.has_garbage_matte = config.has_garbage_matte
        instance.has_solid_matte = config.has_solid_matte
        return instance

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def configuration(self) -> EffectConfiguration:
        """Snapshot of the current parameter values."""
        p = self.params
        return EffectConfiguration(
            device=p.get(P.DEVICE),
            backbone=p.get(P.MODEL),
            precision=p.get(P.MODEL_PRECISION),
            model_file=p.get(P.MODEL_FILE),
            downsample_ratio=p.get(P.DOWNSAMPLE_RATIO),
            output_type=p.get(P.OUTPUT_TYPE),
            color_source=p.get(P.COLOR_SOURCE),
            premultiply_alpha=p.get(P.POSTMULTIPLY_ALPHA),
            has_garbage_matte=self.has_garbage_matte,
            has_solid_matte=self.has_solid_matte,
        )

    def update_params_validity(self) -> None:
        """Recompute which parameters are meaningful for the current values."""
        p = self.params

        # CPU always runs float32
        if p.get(P.DEVICE) is Device.CPU:
            p.set(P.MODEL_PRECISION, Precision.FLOAT32)
            p.set_enabled(P.MODEL_PRECISION, False)
        else:
            p.set_enabled(P.MODEL_PRECISION, True)

        p.set_enabled(P.MODEL_FILE, p.get(P.MODEL) is Backbone.CUSTOM)

        rgba = p.get(P.OUTPUT_TYPE) is OutputType.RGBA
        p.set_enabled(P.COLOR_SOURCE, rgba)
        p.set_enabled(P.POSTMULTIPLY_ALPHA, rgba)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def instance_changed(
        self,
        reason: str,
        kind: str,
        name: str,
        connected: Optional[bool] = None,
    ) -> ChangeAction:
        """
        React to a parameter or clip change.

        Args:
            reason: Why it changed (only CHANGE_USER_EDITED is handled).
            kind: KIND_PARAM or KIND_CLIP.
            name: Parameter or clip name.
            connected: For clips, whether the clip is now connected.  A matte
                clip notification without it leaves the flag unchanged.

        Returns:
            The ChangeAction taken.
        """
        if reason != CHANGE_USER_EDITED:
            return ChangeAction.NONE

        with self._lock:
            if kind == KIND_PARAM:
                if name in MODEL_PARAMS:
                    logger.info(f"Parameter '{name}' changed, model will be reloaded")
                    self.registry.invalidate()
                    self.state_cache.clear()
                    return ChangeAction.RELOAD_MODEL
                if name == P.DOWNSAMPLE_RATIO:
                    self.state_cache.clear()
                    return ChangeAction.CLEAR_HISTORY

            elif kind == KIND_CLIP:
                if name == INPUT_CLIP:
                    self.state_cache.clear()
                    return ChangeAction.CLEAR_HISTORY
                if name in MATTE_CLIPS:
                    if connected is None:
                        logger.warning(f"Clip '{name}' changed without connectivity, ignored")
                        return ChangeAction.NONE
                    if name == GARBAGE_MATTE_CLIP:
                        self.has_garbage_matte = bool(connected)
                    else:
                        self.has_solid_matte = bool(connected)
                    return ChangeAction.MATTE_CONNECTIVITY

        return ChangeAction.NONE

    def end_instance_changed(self, reason: str) -> None:
        if reason == CHANGE_USER_EDITED:
            with self._lock:
                self.update_params_validity()

    def destroy(self) -> None:
        """Drop the model and the recurrent state."""
        with self._lock:
            self.registry.invalidate()
            self.state_cache.clear()

    def clip_preferences(self) -> Dict[str, str]:
        """Components, depths and premultiplication requested from the host."""
        float_depth = BitDepth.FLOAT.value
        prefs = {f"{INPUT_CLIP}.depth": float_depth}

        connected = {
            GARBAGE_MATTE_CLIP: self.has_garbage_matte,
            SOLID_MATTE_CLIP: self.has_solid_matte,
        }
        for clip in MATTE_CLIPS:
            if connected[clip]:
                prefs[f"{clip}.components"] = Components.ALPHA.value
                prefs[f"{clip}.depth"] = float_depth

        alpha_only = self.params.get(P.OUTPUT_TYPE) is OutputType.ALPHA
        prefs[f"{OUTPUT_CLIP}.components"] = (Components.ALPHA if alpha_only else Components.RGBA).value
        prefs[f"{OUTPUT_CLIP}.depth"] = float_depth
        prefs["premultiplication"] = (
            "premultiplied" if self.params.get(P.POSTMULTIPLY_ALPHA) else "unpremultiplied"
        )
        return prefs

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, time: float, region: Optional[Rect] = None) -> RenderResult:
        with self._lock:
            frame = FrameDescriptor(time=float(time), region=region)
            return self.pipeline.render(frame, self.configuration)
