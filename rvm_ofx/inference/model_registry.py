"""
ModelRegistry: resolve, load, and cache the matting model of one effect instance.

Design:
    - Convention over configuration: the two bundled backbones ship as
      TorchScript files in the plugin bundle, one per precision
      (Contents/Resources/rvm_<backbone>_fp<16|32>.torchscript).
      The "custom" backbone points at an arbitrary user file.
    - A ModelCard identifies a model completely (backbone, device,
      precision, file).  If the requested card equals the loaded one,
      ensure_ready() is a no-op.
    - Loading is done through an injectable loader so tests (and other
      hosts) can provide their own modules.  The default loader freezes
      the TorchScript graph for inference.
    - This is the ONLY module that loads model files.  A successful load
      always clears the recurrent state: hidden tensors from one model
      are meaningless to another.

Adding a new bundled backbone:
    1. Export rvm_<name>_fp16.torchscript / rvm_<name>_fp32.torchscript.
    2. Add the name to config.Backbone.
    3. Done.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import torch

from ..config import Backbone, Device, EffectConfiguration, Precision
from ..errors import MissingModelFile, ModelLoadError
from .recurrent_state import RecurrentStateCache

logger = logging.getLogger(__name__)

RESOURCES_DIR = Path("Contents") / "Resources"

ModelLoader = Callable[[str, torch.device], Any]


@dataclass(frozen=True)
class ModelCard:
    """Everything that identifies a loaded model."""

    backbone: Backbone
    device: Device
    precision: Precision
    checkpoint_path: str

    @property
    def name(self) -> str:
        return f"{self.backbone.value}_fp{self.precision.bits}"

    @property
    def torch_device(self) -> torch.device:
        return self.device.torch_device

    @property
    def dtype(self) -> torch.dtype:
        return self.precision.torch_dtype


@dataclass(frozen=True)
class ModelHandle:
    """A loaded, frozen model and the card it was loaded from."""

    card: ModelCard
    model: Any

    @property
    def device(self) -> torch.device:
        return self.card.torch_device

    @property
    def dtype(self) -> torch.dtype:
        return self.card.dtype

    def __call__(self, *args, **kwargs):
        return self.model(*args, **kwargs)


def load_torchscript(path: str, device: torch.device):
    """
    Load a TorchScript file and prepare it for inference.

    The graph is moved to ``device``, switched to eval mode, frozen
    (constants folded, training-only branches dropped) and the JIT
    profiling executor is disabled so the first frames are not spent
    on profiling runs.
    """
    model = torch.jit.load(path, map_location=device)
    model = model.to(device)
    model.eval()
    model = torch.jit.freeze(model)
    torch._C._jit_set_profiling_mode(False)
    return model


class ModelRegistry:
    """
    Resolve and cache the model for an effect instance.

    Usage:
        cache = RecurrentStateCache()
        registry = ModelRegistry(bundle_path, cache)
        handle = registry.ensure_ready(config)
        outputs = handle(src, downsample_ratio=0.25)
    """

    def __init__(
        self,
        bundle_path: str,
        state_cache: RecurrentStateCache,
        loader: Optional[ModelLoader] = None,
    ):
        self.bundle_path = bundle_path
        self.state_cache = state_cache
        self.loader = loader or load_torchscript
        self._handle: Optional[ModelHandle] = None

    @property
    def handle(self) -> Optional[ModelHandle]:
        return self._handle

    def resolve(self, config: EffectConfiguration) -> ModelCard:
        """
        Build the ModelCard for a configuration.

        CPU inference always runs in float32; the requested precision is
        ignored on CPU.

        Raises:
            MissingModelFile: custom backbone without a file path.
        """
        precision = config.precision
        if config.device is Device.CPU:
            precision = Precision.FLOAT32

        if config.backbone is Backbone.CUSTOM:
            if not config.model_file:
                raise MissingModelFile("Custom model selected but no model file is set")
            path = config.model_file
        else:
            filename = f"rvm_{config.backbone.value}_fp{precision.bits}.torchscript"
            path = str(Path(self.bundle_path) / RESOURCES_DIR / filename)

        return ModelCard(
            backbone=config.backbone,
            device=config.device,
            precision=precision,
            checkpoint_path=path,
        )

    def ensure_ready(self, config: EffectConfiguration) -> ModelHandle:
        """
        Return a loaded model matching ``config``, loading it if needed.

        Returns:
            ModelHandle (the same instance as long as the card is unchanged).

        Raises:
            MissingModelFile: custom backbone without a file path.
            ModelLoadError: the file could not be loaded, moved or frozen.
        """
        card = self.resolve(config)
        if self._handle is not None and self._handle.card == card:
            return self._handle

        # Never keep a stale or half-initialized model around
        self._handle = None

        logger.info(
            f"Loading model {card.name} from {card.checkpoint_path} on {card.device.value}"
        )
        try:
            model = self.loader(card.checkpoint_path, card.torch_device)
        except Exception as e:
            logger.error(f"Failed to load model {card.checkpoint_path}: {e}")
            raise ModelLoadError(f"Failed to load model {card.checkpoint_path}: {e}") from e

        self.state_cache.clear()
        self._handle = ModelHandle(card=card, model=model)
        return self._handle

    def invalidate(self) -> None:
        """Drop the loaded model; the next ensure_ready() reloads."""
        if self._handle is not None:
            logger.debug(f"Invalidating model {self._handle.card.name}")
        self._handle = None
