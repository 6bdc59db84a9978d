"""
Configuration for the matting effect.

EffectConfiguration is the read-only snapshot the inference core consumes on
every render.  MattingSettings wraps it together with the deployment knobs
(bundle location, logging) used by the command line tools.

Both can be built in Python or loaded from YAML (see configs/default.yaml).
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import torch
import yaml


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Device(Enum):
    CPU = "cpu"
    CUDA = "cuda"

    @property
    def torch_device(self) -> torch.device:
        return torch.device(self.value)


class Backbone(Enum):
    MOBILENETV3 = "mobilenetv3"
    RESNET50 = "resnet50"
    CUSTOM = "custom"


class Precision(Enum):
    FLOAT16 = "float16"
    FLOAT32 = "float32"

    @property
    def bits(self) -> int:
        return 16 if self is Precision.FLOAT16 else 32

    @property
    def torch_dtype(self) -> torch.dtype:
        return torch.float16 if self is Precision.FLOAT16 else torch.float32


class OutputType(Enum):
    RGBA = "RGBA"
    ALPHA = "Alpha"


class ColorSource(Enum):
    INPUT = "input"
    MODEL = "model"


_ENUM_FIELDS = {
    "device": Device,
    "backbone": Backbone,
    "precision": Precision,
    "output_type": OutputType,
    "color_source": ColorSource,
}


# ---------------------------------------------------------------------------
# Effect configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EffectConfiguration:
    """Snapshot of the user-facing effect parameters."""

    # Model selection
    device: Device = Device.CPU
    backbone: Backbone = Backbone.MOBILENETV3
    precision: Precision = Precision.FLOAT32
    model_file: str = ""                  # only used with Backbone.CUSTOM

    # Inference
    downsample_ratio: float = 0.0         # 0.0 lets the model pick

    # Compositing
    output_type: OutputType = OutputType.RGBA
    color_source: ColorSource = ColorSource.MODEL
    premultiply_alpha: bool = False

    # Auxiliary matte connectivity (bookkeeping only)
    has_garbage_matte: bool = False
    has_solid_matte: bool = False

    def with_changes(self, **changes: Any) -> "EffectConfiguration":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to a plain dictionary (enums as their values)."""
        out = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            out[name] = value.value if isinstance(value, Enum) else value
        return out

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "EffectConfiguration":
        """Create config from dictionary.  Unknown keys are ignored."""
        kwargs = {}
        for key, value in config_dict.items():
            if key not in cls.__dataclass_fields__:
                continue
            enum_type = _ENUM_FIELDS.get(key)
            if enum_type is not None and not isinstance(value, enum_type):
                value = enum_type(value)
            kwargs[key] = value
        if "downsample_ratio" in kwargs:
            kwargs["downsample_ratio"] = float(kwargs["downsample_ratio"])
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str) -> "EffectConfiguration":
        """Load from a YAML file, either flat or under an ``effect:`` key."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        effect = data["effect"] if "effect" in data else data
        return cls.from_dict(effect or {})


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass
class MattingSettings:
    """Deployment settings: where the bundled models live and how to log."""

    bundle_path: str = "."
    effect: EffectConfiguration = field(default_factory=EffectConfiguration)
    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_settings(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> MattingSettings:
    """
    Load settings from YAML, falling back to defaults for missing keys.

    Args:
        config_path: YAML file.  None loads nothing and uses defaults.
        overrides: Effect-level overrides applied on top of the file,
            e.g. {"device": "cuda", "downsample_ratio": 0.25}.

    Returns:
        MattingSettings
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}

    effect_dict = dict(data.get("effect") or {})
    if overrides:
        effect_dict.update({k: v for k, v in overrides.items() if v is not None})

    logging_cfg = data.get("logging") or {}
    return MattingSettings(
        bundle_path=str(data.get("bundle_path", ".")),
        effect=EffectConfiguration.from_dict(effect_dict),
        log_level=str(logging_cfg.get("level", "INFO")),
        log_file=logging_cfg.get("log_file"),
    )
