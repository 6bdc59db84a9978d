"""
Parameter and clip definitions of the matting effect, and the per-instance
parameter values.

The tables below are what the host is told in describe_in_context(); the
ParamSet is the instance-side store the host glue writes user edits into.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..config import Backbone, ColorSource, Device, OutputType, Precision
from ..services import GARBAGE_MATTE_CLIP, INPUT_CLIP, OUTPUT_CLIP, SOLID_MATTE_CLIP
from ..utils.pixels import Components

# Parameter names, as registered with the host
DEVICE = "device"
MODEL = "model"
MODEL_FILE = "modelFile"
MODEL_PRECISION = "modelPrecision"
DOWNSAMPLE_RATIO = "downsampleRatio"
OUTPUT_TYPE = "outputType"
COLOR_SOURCE = "colorSource"
POSTMULTIPLY_ALPHA = "postmultiplyAlpha"


class ParamKind(Enum):
    CHOICE = "choice"
    STRING = "string"
    DOUBLE = "double"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ParamDef:
    """Description of one effect parameter."""

    name: str
    kind: ParamKind
    label: str
    hint: str
    default: Any
    options: Tuple[Any, ...] = ()          # CHOICE: option values, in menu order
    option_labels: Tuple[str, ...] = ()    # CHOICE: labels shown to the user
    enabled: bool = True
    animates: bool = False
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    is_file_path: bool = False


@dataclass(frozen=True)
class ClipDef:
    """Description of one effect clip."""

    name: str
    components: Tuple[Components, ...]
    optional: bool = False


PARAM_DEFS: Tuple[ParamDef, ...] = (
    ParamDef(
        DEVICE, ParamKind.CHOICE, "Compute Device",
        "What device backend to use to run model",
        default=Device.CPU,
        options=(Device.CPU, Device.CUDA),
        option_labels=("CPU", "CUDA"),
    ),
    ParamDef(
        MODEL, ParamKind.CHOICE, "Model",
        "What model to load for backbone (either default/prebuilt, or custom one)",
        default=Backbone.MOBILENETV3,
        options=(Backbone.MOBILENETV3, Backbone.RESNET50, Backbone.CUSTOM),
        option_labels=("mobilenetv3", "resnet50", "custom"),
    ),
    ParamDef(
        MODEL_FILE, ParamKind.STRING, "Model File",
        "Path to model filename",
        default="",
        enabled=False,
        is_file_path=True,
    ),
    ParamDef(
        MODEL_PRECISION, ParamKind.CHOICE, "Model Precision",
        "Precision to use (for custom models, must match file !)",
        default=Precision.FLOAT32,
        options=(Precision.FLOAT16, Precision.FLOAT32),
        option_labels=("float16", "float32"),
        enabled=False,
    ),
    ParamDef(
        DOWNSAMPLE_RATIO, ParamKind.DOUBLE, "Downsample ratio",
        "Image downsampling ratio. Set to 0.0 for model auto-select",
        default=0.0,
        minimum=0.0,
        maximum=1.0,
    ),
    ParamDef(
        OUTPUT_TYPE, ParamKind.CHOICE, "Output type",
        "Selects between full RGBA output or mask-only output",
        default=OutputType.RGBA,
        options=(OutputType.RGBA, OutputType.ALPHA),
        option_labels=("RGBA", "Alpha"),
    ),
    ParamDef(
        COLOR_SOURCE, ParamKind.CHOICE, "Output Color Source",
        "Selects whether to use the input RGB value or the model predicted "
        "foreground for the output color components",
        default=ColorSource.MODEL,
        options=(ColorSource.INPUT, ColorSource.MODEL),
        option_labels=("Input Clip", "Model Prediction"),
    ),
    ParamDef(
        POSTMULTIPLY_ALPHA, ParamKind.BOOLEAN, "Output Postmultiply Alpha",
        "Enable/Disable multiplying RGB with Alpha on the output",
        default=False,
    ),
)

CLIP_DEFS: Tuple[ClipDef, ...] = (
    ClipDef(OUTPUT_CLIP, (Components.RGBA, Components.ALPHA)),
    ClipDef(INPUT_CLIP, (Components.RGB, Components.RGBA)),
    ClipDef(GARBAGE_MATTE_CLIP, (Components.NONE, Components.ALPHA), optional=True),
    ClipDef(SOLID_MATTE_CLIP, (Components.NONE, Components.ALPHA), optional=True),
)

PARAMS_BY_NAME: Dict[str, ParamDef] = {p.name: p for p in PARAM_DEFS}


class ParamSet:
    """
    Current values and enabledness of the effect parameters.

    Choice parameters accept the option value itself, its menu index (what
    most hosts send) or its label.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = {p.name: p.default for p in PARAM_DEFS}
        self._enabled: Dict[str, bool] = {p.name: p.enabled for p in PARAM_DEFS}
        for name, value in (values or {}).items():
            self.set(name, value)

    def get(self, name: str) -> Any:
        return self._values[self._definition(name).name]

    def set(self, name: str, value: Any) -> Any:
        """Validate and store a value.  Returns the stored value."""
        pdef = self._definition(name)
        coerced = _coerce(pdef, value)
        self._values[name] = coerced
        return coerced

    def is_enabled(self, name: str) -> bool:
        return self._enabled[self._definition(name).name]

    def set_enabled(self, name: str, enabled: bool) -> None:
        self._enabled[self._definition(name).name] = bool(enabled)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    @staticmethod
    def _definition(name: str) -> ParamDef:
        try:
            return PARAMS_BY_NAME[name]
        except KeyError:
            raise KeyError(f"Unknown parameter: {name}") from None


def _coerce(pdef: ParamDef, value: Any) -> Any:
    if pdef.kind is ParamKind.CHOICE:
        if value in pdef.options:
            return value
        if isinstance(value, int) and not isinstance(value, bool) \
                and 0 <= value < len(pdef.options):
            return pdef.options[value]
        if isinstance(value, str):
            for option, label in zip(pdef.options, pdef.option_labels):
                if value in (label, option.value):
                    return option
        raise ValueError(f"Invalid value for {pdef.name}: {value!r}")

    if pdef.kind is ParamKind.DOUBLE:
        value = float(value)
        if (pdef.minimum is not None and value < pdef.minimum) or \
                (pdef.maximum is not None and value > pdef.maximum):
            raise ValueError(
                f"{pdef.name}={value} outside [{pdef.minimum}, {pdef.maximum}]"
            )
        return value

    if pdef.kind is ParamKind.BOOLEAN:
        return bool(value)

    return "" if value is None else str(value)
