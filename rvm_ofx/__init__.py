"""
rvm_ofx: Robust Video Matting inference core for OFX compositing hosts
"""

__version__ = "0.1.0"

from .config import (
    Backbone,
    ColorSource,
    Device,
    EffectConfiguration,
    MattingSettings,
    OutputType,
    Precision,
    load_settings,
)
from .errors import (
    MattingError,
    MissingModelFile,
    ModelLoadError,
    RenderError,
    UnsupportedFormat,
)

__all__ = [
    'Backbone',
    'ColorSource',
    'Device',
    'EffectConfiguration',
    'MattingSettings',
    'OutputType',
    'Precision',
    'load_settings',
    'MattingError',
    'MissingModelFile',
    'ModelLoadError',
    'RenderError',
    'UnsupportedFormat',
]
