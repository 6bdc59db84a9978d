# Inference engine for rvm_ofx
#
# Public API:
#   ModelRegistry       -- resolve, load and cache the frozen matting model
#   RecurrentStateCache -- hidden state carried between consecutive frames
#   Preprocessor        -- host input image -> 3-channel source tensor
#   Postprocessor       -- model outputs -> RGBA or alpha-only output tensor
#   InferencePipeline   -- orchestrate one render call

from .model_registry import ModelRegistry, ModelCard, ModelHandle, load_torchscript
from .recurrent_state import RecurrentStateCache, RecurrentState
from .preprocessor import Preprocessor
from .postprocessor import Postprocessor
from .pipeline import InferencePipeline, FrameDescriptor, RenderResult

__all__ = [
    "ModelRegistry",
    "ModelCard",
    "ModelHandle",
    "load_torchscript",
    "RecurrentStateCache",
    "RecurrentState",
    "Preprocessor",
    "Postprocessor",
    "InferencePipeline",
    "FrameDescriptor",
    "RenderResult",
]
