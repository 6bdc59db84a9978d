# Host-facing layer of rvm_ofx
#
# Public API:
#   RobustVideoMattingPlugin -- action dispatch, exceptions -> Status
#   EffectInstance           -- per-instance parameters and change handling
#   ArrayHost                -- numpy-backed HostServices for tools and tests

from .params import ParamSet, ParamDef, ClipDef, PARAM_DEFS, CLIP_DEFS
from .instance import EffectInstance, ChangeAction, CHANGE_USER_EDITED, KIND_PARAM, KIND_CLIP
from .plugin import RobustVideoMattingPlugin, Status, describe, describe_in_context
from .array_host import ArrayHost

__all__ = [
    "ParamSet",
    "ParamDef",
    "ClipDef",
    "PARAM_DEFS",
    "CLIP_DEFS",
    "EffectInstance",
    "ChangeAction",
    "CHANGE_USER_EDITED",
    "KIND_PARAM",
    "KIND_CLIP",
    "RobustVideoMattingPlugin",
    "Status",
    "describe",
    "describe_in_context",
    "ArrayHost",
]
