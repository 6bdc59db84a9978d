"""
Plugin entry point: capability description and action dispatch.

dispatch() is the single boundary where exceptions turn into host status
codes.  Everything below it raises; nothing above it sees an exception.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..errors import RenderError
from ..inference.model_registry import ModelLoader
from ..services import HostServices
from ..utils.pixels import BitDepth
from . import params as P
from .instance import ChangeAction, EffectInstance

logger = logging.getLogger(__name__)

PLUGIN_ID = "rvm_ofx.RobustVideoMatting"
PLUGIN_LABEL = "OFX Robust Video Matting"
PLUGIN_GROUPING = "OpenFX"
CONTEXT_GENERAL = "general"


class Status(Enum):
    OK = "ok"
    FAILED = "failed"
    ERR_FATAL = "err_fatal"
    ERR_MEMORY = "err_memory"
    ERR_UNKNOWN = "err_unknown"
    REPLY_DEFAULT = "reply_default"


class UnsupportedContext(ValueError):
    """Raised when the host asks for a context other than general."""


def describe() -> Dict[str, Any]:
    """Capabilities declared to the host when the plugin is loaded."""
    return {
        "id": PLUGIN_ID,
        "label": PLUGIN_LABEL,
        "grouping": PLUGIN_GROUPING,
        "contexts": [CONTEXT_GENERAL],
        "supported_pixel_depths": [BitDepth.FLOAT.value],
        "supports_tiles": False,
        "sequential_render": True,
        "clip_preferences_slave_params": [P.OUTPUT_TYPE, P.POSTMULTIPLY_ALPHA],
    }


def describe_in_context(context: str) -> Dict[str, Any]:
    """Clip and parameter definitions for ``context``."""
    if context != CONTEXT_GENERAL:
        raise UnsupportedContext(f"Unsupported context: {context}")
    return {
        "clips": list(P.CLIP_DEFS),
        "params": list(P.PARAM_DEFS),
    }


class RobustVideoMattingPlugin:
    """
    Routes host actions to effect instances.

    Usage:
        plugin = RobustVideoMattingPlugin(bundle_path)
        out = {}
        plugin.dispatch("create_instance", host=host, out_args=out)
        instance = out["instance"]
        status = plugin.dispatch("render", instance, time=0.0)
    """

    def __init__(self, bundle_path: str, loader: Optional[ModelLoader] = None):
        self.bundle_path = bundle_path
        self.loader = loader
        self._handlers: Dict[str, Callable[..., Status]] = {
            "describe": self._on_describe,
            "describe_in_context": self._on_describe_in_context,
            "create_instance": self._on_create_instance,
            "destroy_instance": self._on_destroy_instance,
            "instance_changed": self._on_instance_changed,
            "end_instance_changed": self._on_end_instance_changed,
            "get_clip_preferences": self._on_get_clip_preferences,
            "begin_sequence_render": self._on_sequence_render,
            "end_sequence_render": self._on_sequence_render,
            "render": self._on_render,
        }

    def create_instance(
        self,
        host: HostServices,
        values: Optional[Dict[str, Any]] = None,
    ) -> EffectInstance:
        return EffectInstance(host, self.bundle_path, values=values, loader=self.loader)

    def dispatch(
        self,
        action: str,
        instance: Optional[EffectInstance] = None,
        out_args: Optional[Dict[str, Any]] = None,
        **in_args: Any,
    ) -> Status:
        """
        Run one host action.

        Args:
            action: Action name.
            instance: Target effect instance (None for plugin-level actions).
            out_args: Dict receiving the action's outputs, if any.
            **in_args: Action arguments.

        Returns:
            Host status.  Unknown actions reply default.
        """
        handler = self._handlers.get(action)
        if handler is None:
            return Status.REPLY_DEFAULT

        out = out_args if out_args is not None else {}
        try:
            return handler(instance, out, **in_args)
        except RenderError as e:
            logger.error(f"Render failed: {e}")
            return Status.FAILED
        except MemoryError:
            logger.error(f"Out of memory during '{action}'")
            return Status.ERR_MEMORY
        except Exception as e:
            logger.error(f"Unexpected error during '{action}': {e}", exc_info=True)
            return Status.ERR_UNKNOWN

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_describe(self, instance, out):
        out.update(describe())
        return Status.OK

    def _on_describe_in_context(self, instance, out, context=CONTEXT_GENERAL):
        try:
            out.update(describe_in_context(context))
        except UnsupportedContext as e:
            logger.error(str(e))
            return Status.ERR_FATAL
        return Status.OK

    def _on_create_instance(self, instance, out, host=None, values=None):
        if host is None:
            raise ValueError("create_instance requires a host")
        out["instance"] = self.create_instance(host, values)
        return Status.OK

    def _on_destroy_instance(self, instance, out):
        instance.destroy()
        return Status.OK

    def _on_instance_changed(self, instance, out, reason, kind, name, connected=None):
        action = instance.instance_changed(reason, kind, name, connected=connected)
        out["change_action"] = action
        return Status.REPLY_DEFAULT if action is ChangeAction.NONE else Status.OK

    def _on_end_instance_changed(self, instance, out, reason):
        instance.end_instance_changed(reason)
        return Status.OK

    def _on_get_clip_preferences(self, instance, out):
        out.update(instance.clip_preferences())
        return Status.OK

    def _on_sequence_render(self, instance, out, **_):
        return Status.OK

    def _on_render(self, instance, out, time, region=None):
        result = instance.render(time, region)
        out["result"] = result
        if result.rendered:
            return Status.OK
        # Missing clip: fine if the host is tearing the render down anyway
        return Status.OK if result.host_aborted else Status.FAILED
