"""
Host services required by the matting core.

The host is injected into the components that need it at construction
time.  Nothing in rvm_ofx keeps a global reference to a host.
"""

from typing import Optional, Protocol, runtime_checkable

from .utils.pixels import PixelBufferView

# Clip names, as declared to the host
OUTPUT_CLIP = "Output"
INPUT_CLIP = "Input"
GARBAGE_MATTE_CLIP = "GarbageMatte"
SOLID_MATTE_CLIP = "SolidMatte"

MATTE_CLIPS = (GARBAGE_MATTE_CLIP, SOLID_MATTE_CLIP)


@runtime_checkable
class HostServices(Protocol):
    """Clip access and render control offered by the compositing host."""

    def get_view(self, clip_name: str, time: float) -> Optional[PixelBufferView]:
        """Fetch the image of ``clip_name`` at ``time``, or None if unavailable."""
        ...

    def release_view(self, view: PixelBufferView) -> None:
        """Give a view obtained from get_view() back to the host."""
        ...

    def abort(self) -> bool:
        """Ask whether the host is aborting the current render."""
        ...
