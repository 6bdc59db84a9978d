"""
ArrayHost: in-memory HostServices backed by numpy frames.

Used by the command-line tool and the tests.  Input frames are registered
per clip and time; output buffers are allocated on first request with the
input's bounds and can be row-padded to exercise strided host memory.
"""

from typing import Dict, Optional, Set, Tuple

import numpy as np

from ..services import INPUT_CLIP, OUTPUT_CLIP
from ..utils.pixels import (
    BitDepth,
    Components,
    PixelBufferView,
    PixelFormat,
    Rect,
    packed_row_bytes,
)


_Key = Tuple[str, float]


class ArrayHost:
    """
    HostServices implementation over numpy arrays.

    Usage:
        host = ArrayHost(output_components=Components.RGBA)
        host.add_input(INPUT_CLIP, 0.0, frame)       # (H, W, 3|4) float32
        instance = EffectInstance(host, bundle_path)
        instance.render(0.0)
        matte = host.output(0.0)                      # (H, W, C)
    """

    def __init__(
        self,
        output_components: Components = Components.RGBA,
        output_depth: BitDepth = BitDepth.FLOAT,
        row_padding: int = 0,
        aborting: bool = False,
    ):
        """
        Args:
            output_components: Layout of the output clip.
            output_depth: Bit depth of the output clip.
            row_padding: Extra bytes appended to each output row.
            aborting: Value returned by abort().
        """
        self.output_components = output_components
        self.output_depth = output_depth
        self.row_padding = row_padding
        self.aborting = aborting

        self.abort_calls = 0
        self._inputs: Dict[_Key, PixelBufferView] = {}
        self._outputs: Dict[float, PixelBufferView] = {}
        self._unavailable: Set[_Key] = set()
        self._outstanding: Dict[int, PixelBufferView] = {}

    # ------------------------------------------------------------------
    # Test / tool side
    # ------------------------------------------------------------------

    def add_input(
        self,
        clip_name: str,
        time: float,
        array: np.ndarray,
        components: Optional[Components] = None,
        depth: Optional[BitDepth] = None,
    ) -> PixelBufferView:
        """
        Register a (H, W, C) frame for ``clip_name`` at ``time``.

        Components and depth are inferred from the array when not given.
        """
        if array.ndim == 2:
            array = array[:, :, None]
        if array.ndim != 3:
            raise ValueError(f"Expected an (H, W, C) array, got shape {array.shape}")

        components = components or _components_for(array.shape[2])
        depth = depth or _depth_for(array.dtype)
        fmt = PixelFormat.validate(components, depth)
        if array.shape[2] != fmt.channels:
            raise ValueError(
                f"Array has {array.shape[2]} channels, {components.value} needs {fmt.channels}"
            )

        array = np.ascontiguousarray(array, dtype=fmt.numpy_dtype)
        h, w = array.shape[:2]
        view = PixelBufferView(
            data=array.reshape(-1).view(np.uint8),
            row_bytes=w * fmt.channels * array.itemsize,
            depth=depth,
            components=components,
            bounds=Rect(0, 0, w, h),
            clip_name=clip_name,
        )
        self._inputs[(clip_name, float(time))] = view
        return view

    def make_unavailable(self, clip_name: str, time: float) -> None:
        """Make get_view() return None for ``clip_name`` at ``time``."""
        self._unavailable.add((clip_name, float(time)))

    def output(self, time: float) -> np.ndarray:
        """Copy of the output frame rendered at ``time``, shape (H, W, C)."""
        view = self._outputs[float(time)]
        fmt = PixelFormat.of(view)
        h, w = view.bounds.height, view.bounds.width
        arr = np.ndarray(
            shape=(h, w, fmt.channels),
            dtype=fmt.numpy_dtype,
            buffer=np.frombuffer(view.data, dtype=np.uint8),
            strides=(view.row_bytes, fmt.channels * fmt.numpy_dtype.itemsize,
                     fmt.numpy_dtype.itemsize),
        )
        return arr.copy()

    def has_output(self, time: float) -> bool:
        return float(time) in self._outputs

    def discard(self, time: float) -> None:
        """Forget every input and output frame registered at ``time``."""
        time = float(time)
        self._outputs.pop(time, None)
        for key in [k for k in self._inputs if k[1] == time]:
            del self._inputs[key]

    @property
    def outstanding(self) -> int:
        """Number of views handed out and not yet released."""
        return len(self._outstanding)

    # ------------------------------------------------------------------
    # HostServices
    # ------------------------------------------------------------------

    def get_view(self, clip_name: str, time: float) -> Optional[PixelBufferView]:
        key = (clip_name, float(time))
        if key in self._unavailable:
            return None

        if clip_name == OUTPUT_CLIP:
            view = self._output_view(float(time))
        else:
            view = self._inputs.get(key)
        if view is None:
            return None

        self._outstanding[id(view)] = view
        return view

    def release_view(self, view: PixelBufferView) -> None:
        if self._outstanding.pop(id(view), None) is None:
            raise ValueError(f"View of clip '{view.clip_name}' was not handed out")

    def abort(self) -> bool:
        self.abort_calls += 1
        return self.aborting

    # ------------------------------------------------------------------

    def _output_view(self, time: float) -> Optional[PixelBufferView]:
        if time in self._outputs:
            return self._outputs[time]

        source = self._inputs.get((INPUT_CLIP, time))
        if source is None:
            return None

        bounds = source.bounds
        row_bytes = packed_row_bytes(bounds.width, self.output_components,
                                     self.output_depth) + self.row_padding
        view = PixelBufferView(
            data=bytearray(row_bytes * bounds.height),
            row_bytes=row_bytes,
            depth=self.output_depth,
            components=self.output_components,
            bounds=bounds,
            clip_name=OUTPUT_CLIP,
        )
        self._outputs[time] = view
        return view


def _components_for(channels: int) -> Components:
    try:
        return {1: Components.ALPHA, 3: Components.RGB, 4: Components.RGBA}[channels]
    except KeyError:
        raise ValueError(f"No pixel layout with {channels} channels") from None


def _depth_for(dtype: np.dtype) -> BitDepth:
    depths = {
        np.dtype(np.uint8): BitDepth.BYTE,
        np.dtype(np.uint16): BitDepth.SHORT,
        np.dtype(np.float16): BitDepth.HALF,
        np.dtype(np.float32): BitDepth.FLOAT,
    }
    try:
        return depths[np.dtype(dtype)]
    except KeyError:
        raise ValueError(f"No bit depth for array dtype {dtype}") from None
