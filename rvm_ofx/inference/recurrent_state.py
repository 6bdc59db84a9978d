"""
RecurrentStateCache: carry the model's hidden state from one frame to the next.

Design:
    - A single slot per effect instance.  Either it holds all four recurrent
      tensors stamped with the time of the frame that produced them, or it
      is empty.  There is no partial state and no NaN "unset" marker.
    - The state is reused only when the requested time is the stamped time
      (re-render of the same frame) or exactly one step after it (playback).
      Any other request is a cold start.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import torch

NUM_RECURRENT = 4


@dataclass(frozen=True)
class RecurrentState:
    """Hidden tensors r1..r4 produced by the frame at ``time``."""

    time: float
    tensors: Tuple[torch.Tensor, ...]

    def __post_init__(self):
        if len(self.tensors) != NUM_RECURRENT:
            raise ValueError(
                f"Recurrent state needs {NUM_RECURRENT} tensors, got {len(self.tensors)}"
            )


class RecurrentStateCache:
    """
    Single-slot cache of the recurrent state.

    Usage:
        cache = RecurrentStateCache()
        state, reusable = cache.state_for(time)
        ...
        cache.record(time, outputs[2:6])
    """

    def __init__(self):
        self._state: Optional[RecurrentState] = None

    def state_for(self, time: float) -> Tuple[Optional[RecurrentState], bool]:
        """
        Decide whether the cached state can seed the frame at ``time``.

        Returns:
            (state, reusable).  ``state`` is the cached state or None;
            ``reusable`` is True only for time == t0 or time == t0 + 1.
        """
        state = self._state
        if state is None:
            return None, False
        reusable = time == state.time or time == state.time + 1.0
        return state, reusable

    def record(self, time: float, tensors: Sequence[torch.Tensor]) -> RecurrentState:
        """Overwrite the cache with ``tensors`` stamped at ``time``."""
        state = RecurrentState(time=float(time), tensors=tuple(tensors))
        self._state = state
        return state

    def clear(self) -> None:
        self._state = None

    @property
    def time(self) -> Optional[float]:
        return None if self._state is None else self._state.time

    def __bool__(self) -> bool:
        return self._state is not None
