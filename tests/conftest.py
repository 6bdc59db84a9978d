"""Pytest configuration and shared fixtures for rvm_ofx tests."""

import sys
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pytest
import torch
import torch.nn as nn

from rvm_ofx.config import EffectConfiguration
from rvm_ofx.host import ArrayHost
from rvm_ofx.inference.model_registry import RESOURCES_DIR
from rvm_ofx.services import INPUT_CLIP
from rvm_ofx.utils import Components

# Repository root, for the command line tools under scripts/
sys.path.insert(0, str(Path(__file__).parent.parent))


def pytest_configure(config):
    config.addinivalue_line("markers", "gpu: mark test as requiring CUDA GPU")


def pytest_collection_modifyitems(config, items):
    if torch.cuda.is_available():
        return
    skip_gpu = pytest.mark.skip(reason="CUDA not available")
    for item in items:
        if "gpu" in item.keywords:
            item.add_marker(skip_gpu)


class FakeRecurrentModel:
    """
    Stand-in for a frozen matting model.

    fgr is the source scaled by ``fgr_gain``, pha is the channel mean of the
    source, and r1..r4 are tagged with the index of the call that made them,
    so tests can tell which state was fed back in.
    """

    def __init__(self, fgr_gain: float = 0.5, num_outputs: int = 6):
        self.fgr_gain = fgr_gain
        self.num_outputs = num_outputs
        self.calls = []

    def __call__(self, src, *rec, **kwargs):
        index = len(self.calls)
        self.calls.append({"src": src, "rec": rec, "kwargs": kwargs})

        fgr = src * self.fgr_gain
        pha = src.mean(dim=1, keepdim=True)
        state = tuple(
            torch.full((1, 1, 1, 1), float(index), dtype=src.dtype, device=src.device)
            for _ in range(4)
        )
        return ((fgr, pha) + state)[:self.num_outputs]

    @property
    def warm_calls(self):
        return [len(c["rec"]) == 4 for c in self.calls]


class TinyRecurrentMatting(nn.Module):
    """Scriptable model with the recurrent matting signature, for the TorchScript loader."""

    def forward(
        self,
        src: torch.Tensor,
        r1: Optional[torch.Tensor] = None,
        r2: Optional[torch.Tensor] = None,
        r3: Optional[torch.Tensor] = None,
        r4: Optional[torch.Tensor] = None,
        downsample_ratio: float = 1.0,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor,
               torch.Tensor, torch.Tensor, torch.Tensor]:
        pha = src.mean(dim=1, keepdim=True)
        state = pha * downsample_ratio
        if r1 is not None:
            state = state + r1
        return src, pha, state, state, state, state


def save_scripted_model(path):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    torch.jit.script(TinyRecurrentMatting()).save(str(path))
    return str(path)


class RecordingLoader:
    """Model loader that returns a new FakeRecurrentModel and remembers its arguments."""

    def __init__(self, model_factory=FakeRecurrentModel):
        self.model_factory = model_factory
        self.loads = []
        self.models = []

    def __call__(self, path, device):
        self.loads.append((path, device))
        model = self.model_factory()
        self.models.append(model)
        return model

    @property
    def model(self):
        return self.models[-1]


class FailingLoader:
    def __init__(self, error=None):
        self.error = error or RuntimeError("corrupt model file")
        self.calls = 0

    def __call__(self, path, device):
        self.calls += 1
        raise self.error


@pytest.fixture
def loader():
    return RecordingLoader()


@pytest.fixture
def bundle_path(tmp_path):
    """Empty plugin bundle with a Contents/Resources directory."""
    (tmp_path / RESOURCES_DIR).mkdir(parents=True)
    return str(tmp_path)


@pytest.fixture
def config():
    return EffectConfiguration()


def make_frame(height=4, width=6, channels=3, seed=0, dtype=np.float32):
    """Random frame in [0, 1], or the full integer range for integer dtypes."""
    rng = np.random.default_rng(seed)
    frame = rng.random((height, width, channels), dtype=np.float32)
    if np.dtype(dtype).kind == "u":
        frame = frame * np.iinfo(dtype).max
    return frame.astype(dtype)


@pytest.fixture
def make_host():
    """Factory for an ArrayHost holding input frames at the given times."""

    def _make_host(times=(0.0,), channels=3, output_components=Components.RGBA, **kwargs):
        host = ArrayHost(output_components=output_components, **kwargs)
        for i, t in enumerate(times):
            host.add_input(INPUT_CLIP, t, make_frame(channels=channels, seed=i))
        return host

    return _make_host
