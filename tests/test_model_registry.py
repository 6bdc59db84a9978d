"""Tests for model resolution, loading and caching."""

from pathlib import Path

import pytest
import torch

from conftest import FailingLoader, save_scripted_model
from rvm_ofx.config import Backbone, Device, EffectConfiguration, Precision
from rvm_ofx.errors import MissingModelFile, ModelLoadError
from rvm_ofx.inference import ModelRegistry, RecurrentStateCache, load_torchscript
from rvm_ofx.inference.model_registry import RESOURCES_DIR


def make_registry(bundle_path, loader):
    cache = RecurrentStateCache()
    return ModelRegistry(bundle_path, cache, loader=loader), cache


def seed_cache(cache):
    cache.record(1.0, [torch.zeros(1) for _ in range(4)])


def test_builtin_model_path(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)

    card = registry.resolve(EffectConfiguration(backbone=Backbone.RESNET50))

    expected = Path(bundle_path) / RESOURCES_DIR / "rvm_resnet50_fp32.torchscript"
    assert card.checkpoint_path == str(expected)
    assert card.name == "resnet50_fp32"


def test_cuda_keeps_requested_precision(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)
    config = EffectConfiguration(device=Device.CUDA, precision=Precision.FLOAT16)

    card = registry.resolve(config)

    assert card.precision is Precision.FLOAT16
    assert card.dtype == torch.float16
    assert card.checkpoint_path.endswith("rvm_mobilenetv3_fp16.torchscript")


def test_cpu_forces_float32(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)
    config = EffectConfiguration(device=Device.CPU, precision=Precision.FLOAT16)

    handle = registry.ensure_ready(config)

    assert handle.dtype == torch.float32
    assert handle.card.precision is Precision.FLOAT32
    assert loader.loads[0][0].endswith("rvm_mobilenetv3_fp32.torchscript")
    assert loader.loads[0][1] == torch.device("cpu")


def test_custom_model_path(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)
    config = EffectConfiguration(backbone=Backbone.CUSTOM, model_file="/models/mine.torchscript")

    assert registry.resolve(config).checkpoint_path == "/models/mine.torchscript"


def test_custom_model_without_file(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)
    config = EffectConfiguration(backbone=Backbone.CUSTOM, model_file="")

    with pytest.raises(MissingModelFile):
        registry.ensure_ready(config)
    assert isinstance(MissingModelFile("x"), ModelLoadError)
    assert loader.loads == []


def test_ensure_ready_is_idempotent(bundle_path, loader):
    """Same configuration twice loads once and keeps the recurrent state."""
    registry, cache = make_registry(bundle_path, loader)
    config = EffectConfiguration()

    first = registry.ensure_ready(config)
    seed_cache(cache)
    second = registry.ensure_ready(config)

    assert first is second
    assert len(loader.loads) == 1
    assert cache


def test_parameters_outside_the_card_do_not_reload(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)

    registry.ensure_ready(EffectConfiguration())
    registry.ensure_ready(EffectConfiguration(downsample_ratio=0.5, premultiply_alpha=True))

    assert len(loader.loads) == 1


def test_load_clears_recurrent_state(bundle_path, loader):
    registry, cache = make_registry(bundle_path, loader)
    registry.ensure_ready(EffectConfiguration())
    seed_cache(cache)

    registry.ensure_ready(EffectConfiguration(backbone=Backbone.RESNET50))

    assert not cache
    assert len(loader.loads) == 2


def test_invalidate_forces_reload(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)
    config = EffectConfiguration()
    first = registry.ensure_ready(config)

    registry.invalidate()

    assert registry.handle is None
    assert registry.ensure_ready(config) is not first
    assert len(loader.loads) == 2


def test_load_failure(bundle_path):
    """A failed load leaves no handle and chains the underlying error."""
    failing = FailingLoader()
    registry, cache = make_registry(bundle_path, failing)
    seed_cache(cache)

    with pytest.raises(ModelLoadError) as excinfo:
        registry.ensure_ready(EffectConfiguration())

    assert excinfo.value.__cause__ is failing.error
    assert registry.handle is None
    assert cache  # state untouched, nothing was loaded


def test_load_failure_drops_previous_model(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)
    registry.ensure_ready(EffectConfiguration())

    registry.loader = FailingLoader()
    with pytest.raises(ModelLoadError):
        registry.ensure_ready(EffectConfiguration(backbone=Backbone.RESNET50))

    assert registry.handle is None


def test_retry_after_failure(bundle_path, loader):
    """The next ensure_ready() after a failure tries again."""
    registry, _ = make_registry(bundle_path, FailingLoader())
    with pytest.raises(ModelLoadError):
        registry.ensure_ready(EffectConfiguration())

    registry.loader = loader
    handle = registry.ensure_ready(EffectConfiguration())

    assert handle is registry.handle


def test_missing_file_with_default_loader(bundle_path):
    registry, _ = make_registry(bundle_path, None)

    with pytest.raises(ModelLoadError):
        registry.ensure_ready(EffectConfiguration())


def test_load_torchscript(tmp_path):
    path = save_scripted_model(tmp_path / "tiny.torchscript")

    model = load_torchscript(path, torch.device("cpu"))
    outputs = model(torch.rand(1, 3, 4, 4))

    assert len(outputs) == 6
    assert outputs[1].shape == (1, 1, 4, 4)


def test_builtin_model_from_bundle(bundle_path):
    """The default loader picks up a model placed in the bundle."""
    save_scripted_model(Path(bundle_path) / RESOURCES_DIR / "rvm_mobilenetv3_fp32.torchscript")
    registry, _ = make_registry(bundle_path, None)

    handle = registry.ensure_ready(EffectConfiguration())

    assert len(handle(torch.rand(1, 3, 2, 2))) == 6


@pytest.mark.gpu
def test_cuda_load(bundle_path, loader):
    registry, _ = make_registry(bundle_path, loader)

    handle = registry.ensure_ready(EffectConfiguration(device=Device.CUDA))

    assert handle.device.type == "cuda"
