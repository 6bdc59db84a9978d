"""Tests for the effect instance state machine."""

import threading

import pytest
import torch

from rvm_ofx.config import (
    Backbone,
    ColorSource,
    Device,
    EffectConfiguration,
    OutputType,
    Precision,
)
from rvm_ofx.host import CHANGE_USER_EDITED, KIND_CLIP, KIND_PARAM, ChangeAction, EffectInstance
from rvm_ofx.host import params as P
from rvm_ofx.host.instance import CHANGE_PLUGIN_EDITED
from rvm_ofx.services import GARBAGE_MATTE_CLIP, INPUT_CLIP, SOLID_MATTE_CLIP


@pytest.fixture
def instance(make_host, bundle_path, loader):
    return EffectInstance(make_host(times=(0.0, 1.0, 2.0)), bundle_path, loader=loader)


def user_edit(instance, kind, name, connected=None):
    action = instance.instance_changed(CHANGE_USER_EDITED, kind, name, connected)
    instance.end_instance_changed(CHANGE_USER_EDITED)
    return action


def seed_cache(instance):
    instance.state_cache.record(0.0, [torch.zeros(1) for _ in range(4)])


def test_defaults(instance):
    config = instance.configuration

    assert config == EffectConfiguration()
    assert not instance.params.is_enabled(P.MODEL_PRECISION)
    assert not instance.params.is_enabled(P.MODEL_FILE)
    assert instance.params.is_enabled(P.COLOR_SOURCE)
    assert instance.params.is_enabled(P.POSTMULTIPLY_ALPHA)


def test_cpu_forces_float32_precision(instance):
    instance.params.set(P.DEVICE, Device.CUDA)
    instance.update_params_validity()
    instance.params.set(P.MODEL_PRECISION, Precision.FLOAT16)
    assert instance.params.is_enabled(P.MODEL_PRECISION)

    instance.params.set(P.DEVICE, Device.CPU)
    instance.update_params_validity()

    assert instance.params.get(P.MODEL_PRECISION) is Precision.FLOAT32
    assert not instance.params.is_enabled(P.MODEL_PRECISION)


def test_model_file_enabled_for_custom_backbone(instance):
    instance.params.set(P.MODEL, Backbone.CUSTOM)
    instance.update_params_validity()
    assert instance.params.is_enabled(P.MODEL_FILE)

    instance.params.set(P.MODEL, Backbone.RESNET50)
    instance.update_params_validity()
    assert not instance.params.is_enabled(P.MODEL_FILE)


def test_color_options_disabled_for_alpha_output(instance):
    instance.params.set(P.OUTPUT_TYPE, OutputType.ALPHA)
    instance.update_params_validity()

    assert not instance.params.is_enabled(P.COLOR_SOURCE)
    assert not instance.params.is_enabled(P.POSTMULTIPLY_ALPHA)


@pytest.mark.parametrize("name", [P.DEVICE, P.MODEL, P.MODEL_PRECISION, P.MODEL_FILE])
def test_model_params_reload(instance, name):
    instance.render(0.0)
    seed_cache(instance)

    action = user_edit(instance, KIND_PARAM, name)

    assert action is ChangeAction.RELOAD_MODEL
    assert instance.registry.handle is None
    assert not instance.state_cache


def test_downsample_ratio_clears_history(instance):
    instance.render(0.0)
    handle = instance.registry.handle

    instance.params.set(P.DOWNSAMPLE_RATIO, 0.5)
    action = user_edit(instance, KIND_PARAM, P.DOWNSAMPLE_RATIO)

    assert action is ChangeAction.CLEAR_HISTORY
    assert not instance.state_cache
    assert instance.registry.handle is handle


def test_input_clip_change_clears_history(instance):
    seed_cache(instance)

    assert user_edit(instance, KIND_CLIP, INPUT_CLIP) is ChangeAction.CLEAR_HISTORY
    assert not instance.state_cache


@pytest.mark.parametrize("clip,attr", [
    (GARBAGE_MATTE_CLIP, "has_garbage_matte"),
    (SOLID_MATTE_CLIP, "has_solid_matte"),
])
def test_matte_connectivity(instance, clip, attr):
    seed_cache(instance)

    assert user_edit(instance, KIND_CLIP, clip, connected=True) is ChangeAction.MATTE_CONNECTIVITY
    assert getattr(instance, attr) is True
    assert instance.state_cache  # history is kept

    user_edit(instance, KIND_CLIP, clip, connected=False)
    assert getattr(instance, attr) is False


@pytest.mark.parametrize("clip,attr", [
    (GARBAGE_MATTE_CLIP, "has_garbage_matte"),
    (SOLID_MATTE_CLIP, "has_solid_matte"),
])
def test_matte_change_without_connectivity_keeps_flag(instance, clip, attr):
    """A matte clip notification that omits the connection state changes nothing."""
    user_edit(instance, KIND_CLIP, clip, connected=True)

    assert user_edit(instance, KIND_CLIP, clip) is ChangeAction.NONE
    assert getattr(instance, attr) is True


def test_destroy_releases_model_and_history(instance):
    instance.render(0.0)
    assert instance.registry.handle is not None

    instance.destroy()

    assert instance.registry.handle is None
    assert not instance.state_cache


def test_destroy_waits_for_render(instance):
    """destroy() takes the instance lock, so it cannot interleave with a render."""
    instance._lock.acquire()
    done = threading.Event()
    worker = threading.Thread(target=lambda: (instance.destroy(), done.set()))
    worker.start()
    try:
        assert not done.wait(0.2)
    finally:
        instance._lock.release()
    worker.join(timeout=5)

    assert done.is_set()


def test_non_user_changes_are_ignored(instance):
    seed_cache(instance)

    action = instance.instance_changed(CHANGE_PLUGIN_EDITED, KIND_PARAM, P.MODEL)

    assert action is ChangeAction.NONE
    assert instance.state_cache


def test_unrelated_names_do_nothing(instance):
    seed_cache(instance)

    assert user_edit(instance, KIND_PARAM, P.OUTPUT_TYPE) is ChangeAction.NONE
    assert user_edit(instance, KIND_CLIP, "Output") is ChangeAction.NONE
    assert instance.state_cache


def test_clip_preferences_rgba(instance):
    prefs = instance.clip_preferences()

    assert prefs["Input.depth"] == "Float"
    assert prefs["Output.components"] == "RGBA"
    assert prefs["Output.depth"] == "Float"
    assert prefs["premultiplication"] == "unpremultiplied"
    assert "GarbageMatte.components" not in prefs


def test_clip_preferences_alpha_premultiplied(instance):
    instance.params.set(P.OUTPUT_TYPE, "Alpha")
    instance.params.set(P.POSTMULTIPLY_ALPHA, True)
    user_edit(instance, KIND_CLIP, SOLID_MATTE_CLIP, connected=True)

    prefs = instance.clip_preferences()

    assert prefs["Output.components"] == "Alpha"
    assert prefs["premultiplication"] == "premultiplied"
    assert prefs["SolidMatte.components"] == "Alpha"
    assert prefs["SolidMatte.depth"] == "Float"
    assert "GarbageMatte.depth" not in prefs


def test_render_uses_current_parameters(instance, loader):
    instance.render(0.0)
    instance.params.set(P.DOWNSAMPLE_RATIO, 0.25)
    user_edit(instance, KIND_PARAM, P.DOWNSAMPLE_RATIO)

    result = instance.render(1.0)

    assert result.cold_start is True
    assert loader.model.calls[1]["kwargs"] == {"downsample_ratio": 0.25}


def test_render_playback(instance):
    results = [instance.render(t) for t in (0.0, 1.0, 2.0)]

    assert [r.cold_start for r in results] == [True, False, False]


def test_from_configuration(make_host, bundle_path, loader):
    config = EffectConfiguration(
        backbone=Backbone.RESNET50,
        downsample_ratio=0.5,
        output_type=OutputType.ALPHA,
        color_source=ColorSource.INPUT,
        has_garbage_matte=True,
    )

    instance = EffectInstance.from_configuration(make_host(), bundle_path, config, loader=loader)

    assert instance.configuration == config
    assert not instance.params.is_enabled(P.COLOR_SOURCE)


def test_param_choice_accepts_index_and_label(instance):
    assert instance.params.set(P.MODEL, 1) is Backbone.RESNET50
    assert instance.params.set(P.COLOR_SOURCE, "Input Clip") is ColorSource.INPUT
    assert instance.params.set(P.DEVICE, "cuda") is Device.CUDA

    with pytest.raises(ValueError):
        instance.params.set(P.MODEL, 7)
    with pytest.raises(ValueError):
        instance.params.set(P.DOWNSAMPLE_RATIO, 1.5)
    with pytest.raises(KeyError):
        instance.params.set("strength", 1.0)
