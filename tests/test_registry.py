"""
Engine registry tests.
"""

import logging

import pytest

from flowengine.core.exceptions import EngineNotFound, FlowEngineError
from flowengine.engines.outputs import initialize_output_eval
from flowengine.engines.registry import (
    EngineBundle,
    EngineRegistry,
    create_registry,
    current_registry,
    get_default_registry,
    use_registry,
)


def wrapper_eval_constant(control):
    return initialize_output_eval(
        metrics={"constant": 1.0},
        eval_type="constant",
        input_data=control.params.eval.eval_data,
    )


def engine_eval_constant():
    return 1.0


def default_params_eval_constant():
    return {}


def wrapper_eval_wrong_args(control, extra):
    return initialize_output_eval(metrics={"x": 1.0}, eval_type="x", input_data=None)


def _bundle(wrapper=wrapper_eval_constant):
    return {"wrapper": wrapper, "engine": engine_eval_constant, "default_params": default_params_eval_constant}


def test_builtins_are_registered(builtin_registry):
    """Every built-in engine passes its own contract."""
    expected = {
        "split_random",
        "split_random_stratified",
        "split_cv",
        "workflow_single",
        "execution_basic_sequential",
        "execution_basic_batch_local",
        "execution_basic_batch_multicore",
        "execution_basic_batch_slurm",
        "execution_adaptive_output_sequential",
        "execution_adaptive_output_batch_multicore",
        "execution_adaptive_output_batch_slurm",
        "execution_adaptive_input_scalar_sequential",
        "execution_basic_slurm_array",
        "train_lm",
        "train_glm",
        "eval_mse",
        "eval_summarystats",
        "reportelement_text_msesummary",
        "report_summary",
        "publish_json",
    }
    assert expected <= set(builtin_registry.keys())


def test_register_lookup_and_wrapper_access():
    registry = EngineRegistry("unit")
    assert registry.register("eval_constant", _bundle()) is True

    bundle = registry.lookup("eval_constant")
    assert isinstance(bundle, EngineBundle)
    assert registry["eval_constant"] is wrapper_eval_constant
    assert "eval_constant" in registry
    assert len(registry) == 1


def test_invalid_engine_is_logged_not_raised(caplog):
    registry = EngineRegistry("unit")
    with caplog.at_level(logging.WARNING, logger="flowengine"):
        assert registry.register("eval_broken", _bundle(wrapper_eval_wrong_args)) is False
    assert "eval_broken" not in registry
    assert "not registered" in caplog.text


def test_missing_callable_rejected():
    registry = EngineRegistry("unit")
    assert registry.register("eval_partial", {"wrapper": wrapper_eval_constant}) is False


def test_raising_default_params_is_not_fatal(caplog):
    def default_params_exploding():
        raise RuntimeError("boom")

    registry = EngineRegistry("unit")
    bundle = {"wrapper": wrapper_eval_constant, "engine": engine_eval_constant, "default_params": default_params_exploding}
    with caplog.at_level(logging.WARNING, logger="flowengine"):
        assert registry.register("eval_constant", bundle) is False
    assert "eval_constant" not in registry
    assert "boom" in caplog.text


def test_bundle_instance_with_non_callable_is_rejected():
    registry = EngineRegistry("unit")
    bundle = EngineBundle(wrapper=wrapper_eval_constant, engine=engine_eval_constant, default_params={})
    assert registry.register("eval_constant", bundle) is False


def test_unknown_role_rejected():
    registry = EngineRegistry("unit")
    assert registry.register("scoring_constant", _bundle()) is False


def test_replacing_key_overwrites_binding():
    registry = EngineRegistry("unit")
    registry.register("eval_constant", _bundle())
    replacement = EngineBundle(
        wrapper=wrapper_eval_constant, engine=lambda: 2.0, default_params=default_params_eval_constant
    )
    assert registry.register("eval_constant", replacement) is True
    assert registry.lookup("eval_constant") is replacement


def test_lookup_unknown_key_raises_engine_not_found():
    registry = EngineRegistry("unit")
    with pytest.raises(EngineNotFound) as excinfo:
        registry.lookup("eval_missing")
    assert isinstance(excinfo.value, KeyError)
    assert isinstance(excinfo.value, FlowEngineError)
    assert excinfo.value.code == "engine_not_found"


def test_list_by_role_and_grouped(builtin_registry):
    assert builtin_registry.list("split") == ["split_cv", "split_random", "split_random_stratified"]
    grouped = builtin_registry.list()
    assert set(grouped["eval"]) == {"eval_mse", "eval_summarystats"}
    assert isinstance(grouped["train"]["train_lm"], EngineBundle)


def test_unregister():
    registry = EngineRegistry("unit")
    registry.register("eval_constant", _bundle())
    registry.unregister("eval_constant")
    assert "eval_constant" not in registry
    with pytest.raises(EngineNotFound):
        registry.unregister("eval_constant")


def test_use_registry_scopes_active_registry():
    custom = create_registry("custom", include_builtins=False)
    assert current_registry() is get_default_registry()
    with use_registry(custom) as active:
        assert active is custom
        assert current_registry() is custom
    assert current_registry() is get_default_registry()
