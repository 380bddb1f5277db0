"""
Adaptive execution: output stability loops and scalar input search.
"""

import logging
from pathlib import Path

import pytest

from flowengine.core.exceptions import PreconditionError
from flowengine.engines.registry import get_default_registry, use_registry
from flowengine.execution import batch
from flowengine.execution.adaptive import assign_path, extract_metric


@pytest.fixture
def adaptive_setup(control):
    registry = get_default_registry()
    split_output = registry[control.split_method](control)
    return control, split_output, registry


def _stable_params(**overrides):
    params = {
        "stability_strategy": "mean_absolute",
        "threshold": 1e6,
        "window": 3,
        "min_splits": 4,
        "max_splits": 10,
    }
    params.update(overrides)
    return params


def test_stops_as_soon_as_stable(adaptive_setup, caplog):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params()
    with caplog.at_level(logging.INFO, logger="flowengine"):
        result = registry["execution_adaptive_output_sequential"](control, split_output)

    assert result.execution_type == "adaptive_output_sequential"
    assert list(result.workflow_results) == ["split1", "split2", "split3", "split4"]
    specific = result.specific_output
    assert len(specific["values"]) == 4
    assert specific["used_seeds"] == {"split1": 1001, "split2": 1002, "split3": 1003, "split4": 1004}
    assert specific["stability"]["is_stable"] is True
    assert specific["stability"]["strategy_name"] == "mean_absolute"
    assert list(specific["split_output"]["splits"]) == ["split1", "split2", "split3", "split4"]
    assert specific["split_output"]["split_type"] == control.split_method
    assert "stability reached" in caplog.text


def test_values_match_workflow_metrics(adaptive_setup):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params()
    result = registry["execution_adaptive_output_sequential"](control, split_output)
    expected = [extract_metric(r, "eval_mse", "mse") for r in result.workflow_results.values()]
    assert result.specific_output["values"] == expected


def test_different_seeds_give_different_splits(adaptive_setup):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params()
    result = registry["execution_adaptive_output_sequential"](control, split_output)
    splits = result.specific_output["split_output"]["splits"]
    assert not splits["split1"]["test"].index.equals(splits["split2"]["test"].index)


def test_max_splits_reached_warns(adaptive_setup, caplog):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params(threshold=1e-12, max_splits=6)
    with caplog.at_level(logging.WARNING, logger="flowengine"):
        result = registry["execution_adaptive_output_sequential"](control, split_output)

    assert len(result.specific_output["values"]) == 6
    assert result.specific_output["stability"]["is_stable"] is False
    assert any(
        getattr(record, "extra_context", {}).get("event") == "adaptive_max_splits_reached"
        for record in caplog.records
    )


def test_requires_exactly_one_split(adaptive_setup):
    control, _, registry = adaptive_setup
    control.split_method = "split_cv"
    control.params.split.params = {"cv_folds": 3}
    split_output = registry["split_cv"](control)
    with pytest.raises(PreconditionError, match="exactly one split. Got 3 from 'split_cv'"):
        registry["execution_adaptive_output_sequential"](control, split_output)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"window": 3, "min_splits": 3}, "min_splits must be >= window"),
        ({"min_splits": 5, "max_splits": 4}, "max_splits must be >= min_splits"),
        ({"stability_strategy": "bogus"}, "Unknown stability strategy"),
        ({"stability_strategy": "custom_absolute"}, "custom_stability_function"),
        ({"threshold": "high"}, "threshold"),
    ],
)
def test_parameters_validated_before_loop(adaptive_setup, overrides, message):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params(**overrides)
    with pytest.raises(PreconditionError, match=message):
        registry["execution_adaptive_output_sequential"](control, split_output)


def test_custom_stability_function(adaptive_setup):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params(
        stability_strategy="custom_absolute", custom_stability_function=max, threshold=1e6
    )
    result = registry["execution_adaptive_output_sequential"](control, split_output)
    assert result.specific_output["stability"]["strategy_name"] == "custom_absolute"


@pytest.mark.slurm
def test_batch_slurm_clamps_last_batch(adaptive_setup, fake_sbatch, tmp_path):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params(
        threshold=1e-12,
        max_splits=5,
        n_splits_per_iteration=3,
        poll_interval=0,
        registry_folder=str(tmp_path / "adaptive"),
    )
    result = registry["execution_adaptive_output_batch_slurm"](control, split_output)

    specific = result.specific_output
    assert len(specific["values"]) == 5
    assert specific["used_seeds"] == {
        "split1": 2001,
        "split2": 2002,
        "split3": 2003,
        "split4": 2004,
        "split5": 2005,
    }
    assert [path.parent.name for path in fake_sbatch] == ["iter_1", "iter_2"]
    assert "#SBATCH --array=0-1" in fake_sbatch[1].read_text()
    assert Path(tmp_path / "adaptive" / "iter_2" / "registry.json").exists()


@pytest.mark.multicore
@pytest.mark.skipif(not batch.fork_available(), reason="fork start method unavailable")
def test_batch_multicore(adaptive_setup, tmp_path):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = _stable_params(
        n_splits_per_iteration=2, resources={"ncpus": 2}, registry_folder=str(tmp_path / "mc")
    )
    result = registry["execution_adaptive_output_batch_multicore"](control, split_output)
    # two rounds of two reach min_splits
    assert list(result.workflow_results) == ["split1", "split2", "split3", "split4"]
    assert result.specific_output["used_seeds"]["split3"] == 2003


def test_assign_path_through_attributes_and_dicts(control):
    assign_path(control, "params.train.params.alpha", 2.5)
    assert control.params.train.params["alpha"] == 2.5
    assign_path(control, "params.split.seed", 99)
    assert control.params.split.seed == 99
    with pytest.raises(PreconditionError):
        assign_path(control, "params.nowhere.alpha", 1)


def test_input_search_runs_until_no_improvement(adaptive_setup):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = {"min_improvement": 1e9, "max_iterations": 5}
    result = registry["execution_adaptive_input_scalar_sequential"](control, split_output)

    specific = result.specific_output
    assert result.execution_type == "adaptive_input_scalar_sequential"
    assert specific["param_values"] == [10, 20]
    assert list(result.workflow_results) == ["param1", "param2"]
    assert specific["best_param"] == 10
    assert specific["best_metric"] == specific["values"][0]
    assert specific["best_result"] is result.workflow_results["param1"]


def test_input_search_honours_max_iterations(adaptive_setup):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = {"min_improvement": float("-inf"), "max_iterations": 3, "param_step": 5}
    result = registry["execution_adaptive_input_scalar_sequential"](control, split_output)
    assert result.specific_output["param_values"] == [10, 15, 20]
    assert len(result.specific_output["values"]) == 3


def test_input_search_leaves_control_untouched(adaptive_setup):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = {"max_iterations": 2}
    registry["execution_adaptive_input_scalar_sequential"](control, split_output)
    assert "alpha" not in control.params.train.params


def test_input_search_rejects_unknown_direction(adaptive_setup):
    control, split_output, registry = adaptive_setup
    control.params.execution.params = {"direction": "sideways"}
    with pytest.raises(PreconditionError, match="direction"):
        registry["execution_adaptive_input_scalar_sequential"](control, split_output)


def test_stops_at_first_stable_observation(control, registry):
    """A scripted metric history becomes stable at the fourth split, one past min_splits."""
    scripted = iter([1.0, 3.0, 2.0, 2.0, 9.0, 9.0, 9.0])

    def wrapper_workflow_scripted(control):
        return {"output_eval": {"eval_mse": {"metrics": {"mse": next(scripted)}}}}

    assert registry.register(
        "workflow_scripted",
        {"wrapper": wrapper_workflow_scripted, "engine": lambda: None, "default_params": lambda: {}},
    )
    control.workflow = "workflow_scripted"
    control.params.execution.params = _stable_params(threshold=0.05, window=2, min_splits=3, max_splits=7)

    with use_registry(registry) as active:
        split_output = active[control.split_method](control)
        result = active["execution_adaptive_output_sequential"](control, split_output)

    specific = result.specific_output
    assert specific["values"] == [1.0, 3.0, 2.0, 2.0]
    assert list(result.workflow_results) == ["split1", "split2", "split3", "split4"]
    assert specific["stability"]["is_stable"] is True
    assert specific["stability"]["stability_value"] == 0.0
