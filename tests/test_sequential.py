"""
Sequential execution and the single-split pipeline body.
"""

import numpy as np
import pytest

from flowengine.core.exceptions import PreconditionError
from flowengine.engines.outputs import ExecutionResult
from flowengine.engines.registry import use_registry
from flowengine.orchestration.pipeline import (
    apply_minmax_params,
    compute_minmax_params,
    denormalize_predictions,
    run_workflow_single,
)


@pytest.fixture
def cv_control(control):
    control.split_method = "split_cv"
    control.params.split.params = {"cv_folds": 3}
    return control


def test_sequential_runs_every_split_in_order(cv_control, builtin_registry):
    with use_registry(builtin_registry) as registry:
        split_output = registry["split_cv"](cv_control)
        result = registry["execution_basic_sequential"](cv_control, split_output)

    assert isinstance(result, ExecutionResult)
    assert result.execution_type == "basic_sequential"
    assert result.continue_workflow is True
    assert not result.deferred
    assert list(result.workflow_results) == ["fold1", "fold2", "fold3"]
    assert result.specific_output == {"n_splits": 3}
    for output in result.workflow_results.values():
        assert output["output_eval"]["eval_mse"]["metrics"]["mse"] >= 0


def test_sequential_does_not_mutate_control(cv_control, builtin_registry):
    with use_registry(builtin_registry) as registry:
        split_output = registry["split_cv"](cv_control)
        registry["execution_basic_sequential"](cv_control, split_output)
    assert cv_control.data.train is None
    assert cv_control.params.train.data is None


def test_sequential_propagates_errors(cv_control, builtin_registry):
    cv_control.params.train.formula = "default ~ not_a_column"
    with use_registry(builtin_registry) as registry:
        split_output = registry["split_cv"](cv_control)
        with pytest.raises(KeyError, match="not_a_column"):
            registry["execution_basic_sequential"](cv_control, split_output)


def test_workflow_single_requires_bound_split(control):
    with pytest.raises(PreconditionError, match="split the data"):
        run_workflow_single(control)


def test_workflow_single_outputs(control, builtin_registry):
    control.evaluation = ["eval_mse", "eval_summarystats"]
    frame = control.data.full
    bound = control.copy_for_split(frame.iloc[:180], frame.iloc[180:])

    with use_registry(builtin_registry):
        results = run_workflow_single(bound)

    assert set(results) >= {"output_train", "output_eval", "normalization"}
    assert len(results["output_train"]["predictions"]) == 60
    assert set(results["output_eval"]) == {"eval_mse", "eval_summarystats"}
    assert results["normalization"]["method"] == "minmax"
    # eval sees the protected binary columns next to predictions and actuals
    eval_data = results["output_eval"]["eval_mse"]["input_data"]
    assert {"predictions", "actuals", "genderFemale"} <= set(eval_data.columns)


def test_prob_output_is_clipped(control, builtin_registry):
    control.output_type = "prob"
    control.train_model = "train_glm"
    frame = control.data.full
    bound = control.copy_for_split(frame.iloc[:180], frame.iloc[180:])
    with use_registry(builtin_registry):
        predictions = run_workflow_single(bound)["output_train"]["predictions"]
    assert np.all((predictions >= 0) & (predictions <= 1))


def test_minmax_round_trip_on_target(credit_frame):
    frame, _ = credit_frame
    params = compute_minmax_params(frame, ["income", "loan_amount"])
    scaled = apply_minmax_params(frame, params)
    assert scaled["income"].min() == pytest.approx(0.0)
    assert scaled["income"].max() == pytest.approx(1.0)
    restored = denormalize_predictions(scaled["income"].to_numpy(), "income", params)
    np.testing.assert_allclose(restored, frame["income"].to_numpy())


def test_minmax_constant_column_maps_to_zero(credit_frame):
    frame, _ = credit_frame
    frame = frame.assign(flat=3.0)
    params = compute_minmax_params(frame, ["flat"])
    assert (apply_minmax_params(frame, params)["flat"] == 0.0).all()
