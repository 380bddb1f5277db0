"""Single-split pipeline body: preprocess, normalise, train, predict, evaluate."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

import numpy as np
import pandas as pd

from ..config.schema import ControlConfig
from ..core.exceptions import PreconditionError
from ..core.logging import get_logger
from ..engines.registry import current_registry

LOGGER = get_logger(__name__)


def compute_minmax_params(data: pd.DataFrame, feature_names: List[str]) -> Dict[str, Dict[str, float]]:
    params: Dict[str, Dict[str, float]] = {}
    for feature in feature_names:
        if feature in data.columns and pd.api.types.is_numeric_dtype(data[feature]):
            params[feature] = {"min": float(data[feature].min()), "max": float(data[feature].max())}
    return params


def apply_minmax_params(data: pd.DataFrame, params: Mapping[str, Mapping[str, float]]) -> pd.DataFrame:
    frame = data.copy()
    for feature, bounds in params.items():
        if feature not in frame.columns:
            continue
        span = bounds["max"] - bounds["min"]
        if span != 0:
            frame[feature] = (frame[feature].astype(float) - bounds["min"]) / span
        else:
            frame[feature] = 0.0
    return frame


def denormalize_predictions(predictions: np.ndarray, feature_name: str, params: Mapping[str, Mapping[str, float]]) -> np.ndarray:
    bounds = params.get(feature_name)
    if bounds is None:
        return predictions
    return predictions * (bounds["max"] - bounds["min"]) + bounds["min"]


def _predict(model: Any, frame: pd.DataFrame, output_type: str) -> np.ndarray:
    predictions = np.asarray(model.predict(frame), dtype=float)
    if output_type == "prob":
        predictions = np.clip(predictions, 0.0, 1.0)
    return predictions


def run_workflow_single(control: ControlConfig) -> Dict[str, Any]:
    """Run every configured stage once over ``control.data.train``/``test``.

    The caller's control is not modified; stage inputs are bound on a copy.
    """

    if control.data.train is None or control.data.test is None:
        raise PreconditionError("Training and test data are missing; split the data before execution.")

    registry = current_registry()
    control = control.model_copy(deep=True)
    vars_ = control.data.vars
    target = vars_.target_var
    results: Dict[str, Any] = {}

    train_data = control.data.train
    if control.preprocessing:
        control.params.preprocessing.data = train_data
        output_preprocessing = registry[control.preprocessing](control)
        train_data = output_preprocessing["preprocessed_data"]
        results["output_preprocessing"] = output_preprocessing

    norm_features = [*vars_.feature_vars, *vars_.protected_vars, target]
    norm_params = compute_minmax_params(train_data, norm_features)
    norm_data = control.params.train.norm_data
    if norm_data:
        control.params.train.data = apply_minmax_params(train_data, norm_params)
        testdata = apply_minmax_params(control.data.test, norm_params)
    else:
        control.params.train.data = train_data
        testdata = control.data.test

    driver_train = registry[control.train_model]
    output_train = driver_train(control)
    predictions = _predict(output_train["model"], testdata, control.output_type)
    if norm_data and control.output_type == "response":
        predictions = denormalize_predictions(predictions, target, norm_params)
    output_train["predictions"] = predictions
    results["output_train"] = output_train

    if control.inprocessing:
        output_inprocessing = registry[control.inprocessing](control, driver_train)
        predictions = _predict(output_inprocessing["adjusted_model"], testdata, control.output_type)
        if norm_data and control.output_type == "response":
            predictions = denormalize_predictions(predictions, target, norm_params)
        output_inprocessing["predictions"] = predictions
        results["output_inprocessing"] = output_inprocessing

    binary = [name for name in vars_.protected_vars_binary if name in control.data.test.columns]
    if control.postprocessing:
        post = pd.DataFrame(
            {"predictions": predictions, "actuals": control.data.test[target].to_numpy(dtype=float)},
            index=control.data.test.index,
        )
        control.params.postprocessing.postprocessing_data = pd.concat([post, control.data.test[binary]], axis=1)
        control.params.postprocessing.protected_name = binary
        output_postprocessing = registry[control.postprocessing](control)
        predictions = np.asarray(output_postprocessing["adjusted_predictions"], dtype=float)
        results["output_postprocessing"] = output_postprocessing

    if control.evaluation:
        eval_frame = pd.DataFrame(
            {"predictions": predictions, "actuals": control.data.test[target].to_numpy(dtype=float)},
            index=control.data.test.index,
        )
        control.params.eval.eval_data = pd.concat([eval_frame, control.data.test[binary]], axis=1)
        control.params.eval.protected_name = binary
        results["output_eval"] = {name: registry[name](control) for name in control.evaluation}

    if norm_data:
        results["normalization"] = {
            "params": norm_params,
            "method": "minmax",
            "based_on": "train_data",
            "feature_names": norm_features,
        }
    return results


def engine_workflow_single(control: ControlConfig) -> Dict[str, Any]:
    return run_workflow_single(control)


def wrapper_workflow_single(control):
    return engine_workflow_single(control)


def default_params_workflow_single() -> Dict[str, Any]:
    return {}


__all__ = [
    "apply_minmax_params",
    "compute_minmax_params",
    "denormalize_predictions",
    "run_workflow_single",
]
