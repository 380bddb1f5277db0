"""Built-in train engines: ordinary/ridge least squares and logistic regression."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd

from ...config.loader import merge_with_defaults
from ...core.logging import get_logger
from ..outputs import initialize_output_train

LOGGER = get_logger(__name__)


def parse_formula(formula: str) -> Tuple[str, List[str]]:
    """Split ``"y ~ a + b"`` into ``("y", ["a", "b"])``."""

    if "~" not in formula:
        raise ValueError(f"Formula '{formula}' must contain '~'")
    target, rhs = formula.split("~", 1)
    predictors = [term.strip() for term in rhs.split("+") if term.strip()]
    if not target.strip() or not predictors:
        raise ValueError(f"Formula '{formula}' needs a target and at least one predictor")
    return target.strip(), predictors


def _design(frame: pd.DataFrame, predictors: List[str]) -> np.ndarray:
    missing = [name for name in predictors if name not in frame.columns]
    if missing:
        raise KeyError(f"columns missing from data: {', '.join(missing)}")
    features = frame[predictors].to_numpy(dtype=float)
    return np.column_stack([np.ones(len(frame)), features])


@dataclass
class LinearModel:
    predictors: List[str]
    coefficients: np.ndarray

    def predict(self, frame: pd.DataFrame) -> np.ndarray:
        return _design(frame, self.predictors) @ self.coefficients


@dataclass
class LogisticModel:
    predictors: List[str]
    coefficients: np.ndarray

    def predict(self, frame: pd.DataFrame) -> np.ndarray:
        logits = _design(frame, self.predictors) @ self.coefficients
        return 1.0 / (1.0 + np.exp(-logits))


def _training_data(control) -> pd.DataFrame:
    train_params = control.params.train
    if train_params.formula is None:
        raise ValueError("missing required input: formula")
    if train_params.data is None:
        raise ValueError("missing required input: data")
    return train_params.data


def engine_train_lm(formula: str, data: pd.DataFrame, alpha: float = 0.0) -> LinearModel:
    target, predictors = parse_formula(formula)
    x = _design(data, predictors)
    y = data[target].to_numpy(dtype=float)
    penalty = alpha * np.eye(x.shape[1])
    penalty[0, 0] = 0.0
    coefficients = np.linalg.lstsq(x.T @ x + penalty, x.T @ y, rcond=None)[0]
    return LinearModel(predictors=predictors, coefficients=coefficients)


def wrapper_train_lm(control):
    train_params = control.params.train
    data = _training_data(control)
    hyperparameters = merge_with_defaults(train_params.params, default_params_train_lm())

    start = time.perf_counter()
    model = engine_train_lm(train_params.formula, data, alpha=float(hyperparameters["alpha"]))
    training_time = time.perf_counter() - start
    LOGGER.debug("[train] lm fitted in %.3fs", training_time)

    return initialize_output_train(
        model=model,
        model_type="lm",
        formula=train_params.formula,
        training_time=training_time,
        hyperparameters=hyperparameters,
    )


def default_params_train_lm() -> Dict[str, Any]:
    return {"alpha": 0.0}


def engine_train_glm(
    formula: str, data: pd.DataFrame, alpha: float = 1e-6, max_iter: int = 50, tol: float = 1e-8
) -> LogisticModel:
    """Fit a binomial GLM with logit link by iteratively reweighted least squares."""

    target, predictors = parse_formula(formula)
    x = _design(data, predictors)
    y = data[target].to_numpy(dtype=float)
    penalty = alpha * np.eye(x.shape[1])
    penalty[0, 0] = 0.0
    beta = np.zeros(x.shape[1])
    for _ in range(max_iter):
        mu = 1.0 / (1.0 + np.exp(-(x @ beta)))
        weights = np.clip(mu * (1.0 - mu), 1e-10, None)
        hessian = x.T @ (x * weights[:, None]) + penalty
        gradient = x.T @ (y - mu) - penalty @ beta
        step = np.linalg.lstsq(hessian, gradient, rcond=None)[0]
        beta = beta + step
        if np.max(np.abs(step)) < tol:
            break
    return LogisticModel(predictors=predictors, coefficients=beta)


def wrapper_train_glm(control):
    train_params = control.params.train
    data = _training_data(control)
    hyperparameters = merge_with_defaults(train_params.params, default_params_train_glm())

    start = time.perf_counter()
    model = engine_train_glm(
        train_params.formula,
        data,
        alpha=float(hyperparameters["alpha"]),
        max_iter=int(hyperparameters["max_iter"]),
    )
    training_time = time.perf_counter() - start

    return initialize_output_train(
        model=model,
        model_type="glm",
        formula=train_params.formula,
        training_time=training_time,
        hyperparameters=hyperparameters,
    )


def default_params_train_glm() -> Dict[str, Any]:
    return {"alpha": 1e-6, "max_iter": 50}
