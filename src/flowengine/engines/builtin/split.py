"""Built-in split engines."""

from __future__ import annotations

from typing import Any, Dict

import numpy as np
import pandas as pd

from ...config.loader import merge_with_defaults
from ...core.logging import get_logger
from ..outputs import initialize_output_split

LOGGER = get_logger(__name__)


def _require_full(control, engine: str) -> pd.DataFrame:
    if control.data.full is None:
        raise ValueError(f"{engine}: missing required input: full dataset")
    return control.data.full


def engine_split_random(data: pd.DataFrame, split_ratio: float, seed: int) -> Dict[str, pd.DataFrame]:
    rng = np.random.default_rng(seed)
    n_train = int(split_ratio * len(data))
    order = rng.permutation(len(data))
    return {
        "train": data.iloc[np.sort(order[:n_train])],
        "test": data.iloc[np.sort(order[n_train:])],
    }


def wrapper_split_random(control):
    data = _require_full(control, "split_random")
    split_params = control.params.split
    params = merge_with_defaults(split_params.params, default_params_split_random())

    LOGGER.info("[split] random split with ratio %.2f and seed %d", params["split_ratio"], split_params.seed)
    split = engine_split_random(data, params["split_ratio"], split_params.seed)

    return initialize_output_split(
        split_type="random",
        splits={"random": split},
        seed=split_params.seed,
        params=params,
    )


def default_params_split_random() -> Dict[str, Any]:
    return {"split_ratio": 0.7}


def engine_split_random_stratified(
    data: pd.DataFrame, target_var: str, split_ratio: float, seed: int
) -> Dict[str, pd.DataFrame]:
    rng = np.random.default_rng(seed)
    train_index = []
    for _, group in data.groupby(target_var, sort=True):
        positions = rng.permutation(group.index.to_numpy())
        train_index.extend(positions[: int(round(split_ratio * len(group)))])
    train_mask = data.index.isin(train_index)
    return {"train": data[train_mask], "test": data[~train_mask]}


def wrapper_split_random_stratified(control):
    data = _require_full(control, "split_random_stratified")
    split_params = control.params.split
    target_var = split_params.target_var or control.data.vars.target_var
    if target_var is None:
        raise ValueError("split_random_stratified: missing required input: target_var")
    params = merge_with_defaults(split_params.params, default_params_split_random_stratified())

    LOGGER.info(
        "[split] stratified split on '%s' with ratio %.2f and seed %d",
        target_var,
        params["split_ratio"],
        split_params.seed,
    )
    split = engine_split_random_stratified(data, target_var, params["split_ratio"], split_params.seed)

    return initialize_output_split(
        split_type="random_stratified",
        splits={"random_stratified": split},
        seed=split_params.seed,
        params=params,
    )


def default_params_split_random_stratified() -> Dict[str, Any]:
    return {"split_ratio": 0.7}


def engine_split_cv(data: pd.DataFrame, cv_folds: int, seed: int) -> Dict[str, Dict[str, pd.DataFrame]]:
    if cv_folds < 2:
        raise ValueError(f"cv_folds must be at least 2, got {cv_folds}")
    rng = np.random.default_rng(seed)
    folds = np.array_split(rng.permutation(len(data)), cv_folds)
    splits: Dict[str, Dict[str, pd.DataFrame]] = {}
    for index, test_positions in enumerate(folds, start=1):
        test_mask = np.zeros(len(data), dtype=bool)
        test_mask[test_positions] = True
        splits[f"fold{index}"] = {"train": data[~test_mask], "test": data[test_mask]}
    return splits


def wrapper_split_cv(control):
    data = _require_full(control, "split_cv")
    split_params = control.params.split
    params = merge_with_defaults(split_params.params, default_params_split_cv())

    LOGGER.info("[split] %d-fold cross validation with seed %d", params["cv_folds"], split_params.seed)
    splits = engine_split_cv(data, int(params["cv_folds"]), split_params.seed)

    return initialize_output_split(
        split_type="cv",
        splits=splits,
        seed=split_params.seed,
        params=params,
        specific_output={"n_folds": len(splits)},
    )


def default_params_split_cv() -> Dict[str, Any]:
    return {"cv_folds": 5}
