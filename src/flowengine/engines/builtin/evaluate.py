"""Built-in eval engines."""

from __future__ import annotations

from typing import Any, Dict

import numpy as np
import pandas as pd

from ...config.loader import merge_with_defaults
from ...core.logging import get_logger
from ..outputs import initialize_output_eval

LOGGER = get_logger(__name__)


def _eval_frame(control, engine: str) -> pd.DataFrame:
    eval_data = control.params.eval.eval_data
    if eval_data is None or "predictions" not in eval_data:
        raise ValueError(f"{engine}: missing required input: predictions")
    if "actuals" not in eval_data:
        raise ValueError(f"{engine}: missing required input: actuals")
    return eval_data


def engine_eval_mse(predictions: np.ndarray, actuals: np.ndarray) -> float:
    return float(np.mean((predictions - actuals) ** 2))


def wrapper_eval_mse(control):
    eval_params = control.params.eval
    eval_data = _eval_frame(control, "eval_mse")
    params = merge_with_defaults(eval_params.params.get("eval_mse"), default_params_eval_mse())

    mse = engine_eval_mse(
        eval_data["predictions"].to_numpy(dtype=float),
        eval_data["actuals"].to_numpy(dtype=float),
    )
    LOGGER.debug("[eval] mse = %.6f", mse)

    return initialize_output_eval(
        metrics={"mse": mse},
        eval_type="mse_eval",
        input_data=eval_data,
        protected_attributes=eval_params.protected_name,
        params=params,
    )


def default_params_eval_mse() -> Dict[str, Any]:
    return {}


def engine_eval_summarystats(predictions: np.ndarray) -> Dict[str, float]:
    return {
        "mean": float(np.mean(predictions)),
        "median": float(np.median(predictions)),
        "sd": float(np.std(predictions, ddof=1)) if len(predictions) > 1 else 0.0,
        "min": float(np.min(predictions)),
        "max": float(np.max(predictions)),
    }


def wrapper_eval_summarystats(control):
    eval_params = control.params.eval
    eval_data = _eval_frame(control, "eval_summarystats")
    params = merge_with_defaults(eval_params.params.get("eval_summarystats"), default_params_eval_summarystats())

    stats = engine_eval_summarystats(eval_data["predictions"].to_numpy(dtype=float))

    return initialize_output_eval(
        metrics={"summary_stats": stats},
        eval_type="summary_statistics",
        input_data=eval_data,
        protected_attributes=eval_params.protected_name,
        params=params,
    )


def default_params_eval_summarystats() -> Dict[str, Any]:
    return {}
