"""Convergence checks over a running history of scalar metric observations.

Every strategy compares a statistic over the trailing ``window`` observations
with the same statistic over the full history and reports the result as a
:class:`StabilityResult`. Cohen's d instead compares the window with everything
that precedes it. All strategies need at least ``window + 1`` observations.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from ..core.exceptions import PreconditionError

EPSILON = 1e-8
MAD_SCALE = 1.4826

Statistic = Callable[[np.ndarray], float]


@dataclass(frozen=True)
class StabilityResult:
    is_stable: bool
    stability_value: float
    threshold_value: float
    strategy_name: str

    def __getitem__(self, key: str) -> object:
        return getattr(self, key)

    def __contains__(self, key: object) -> bool:
        return key in self.__dataclass_fields__

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _sd(values: np.ndarray) -> float:
    if values.size < 2:
        return 0.0
    # shifted by the first value so a constant history gives exactly 0
    return float(np.std(values - values[0], ddof=1))


def _mean(values: np.ndarray) -> float:
    shift = values[0]
    return float(shift + np.mean(values - shift))


def _mad(values: np.ndarray) -> float:
    median = np.median(values)
    return float(MAD_SCALE * np.median(np.abs(values - median)))


def _cv(values: np.ndarray) -> float:
    mean = _mean(values)
    if mean == 0:
        mean = EPSILON
    return _sd(values) / mean


def _check_inputs(values: Sequence[float], threshold: float, window: int) -> np.ndarray:
    if window < 1:
        raise PreconditionError(f"window must be >= 1, got {window}", metadata={"window": window})
    array = np.asarray(values, dtype=float)
    if array.ndim != 1:
        raise PreconditionError("values must be a one-dimensional sequence")
    if array.size < window + 1:
        raise PreconditionError(
            f"Stability check needs at least window + 1 = {window + 1} values, got {array.size}",
            metadata={"window": window, "n_values": int(array.size)},
        )
    if threshold is None or not math.isfinite(float(threshold)):
        raise PreconditionError(f"threshold must be a finite number, got {threshold!r}")
    return array


def _compare(
    values: Sequence[float],
    threshold: float,
    window: int,
    statistic: Statistic,
    relative: bool,
    strategy_name: str,
) -> StabilityResult:
    array = _check_inputs(values, threshold, window)
    global_value = float(statistic(array))
    window_value = float(statistic(array[-window:]))
    difference = abs(window_value - global_value)
    if relative:
        base = EPSILON if global_value == 0 else abs(global_value)
        difference = difference / base
    return StabilityResult(
        is_stable=bool(difference < threshold),
        stability_value=difference,
        threshold_value=float(threshold),
        strategy_name=strategy_name,
    )


def _require_fn(fn: Optional[Statistic], strategy_name: str) -> Statistic:
    if fn is None or not callable(fn):
        raise PreconditionError(
            f"Strategy '{strategy_name}' requires a callable aggregation function",
            metadata={"strategy": strategy_name},
        )
    return fn


def check_stability_custom_relative(values, threshold, window, fn=None) -> StabilityResult:
    statistic = _require_fn(fn, "custom_relative")
    return _compare(values, threshold, window, statistic, True, "custom_relative")


def check_stability_custom_absolute(values, threshold, window, fn=None) -> StabilityResult:
    statistic = _require_fn(fn, "custom_absolute")
    return _compare(values, threshold, window, statistic, False, "custom_absolute")


def check_stability_mean_relative(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _mean, True, "mean_relative")


def check_stability_mean_absolute(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _mean, False, "mean_absolute")


def check_stability_sd_relative(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _sd, True, "sd_relative")


def check_stability_sd_absolute(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _sd, False, "sd_absolute")


def check_stability_mad_relative(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _mad, True, "mad_relative")


def check_stability_mad_absolute(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _mad, False, "mad_absolute")


def check_stability_cv_relative(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _cv, True, "cv_relative")


def check_stability_cv_absolute(values, threshold, window, fn=None) -> StabilityResult:
    return _compare(values, threshold, window, _cv, False, "cv_absolute")


def check_stability_cohen_absolute(values, threshold, window, fn=None) -> StabilityResult:
    """Cohen's d between the trailing window and the observations before it."""

    array = _check_inputs(values, threshold, window)
    recent = array[-window:]
    rest = array[:-window]
    if rest.size < 2:
        return StabilityResult(
            is_stable=False,
            stability_value=math.inf,
            threshold_value=float(threshold),
            strategy_name="cohen_absolute",
        )
    pooled_sd = math.sqrt((_sd(recent) ** 2 + _sd(rest) ** 2) / 2.0)
    if pooled_sd == 0:
        pooled_sd = EPSILON
    d = abs(_mean(recent) - _mean(rest)) / pooled_sd
    return StabilityResult(
        is_stable=bool(d < threshold),
        stability_value=float(d),
        threshold_value=float(threshold),
        strategy_name="cohen_absolute",
    )


STABILITY_STRATEGIES: Dict[str, Callable[..., StabilityResult]] = {
    "custom_relative": check_stability_custom_relative,
    "custom_absolute": check_stability_custom_absolute,
    "mean_relative": check_stability_mean_relative,
    "mean_absolute": check_stability_mean_absolute,
    "sd_relative": check_stability_sd_relative,
    "sd_absolute": check_stability_sd_absolute,
    "mad_relative": check_stability_mad_relative,
    "mad_absolute": check_stability_mad_absolute,
    "cv_relative": check_stability_cv_relative,
    "cv_absolute": check_stability_cv_absolute,
    "cohen_absolute": check_stability_cohen_absolute,
}

REQUIRED_FIELDS = ("is_stable", "stability_value", "threshold_value", "strategy_name")


def get_stability_strategy(name: str) -> Callable[..., StabilityResult]:
    try:
        return STABILITY_STRATEGIES[name]
    except KeyError:
        raise PreconditionError(
            f"Unknown stability strategy '{name}'",
            metadata={"strategy": name, "available": sorted(STABILITY_STRATEGIES)},
        ) from None


__all__ = [
    "EPSILON",
    "REQUIRED_FIELDS",
    "STABILITY_STRATEGIES",
    "StabilityResult",
    "get_stability_strategy",
    *[f"check_stability_{name}" for name in STABILITY_STRATEGIES],
]
