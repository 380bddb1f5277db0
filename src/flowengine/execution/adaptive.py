"""Adaptive execution strategies.

Output stability keeps drawing fresh single splits, each with its own seed,
until a metric history passes a stability check or ``max_splits`` is reached.
Input search walks one scalar parameter in fixed steps over the first split
while the monitored metric keeps improving.
"""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..config.loader import merge_with_defaults
from ..core.exceptions import PreconditionError
from ..core.logging import get_logger
from ..engines.outputs import initialize_output_execution, initialize_output_split
from ..engines.registry import current_registry
from .batch import run_batch
from .sequential import run_split
from .stability import REQUIRED_FIELDS, StabilityResult, get_stability_strategy

LOGGER = get_logger(__name__)

_OUTPUT_DEFAULTS: Dict[str, Any] = {
    "metric_name": "mse",
    "metric_source": "eval_mse",
    "stability_strategy": "cohen_absolute",
    "threshold": 0.2,
    "window": 3,
    "min_splits": 5,
    "max_splits": 50,
    "custom_stability_function": None,
}


def require_single_split(control, split_output: Mapping[str, Any]) -> None:
    n_splits = len(split_output["splits"])
    if n_splits != 1:
        raise PreconditionError(
            f"Adaptive execution requires a splitter that returns exactly one split. "
            f"Got {n_splits} from '{control.split_method}'.",
            metadata={"n_splits": n_splits, "split_method": control.split_method},
        )


def _validate_output_params(params: Mapping[str, Any], *, batch: bool) -> Callable[..., StabilityResult]:
    strategy = get_stability_strategy(str(params["stability_strategy"]))
    threshold = params["threshold"]
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not math.isfinite(threshold):
        raise PreconditionError(f"threshold must be a finite number, got {threshold!r}")
    window = int(params["window"])
    min_splits = int(params["min_splits"])
    max_splits = int(params["max_splits"])
    if window < 1:
        raise PreconditionError(f"window must be >= 1, got {window}")
    if min_splits < window + 1:
        raise PreconditionError(
            f"min_splits must be >= window + 1 = {window + 1}, got {min_splits}",
            metadata={"min_splits": min_splits, "window": window},
        )
    if max_splits < min_splits:
        raise PreconditionError(
            f"max_splits must be >= min_splits, got {max_splits} < {min_splits}",
            metadata={"min_splits": min_splits, "max_splits": max_splits},
        )
    if str(params["stability_strategy"]).startswith("custom_") and not callable(params.get("custom_stability_function")):
        raise PreconditionError(
            f"Strategy '{params['stability_strategy']}' requires a callable custom_stability_function"
        )
    if batch and int(params["n_splits_per_iteration"]) < 1:
        raise PreconditionError("n_splits_per_iteration must be >= 1")
    return strategy


def extract_metric(result: Mapping[str, Any], metric_source: str, metric_name: str) -> float:
    try:
        value = result["output_eval"][metric_source]["metrics"][metric_name]
    except (KeyError, TypeError):
        raise PreconditionError(
            f"Workflow result has no metric '{metric_name}' from '{metric_source}'",
            metadata={"metric_source": metric_source, "metric_name": metric_name},
        ) from None
    return float(value)


def draw_split(control, seed: int) -> Dict[str, Any]:
    """Run the configured splitter with ``seed`` and return its first split."""

    split_control = control.model_copy(deep=True)
    split_control.params.split.seed = int(seed)
    split_result = current_registry()[control.split_method](split_control)
    return next(iter(split_result["splits"].values()))


class _StabilityTracker:
    """Metric history plus the stop decision shared by the output-stability loops."""

    def __init__(self, params: Mapping[str, Any], strategy: Callable[..., StabilityResult]) -> None:
        self.params = params
        self.strategy = strategy
        self.values: List[float] = []
        self.last: Optional[StabilityResult] = None

    @property
    def remaining(self) -> int:
        return int(self.params["max_splits"]) - len(self.values)

    def observe(self, result: Mapping[str, Any]) -> None:
        self.values.append(extract_metric(result, self.params["metric_source"], self.params["metric_name"]))

    def should_stop(self) -> bool:
        if len(self.values) < int(self.params["min_splits"]):
            return False
        outcome = self.strategy(
            self.values,
            self.params["threshold"],
            int(self.params["window"]),
            fn=self.params.get("custom_stability_function"),
        )
        if not all(name in outcome for name in REQUIRED_FIELDS):
            raise PreconditionError(
                "Invalid output from stability function",
                metadata={"required": list(REQUIRED_FIELDS)},
            )
        self.last = outcome
        if outcome["is_stable"]:
            LOGGER.info(
                "[adaptive] stability reached (%s): %.4f < %.4f after %d splits",
                outcome["strategy_name"],
                outcome["stability_value"],
                outcome["threshold_value"],
                len(self.values),
                extra={"extra_context": {"event": "adaptive_stable", "n_splits": len(self.values)}},
            )
            return True
        if self.remaining <= 0:
            LOGGER.warning(
                "[adaptive] maximum number of splits (%d) reached without stability",
                self.params["max_splits"],
                extra={"extra_context": {"event": "adaptive_max_splits_reached", "n_splits": len(self.values)}},
            )
            return True
        return False

    def specific_output(self, control, used_splits, used_seeds) -> Dict[str, Any]:
        return {
            "metric_name": self.params["metric_name"],
            "metric_source": self.params["metric_source"],
            "values": list(self.values),
            "split_output": initialize_output_split(
                split_type=control.split_method,
                splits=used_splits,
                seed=used_seeds,
                params=control.params.split.params,
            ),
            "used_seeds": used_seeds,
            "stability": self.last.to_dict() if self.last is not None else None,
        }


def engine_execution_adaptive_output_sequential(control, params: Mapping[str, Any]):
    strategy = _validate_output_params(params, batch=False)
    tracker = _StabilityTracker(params, strategy)
    workflow_results: Dict[str, Any] = {}
    used_splits: Dict[str, Any] = {}
    used_seeds: Dict[str, int] = {}

    i = 1
    while True:
        seed = int(params["seed_base"]) + i
        split_key = f"split{i}"
        split = draw_split(control, seed)
        LOGGER.debug("[adaptive] running %s with seed %d", split_key, seed)
        result = run_split(control, split)
        workflow_results[split_key] = result
        used_splits[split_key] = split
        used_seeds[split_key] = seed
        tracker.observe(result)
        if tracker.should_stop():
            break
        i += 1
    return workflow_results, tracker.specific_output(control, used_splits, used_seeds)


def wrapper_execution_adaptive_output_sequential(control, split_output):
    require_single_split(control, split_output)
    params = merge_with_defaults(control.params.execution.params, default_params_execution_adaptive_output_sequential())
    LOGGER.info("[adaptive] starting sequential output-stability execution (%s)", params["stability_strategy"])
    workflow_results, specific_output = engine_execution_adaptive_output_sequential(control, params)

    return initialize_output_execution(
        execution_type="adaptive_output_sequential",
        workflow_results=workflow_results,
        params=params,
        continue_workflow=True,
        specific_output=specific_output,
    )


def default_params_execution_adaptive_output_sequential() -> Dict[str, Any]:
    return {**_OUTPUT_DEFAULTS, "seed_base": 1000}


def run_adaptive_batches(control, params: Mapping[str, Any], backend: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Draw ``n_splits_per_iteration`` splits per round and run each round as one batch."""

    strategy = _validate_output_params(params, batch=True)
    tracker = _StabilityTracker(params, strategy)
    per_iteration = int(params["n_splits_per_iteration"])
    registry_root = Path(params.get("registry_folder") or f"adaptive_registry/seed_{params['seed']}").expanduser()
    workflow_results: Dict[str, Any] = {}
    used_splits: Dict[str, Any] = {}
    used_seeds: Dict[str, int] = {}

    i = 1
    while True:
        batch_size = min(per_iteration, tracker.remaining)
        first_seed = int(params["seed_base"]) + (i - 1) * per_iteration + 1
        batch_splits: Dict[str, Any] = {}
        for offset in range(batch_size):
            split_key = f"split{len(tracker.values) + offset + 1}"
            seed = first_seed + offset
            batch_splits[split_key] = draw_split(control, seed)
            used_seeds[split_key] = seed

        batch_params = {**params, "seed": int(params["seed"]) + i}
        batch_results, _ = run_batch(
            control,
            batch_splits,
            backend=backend,
            params=batch_params,
            registry_dir=registry_root / f"iter_{i}",
        )
        for split_key, result in batch_results.items():
            workflow_results[split_key] = result
            used_splits[split_key] = batch_splits[split_key]
            tracker.observe(result)

        LOGGER.debug("[adaptive] iteration %d finished with %d observation(s)", i, len(tracker.values))
        if tracker.should_stop():
            break
        i += 1
    return workflow_results, tracker.specific_output(control, used_splits, used_seeds)


def _batch_defaults(**extra: Any) -> Dict[str, Any]:
    defaults: Dict[str, Any] = {
        **_OUTPUT_DEFAULTS,
        "seed_base": 2000,
        "n_splits_per_iteration": 3,
        "registry_folder": None,
        "seed": 123,
        "required_packages": [],
        "resources": {"ncpus": 1, "memory": 2048, "walltime": 3600},
    }
    defaults.update(extra)
    return defaults


def engine_execution_adaptive_output_batch_multicore(control, params: Mapping[str, Any]):
    return run_adaptive_batches(control, params, "multicore")


def wrapper_execution_adaptive_output_batch_multicore(control, split_output):
    require_single_split(control, split_output)
    params = merge_with_defaults(
        control.params.execution.params, default_params_execution_adaptive_output_batch_multicore()
    )
    LOGGER.info("[adaptive] starting multicore output-stability execution (%s)", params["stability_strategy"])
    workflow_results, specific_output = engine_execution_adaptive_output_batch_multicore(control, params)

    return initialize_output_execution(
        execution_type="adaptive_output_batch_multicore",
        workflow_results=workflow_results,
        params=params,
        continue_workflow=True,
        specific_output=specific_output,
    )


def default_params_execution_adaptive_output_batch_multicore() -> Dict[str, Any]:
    return _batch_defaults(resources={"ncpus": os.cpu_count() or 1, "memory": 2048, "walltime": 3600})


def engine_execution_adaptive_output_batch_slurm(control, params: Mapping[str, Any]):
    return run_adaptive_batches(control, params, "slurm")


def wrapper_execution_adaptive_output_batch_slurm(control, split_output):
    require_single_split(control, split_output)
    params = merge_with_defaults(control.params.execution.params, default_params_execution_adaptive_output_batch_slurm())
    LOGGER.info("[adaptive] starting slurm output-stability execution (%s)", params["stability_strategy"])
    workflow_results, specific_output = engine_execution_adaptive_output_batch_slurm(control, params)

    return initialize_output_execution(
        execution_type="adaptive_output_batch_slurm",
        workflow_results=workflow_results,
        params=params,
        continue_workflow=True,
        specific_output=specific_output,
    )


def default_params_execution_adaptive_output_batch_slurm() -> Dict[str, Any]:
    return _batch_defaults(job_name="flowengine-adaptive", python="python3", poll_interval=10.0, poll_timeout=None)


def assign_path(target: Any, path: str, value: Any) -> None:
    """Set ``value`` at dotted ``path`` below ``target``, through attributes or mapping keys."""

    parts = path.split(".")
    node = target
    for part in parts[:-1]:
        if isinstance(node, Mapping):
            if part not in node:
                node[part] = {}
            node = node[part]
        elif hasattr(node, part):
            node = getattr(node, part)
        else:
            raise PreconditionError(f"Cannot resolve '{part}' in parameter path '{path}'", metadata={"path": path})
    leaf = parts[-1]
    if isinstance(node, dict):
        node[leaf] = value
    elif hasattr(node, leaf) or getattr(node, "model_config", {}).get("extra") == "allow":
        setattr(node, leaf, value)
    else:
        raise PreconditionError(f"Cannot assign '{leaf}' in parameter path '{path}'", metadata={"path": path})


def engine_execution_adaptive_input_scalar_sequential(control, split: Mapping[str, Any], params: Mapping[str, Any]):
    direction = params["direction"]
    if direction not in {"minimize", "maximize"}:
        raise PreconditionError(f"direction must be 'minimize' or 'maximize', got {direction!r}")
    max_iterations = int(params["max_iterations"])
    if max_iterations < 1:
        raise PreconditionError("max_iterations must be >= 1")

    workflow_results: Dict[str, Any] = {}
    values: List[float] = []
    param_values: List[float] = []
    best_metric = math.inf if direction == "minimize" else -math.inf
    best_param = None
    best_result = None
    current = params["param_start"]

    for i in range(1, max_iterations + 1):
        candidate = control.model_copy(deep=True)
        assign_path(candidate, params["param_path"], current)
        result = run_split(candidate, split)
        metric = extract_metric(result, params["metric_source"], params["metric_name"])
        workflow_results[f"param{i}"] = result
        values.append(metric)
        param_values.append(current)

        improvement = best_metric - metric if direction == "minimize" else metric - best_metric
        if improvement <= params["min_improvement"]:
            LOGGER.info("[adaptive] no further improvement after %d iteration(s) (best = %.4f)", i, best_metric)
            break
        best_metric, best_param, best_result = metric, current, result
        current = current + params["param_step"]

    specific_output = {
        "metric_name": params["metric_name"],
        "metric_source": params["metric_source"],
        "values": values,
        "param_values": param_values,
        "best_metric": best_metric,
        "best_param": best_param,
        "best_result": best_result,
    }
    return workflow_results, specific_output


def wrapper_execution_adaptive_input_scalar_sequential(control, split_output):
    params = merge_with_defaults(
        control.params.execution.params, default_params_execution_adaptive_input_scalar_sequential()
    )
    split = next(iter(split_output["splits"].values()))
    LOGGER.info("[adaptive] searching '%s' from %s in steps of %s", params["param_path"], params["param_start"], params["param_step"])
    workflow_results, specific_output = engine_execution_adaptive_input_scalar_sequential(control, split, params)

    return initialize_output_execution(
        execution_type="adaptive_input_scalar_sequential",
        workflow_results=workflow_results,
        params=params,
        continue_workflow=True,
        specific_output=specific_output,
    )


def default_params_execution_adaptive_input_scalar_sequential() -> Dict[str, Any]:
    return {
        "param_path": "params.train.params.alpha",
        "param_start": 10,
        "param_step": 10,
        "direction": "minimize",
        "metric_name": "mse",
        "metric_source": "eval_mse",
        "min_improvement": 0.001,
        "max_iterations": 10,
    }


__all__ = [
    "assign_path",
    "draw_split",
    "extract_metric",
    "require_single_split",
    "run_adaptive_batches",
]
