"""Role contracts and registration-time validation of engine bundles.

Validation runs in three layers:

1. the wrapper must accept exactly the argument names of its role;
2. the wrapper source must reference the role's output constructor;
3. for roles where a cheap synthetic call is safe (split, preprocessing,
   train, postprocessing, eval) the wrapper is invoked on a small generated
   dataset and the required output fields are checked.

A wrapper may opt out of layer 3 by returning ``{"skip_validation": True}``
when ``control.internal_skip_validation`` is set.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..config.schema import ControlConfig, VarsConfig
from ..core.exceptions import EngineValidationError
from ..core.logging import get_logger
from ..utils.datasets import make_smoke_dataset, smoke_vars

if TYPE_CHECKING:
    from .registry import EngineBundle

LOGGER = get_logger(__name__)

SmokeTest = Callable[[Callable[..., Any], Callable[[], Mapping[str, Any]], str], None]


@dataclass(frozen=True)
class RoleContract:
    """Call contract for one engine role."""

    role: str
    expected_args: Tuple[str, ...]
    output_initializer: Optional[str]
    smoke_test: Optional[SmokeTest] = None


def role_of(key: str) -> str:
    """Return the role encoded in a registry key (the prefix before the first ``_``)."""

    return key.split("_", 1)[0]


def validate_engine_structure(
    wrapper: Callable[..., Any],
    engine_name: str,
    expected_args: Sequence[str],
    expected_output_initializer: Optional[str],
) -> None:
    try:
        signature = inspect.signature(wrapper)
    except (TypeError, ValueError) as exc:
        raise EngineValidationError(
            f"Cannot inspect wrapper of engine '{engine_name}': {exc}",
            metadata={"engine": engine_name},
        ) from exc

    actual = tuple(signature.parameters)
    expected = tuple(expected_args)
    if actual != expected:
        raise EngineValidationError(
            f"Wrapper of engine '{engine_name}' must accept ({', '.join(expected)}), got ({', '.join(actual)})",
            metadata={"engine": engine_name, "expected_args": list(expected), "actual_args": list(actual)},
        )

    if expected_output_initializer is None:
        return
    try:
        source = inspect.getsource(wrapper)
    except (OSError, TypeError):
        LOGGER.debug("[registry] source of '%s' unavailable; skipping output constructor check", engine_name)
        return
    if expected_output_initializer not in source:
        raise EngineValidationError(
            f"Wrapper of engine '{engine_name}' must build its output with '{expected_output_initializer}'",
            metadata={"engine": engine_name, "initializer": expected_output_initializer},
        )


def _smoke_control(default_params: Callable[[], Mapping[str, Any]], stage: str) -> Tuple[ControlConfig, pd.DataFrame]:
    frame = make_smoke_dataset()
    control = ControlConfig(internal_skip_validation=True)
    control.data.full = frame
    control.data.vars = VarsConfig(**smoke_vars())
    control.params.split.seed = 42
    control.params.split.target_var = "y"
    getattr(control.params, stage).params = dict(default_params())
    return control, frame


def _invoke(wrapper: Callable[..., Any], control: ControlConfig, engine_name: str, role: str) -> Optional[Any]:
    try:
        result = wrapper(control)
    except Exception as exc:
        raise EngineValidationError(
            f"{role.capitalize()} engine '{engine_name}' failed its smoke test: {exc}",
            metadata={"engine": engine_name, "role": role},
        ) from exc
    if isinstance(result, Mapping) and result.get("skip_validation") is True:
        LOGGER.info("[registry] '%s' asked to skip functional validation", engine_name)
        return None
    if not isinstance(result, Mapping):
        raise EngineValidationError(
            f"{role.capitalize()} engine '{engine_name}' must return a mapping, got {type(result).__name__}",
            metadata={"engine": engine_name, "role": role},
        )
    return result


def _require_fields(output: Mapping[str, Any], fields: Sequence[str], engine_name: str, role: str) -> None:
    missing = [name for name in fields if name not in output]
    if missing:
        raise EngineValidationError(
            f"{role.capitalize()} engine '{engine_name}' output is missing required fields: {', '.join(missing)}",
            metadata={"engine": engine_name, "role": role, "missing": missing},
        )


def _is_numeric(values: Any) -> bool:
    try:
        array = np.asarray(values)
    except (TypeError, ValueError):
        return False
    return array.dtype.kind in "biuf"


def _smoke_split(wrapper, default_params, engine_name) -> None:
    control, _ = _smoke_control(default_params, "split")
    output = _invoke(wrapper, control, engine_name, "split")
    if output is None:
        return
    _require_fields(output, ("split_type", "splits", "seed"), engine_name, "split")
    splits = output["splits"]
    if not isinstance(splits, Mapping) or len(splits) < 1:
        raise EngineValidationError(
            f"Split engine '{engine_name}' did not return any splits",
            metadata={"engine": engine_name},
        )
    for split_key, split in splits.items():
        if not isinstance(split, Mapping) or not {"train", "test"} <= set(split):
            raise EngineValidationError(
                f"Split '{split_key}' of engine '{engine_name}' is missing 'train' or 'test'",
                metadata={"engine": engine_name, "split": split_key},
            )
        if not isinstance(split["train"], pd.DataFrame) or not isinstance(split["test"], pd.DataFrame):
            raise EngineValidationError(
                f"Split '{split_key}' of engine '{engine_name}' must hold DataFrames",
                metadata={"engine": engine_name, "split": split_key},
            )


def _smoke_preprocessing(wrapper, default_params, engine_name) -> None:
    control, frame = _smoke_control(default_params, "preprocessing")
    control.params.preprocessing.data = frame
    output = _invoke(wrapper, control, engine_name, "preprocessing")
    if output is None:
        return
    _require_fields(output, ("preprocessed_data", "method", "protected_attributes"), engine_name, "preprocessing")
    if not isinstance(output["preprocessed_data"], pd.DataFrame):
        raise EngineValidationError(
            f"Preprocessing engine '{engine_name}' must return a DataFrame as preprocessed_data",
            metadata={"engine": engine_name},
        )


def _smoke_train(wrapper, default_params, engine_name) -> None:
    control, frame = _smoke_control(default_params, "train")
    control.params.train.formula = "y ~ x1 + x2 + a"
    control.params.train.data = frame
    output = _invoke(wrapper, control, engine_name, "train")
    if output is None:
        return
    _require_fields(output, ("model", "model_type", "formula"), engine_name, "train")
    if not callable(getattr(output["model"], "predict", None)):
        raise EngineValidationError(
            f"Train engine '{engine_name}' must return a model exposing predict()",
            metadata={"engine": engine_name},
        )


def _smoke_postprocessing(wrapper, default_params, engine_name) -> None:
    control, frame = _smoke_control(default_params, "postprocessing")
    rng = np.random.default_rng(42)
    control.params.postprocessing.postprocessing_data = pd.DataFrame(
        {"predictions": rng.uniform(size=len(frame)), "actuals": frame["y"], "a": frame["a"]}
    )
    control.params.postprocessing.protected_name = ["a"]
    output = _invoke(wrapper, control, engine_name, "postprocessing")
    if output is None:
        return
    _require_fields(
        output,
        ("adjusted_predictions", "method", "input_data", "protected_attributes"),
        engine_name,
        "postprocessing",
    )
    if not _is_numeric(output["adjusted_predictions"]):
        raise EngineValidationError(
            f"Postprocessing engine '{engine_name}' must return numeric adjusted_predictions",
            metadata={"engine": engine_name},
        )


def _smoke_eval(wrapper, default_params, engine_name) -> None:
    control, frame = _smoke_control(default_params, "eval")
    rng = np.random.default_rng(42)
    control.params.eval.eval_data = pd.DataFrame(
        {"predictions": rng.uniform(size=len(frame)), "actuals": frame["y"], "a": frame["a"]}
    )
    control.params.eval.protected_name = ["a"]
    output = _invoke(wrapper, control, engine_name, "eval")
    if output is None:
        return
    _require_fields(output, ("metrics", "eval_type", "input_data"), engine_name, "eval")
    if not isinstance(output["metrics"], Mapping) or not output["metrics"]:
        raise EngineValidationError(
            f"Eval engine '{engine_name}' must return a non-empty metrics mapping",
            metadata={"engine": engine_name},
        )
    if not isinstance(output["eval_type"], str):
        raise EngineValidationError(
            f"Eval engine '{engine_name}' must return eval_type as a string",
            metadata={"engine": engine_name},
        )


ROLE_CONTRACTS: Dict[str, RoleContract] = {
    "split": RoleContract("split", ("control",), "initialize_output_split", _smoke_split),
    "execution": RoleContract("execution", ("control", "split_output"), "initialize_output_execution"),
    "workflow": RoleContract("workflow", ("control",), None),
    "preprocessing": RoleContract("preprocessing", ("control",), "initialize_output_preprocessing", _smoke_preprocessing),
    "train": RoleContract("train", ("control",), "initialize_output_train", _smoke_train),
    "inprocessing": RoleContract("inprocessing", ("control", "driver_train"), "initialize_output_inprocessing"),
    "postprocessing": RoleContract(
        "postprocessing", ("control",), "initialize_output_postprocessing", _smoke_postprocessing
    ),
    "eval": RoleContract("eval", ("control",), "initialize_output_eval", _smoke_eval),
    "reportelement": RoleContract(
        "reportelement", ("control", "workflow_results", "split_output", "alias"), "initialize_output_reportelement"
    ),
    "report": RoleContract("report", ("control", "reportelements", "alias_report"), "initialize_output_report"),
    "publish": RoleContract(
        "publish", ("control", "object", "file_path", "alias_publish"), "initialize_output_publish"
    ),
}


def validate_engine(key: str, bundle: "EngineBundle") -> RoleContract:
    """Run every validation layer for ``bundle`` registered under ``key``."""

    missing = [name for name in ("wrapper", "engine", "default_params") if not callable(getattr(bundle, name, None))]
    if missing:
        raise EngineValidationError(
            f"Engine '{key}' is missing callable(s): {', '.join(missing)}",
            metadata={"engine": key, "missing": missing},
        )

    role = role_of(key)
    contract = ROLE_CONTRACTS.get(role)
    if contract is None:
        raise EngineValidationError(
            f"Engine key '{key}' does not start with a known role ({', '.join(sorted(ROLE_CONTRACTS))})",
            metadata={"engine": key, "role": role},
        )

    try:
        defaults = bundle.default_params()
    except Exception as exc:
        raise EngineValidationError(
            f"default_params of engine '{key}' raised: {exc}",
            metadata={"engine": key},
        ) from exc
    if not isinstance(defaults, Mapping):
        raise EngineValidationError(
            f"default_params of engine '{key}' must return a mapping, got {type(defaults).__name__}",
            metadata={"engine": key},
        )

    validate_engine_structure(bundle.wrapper, key, contract.expected_args, contract.output_initializer)
    if contract.smoke_test is not None:
        contract.smoke_test(bundle.wrapper, bundle.default_params, key)
    return contract


__all__ = ["ROLE_CONTRACTS", "RoleContract", "role_of", "validate_engine", "validate_engine_structure"]
