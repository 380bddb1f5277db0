"""Helpers for reading, completing and writing control configurations."""

from __future__ import annotations

import datetime as dt
import json
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

import pandas as pd
import yaml

from ..core.exceptions import ConfigError
from ..utils.datasets import make_credit_dataset
from .schema import ControlConfig, VarsConfig


def _merge_dict(base: MutableMapping[str, Any], updates: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), Mapping):
            base[key] = _merge_dict(deepcopy(dict(base[key])), value)
        else:
            base[key] = deepcopy(value)
    return base


def _parse_override(override: str) -> Dict[str, Any]:
    if "=" not in override:
        raise ValueError(f"Override '{override}' must be in key=value format")
    key, raw_value = override.split("=", 1)
    # Try to interpret JSON so we can support numbers, lists, bools
    try:
        value = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value
    nested_keys = key.split(".")
    current: Dict[str, Any] = {}
    cursor = current
    for nested_key in nested_keys[:-1]:
        cursor[nested_key] = {}
        cursor = cursor[nested_key]
    cursor[nested_keys[-1]] = value
    return current


def merge_with_defaults(user: Optional[Mapping[str, Any]], defaults: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``defaults`` overridden by ``user``; nested mappings are merged key by key."""

    merged = deepcopy(dict(defaults))
    if not user:
        return merged
    return dict(_merge_dict(merged, user))


def complete_control_with_defaults(control: ControlConfig | Mapping[str, Any] | None) -> ControlConfig:
    """Validate ``control`` and fill every slot a workflow run relies on.

    Without any data a synthetic credit dataset is bound, so a bare control is
    runnable. Custom data must come with ``data.vars.target_var``.
    """

    if control is None:
        control = ControlConfig()
    elif isinstance(control, ControlConfig):
        control = control.model_copy(deep=True)
    else:
        control = ControlConfig.model_validate(dict(control))

    data = control.data
    if data.full is None and data.source:
        source = Path(data.source)
        if not source.exists():
            raise ConfigError(f"Data source not found: {source}", metadata={"source": str(source)})
        data.full = pd.read_csv(source)

    has_vars = data.vars.target_var is not None
    if data.full is not None and not has_vars:
        raise ConfigError("Custom data via data.full requires data.vars with a target_var.")
    if has_vars and data.full is None and data.train is None:
        raise ConfigError("data.vars was given without data.full; provide the dataset as well.")
    if data.full is None and not has_vars:
        frame, vars_payload = make_credit_dataset(seed=control.global_seed)
        data.full = frame
        data.vars = VarsConfig.model_validate(vars_payload)

    target = data.vars.target_var
    if control.params.split.target_var is None:
        control.params.split.target_var = target
    if control.params.train.formula is None:
        frame = data.full if data.full is not None else data.train
        predictors = data.vars.model_vars or [c for c in frame.columns if c != target]
        control.params.train.formula = f"{target} ~ {' + '.join(predictors)}"
    return control


def load_control(path: str | Path, overrides: Optional[Iterable[str]] = None) -> ControlConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    payload = deepcopy(payload)

    if overrides:
        for override in overrides:
            payload = _merge_dict(payload, _parse_override(override))

    return ControlConfig.model_validate(payload)


def _describe_frame(value: Any) -> Any:
    if isinstance(value, pd.DataFrame):
        return {"rows": int(value.shape[0]), "columns": list(map(str, value.columns))}
    return value


def save_control(control: ControlConfig, output_dir: str | Path, *, filename: str = "control_resolved.yaml") -> Path:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    serializable = control.model_dump(exclude={"data": {"full", "train", "test"}})
    serializable["data"]["full"] = _describe_frame(control.data.full)
    serializable = json.loads(json.dumps(serializable, default=str))
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(serializable, handle, sort_keys=False)
    # Persist metadata snapshot
    metadata = {
        "saved_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        "output_dir": str(output_dir),
    }
    with (output_dir / "run_metadata.json").open("w", encoding="utf-8") as handle:
        json.dump(metadata, handle, indent=2)
    return path


__all__ = [
    "complete_control_with_defaults",
    "load_control",
    "merge_with_defaults",
    "save_control",
]
