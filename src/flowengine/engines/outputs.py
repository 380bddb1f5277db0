"""Standardised output constructors, one per engine role.

Wrappers must build their return value through the constructor of their role;
registration checks that the wrapper source references it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np


@dataclass
class ExecutionResult:
    """Result of one execution-engine call.

    ``continue_workflow`` is ``False`` only when execution was handed off to an
    external scheduler; such a result is *deferred* and carries no workflow
    results until it is resumed.
    """

    execution_type: str
    workflow_results: Dict[str, Any] = field(default_factory=dict)
    continue_workflow: bool = True
    params: Dict[str, Any] = field(default_factory=dict)
    specific_output: Dict[str, Any] = field(default_factory=dict)

    @property
    def deferred(self) -> bool:
        return not self.continue_workflow

    def __getitem__(self, key: str) -> Any:
        return getattr(self, key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_type": self.execution_type,
            "workflow_results": self.workflow_results,
            "continue_workflow": self.continue_workflow,
            "params": self.params,
            "specific_output": self.specific_output,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ExecutionResult":
        return cls(
            execution_type=str(payload["execution_type"]),
            workflow_results=dict(payload.get("workflow_results") or {}),
            continue_workflow=bool(payload.get("continue_workflow", True)),
            params=dict(payload.get("params") or {}),
            specific_output=dict(payload.get("specific_output") or {}),
        )


def initialize_output_execution(
    execution_type: str,
    workflow_results: Optional[Mapping[str, Any]],
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
    continue_workflow: bool = True,
) -> ExecutionResult:
    return ExecutionResult(
        execution_type=execution_type,
        workflow_results=dict(workflow_results or {}),
        continue_workflow=bool(continue_workflow),
        params=dict(params or {}),
        specific_output=dict(specific_output or {}),
    )


def initialize_output_split(
    split_type: str,
    splits: Mapping[str, Mapping[str, Any]],
    seed: Any,
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "split_type": split_type,
        "splits": dict(splits),
        "seed": seed,
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_preprocessing(
    preprocessed_data: Any,
    method: str,
    protected_attributes: Sequence[str],
    target_var: Optional[str] = None,
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "preprocessed_data": preprocessed_data,
        "method": method,
        "protected_attributes": list(protected_attributes),
        "target_var": target_var,
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_train(
    model: Any,
    model_type: str,
    formula: Optional[str],
    training_time: Optional[float] = None,
    hyperparameters: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "model": model,
        "model_type": model_type,
        "formula": formula,
        "training_time": training_time,
        "hyperparameters": dict(hyperparameters or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_inprocessing(
    adjusted_model: Any,
    model_type: str,
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "adjusted_model": adjusted_model,
        "model_type": model_type,
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_postprocessing(
    adjusted_predictions: Any,
    method: str,
    input_data: Any,
    protected_attributes: Sequence[str],
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "adjusted_predictions": np.asarray(adjusted_predictions, dtype=float),
        "method": method,
        "input_data": input_data,
        "protected_attributes": list(protected_attributes),
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_eval(
    metrics: Mapping[str, Any],
    eval_type: str,
    input_data: Any,
    protected_attributes: Optional[Sequence[str]] = None,
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "metrics": dict(metrics),
        "eval_type": eval_type,
        "input_data": input_data,
        "protected_attributes": list(protected_attributes or []),
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_reportelement(
    type: str,
    content: Any,
    compatible_formats: Sequence[str] = ("json",),
    input_data: Any = None,
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "type": type,
        "content": content,
        "compatible_formats": list(compatible_formats),
        "input_data": input_data,
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_report(
    report_title: str,
    report_type: str,
    sections: List[Dict[str, Any]],
    compatible_formats: Sequence[str] = ("json",),
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "report_title": report_title,
        "report_type": report_type,
        "sections": list(sections),
        "compatible_formats": list(compatible_formats),
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


def initialize_output_publish(
    path: str,
    success: bool,
    format: str,
    params: Optional[Mapping[str, Any]] = None,
    specific_output: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "path": path,
        "success": bool(success),
        "format": format,
        "params": dict(params or {}),
        "specific_output": dict(specific_output or {}),
    }


__all__ = [
    "ExecutionResult",
    "initialize_output_eval",
    "initialize_output_execution",
    "initialize_output_inprocessing",
    "initialize_output_postprocessing",
    "initialize_output_preprocessing",
    "initialize_output_publish",
    "initialize_output_report",
    "initialize_output_reportelement",
    "initialize_output_split",
    "initialize_output_train",
]
