"""Sequential execution: run the pipeline body once per split, in split order."""

from __future__ import annotations

from typing import Any, Dict, Mapping

from ..core.logging import get_logger
from ..engines.outputs import initialize_output_execution
from ..engines.registry import current_registry

LOGGER = get_logger(__name__)


def run_split(control, split: Mapping[str, Any]) -> Any:
    """Run the configured pipeline body on a copy of ``control`` with ``split`` bound."""

    split_control = control.copy_for_split(split["train"], split["test"])
    return current_registry()[split_control.workflow](split_control)


def engine_execution_basic_sequential(control, splits: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
    results: Dict[str, Any] = {}
    for split_key, split in splits.items():
        LOGGER.debug("[sequential] running split '%s'", split_key)
        results[split_key] = run_split(control, split)
    return results


def wrapper_execution_basic_sequential(control, split_output):
    splits = split_output["splits"]
    LOGGER.info("[sequential] running %d split(s)", len(splits))
    workflow_results = engine_execution_basic_sequential(control, splits)

    return initialize_output_execution(
        execution_type="basic_sequential",
        workflow_results=workflow_results,
        params=control.params.execution.params,
        continue_workflow=True,
        specific_output={"n_splits": len(splits)},
    )


def default_params_execution_basic_sequential() -> Dict[str, Any]:
    return {}


__all__ = ["run_split", "engine_execution_basic_sequential", "wrapper_execution_basic_sequential"]
