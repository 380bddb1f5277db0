"""Rehydrate a handed-off run and feed it into the post-execution phase."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from ..config.schema import ControlConfig
from ..core.artifacts import now_utc, read_pickle
from ..core.exceptions import ResumeValidationError
from ..core.logging import get_logger
from ..engines.outputs import ExecutionResult, initialize_output_execution
from ..engines.registry import EngineRegistry
from ..execution.handoff import load_checkpoint, result_file
from .workflow import WorkflowResult, continue_workflow

LOGGER = get_logger(__name__)

_EXECUTION_FIELDS = ("workflow_results", "execution_type", "continue_workflow")


@dataclass
class ResumeObject:
    control: ControlConfig
    split_output: Dict[str, Any]
    execution_output: ExecutionResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "control": self.control,
            "split_output": self.split_output,
            "execution_output": self.execution_output,
        }


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _has_field(obj: Any, name: str) -> bool:
    if isinstance(obj, Mapping):
        return name in obj
    return hasattr(obj, name)


def validate_resume(obj: Union[ResumeObject, Mapping[str, Any]]) -> ResumeObject:
    """Check a resume object and report every problem at once."""

    missing: List[str] = []
    if not isinstance(obj, (ResumeObject, Mapping)):
        raise ResumeValidationError(
            "Resume object must be a mapping or ResumeObject",
            metadata={"missing": ["control", "split_output", "execution_output"]},
        )
    for name in ("control", "split_output", "execution_output"):
        if _field(obj, name) is None:
            missing.append(name)

    control = _field(obj, "control")
    if control is not None and not isinstance(control, ControlConfig):
        missing.append("control (must be a ControlConfig)")

    split_output = _field(obj, "split_output")
    if split_output is not None:
        splits = split_output.get("splits") if isinstance(split_output, Mapping) else None
        if not isinstance(splits, Mapping):
            missing.append("split_output.splits")
        elif not splits:
            missing.append("split_output.splits (must be non-empty)")

    execution_output = _field(obj, "execution_output")
    if execution_output is not None:
        for name in _EXECUTION_FIELDS:
            if not _has_field(execution_output, name):
                missing.append(f"execution_output.{name}")
        if _has_field(execution_output, "workflow_results") and not isinstance(
            _field(execution_output, "workflow_results"), Mapping
        ):
            missing.append("execution_output.workflow_results (must be a mapping)")
        if _has_field(execution_output, "execution_type") and not isinstance(
            _field(execution_output, "execution_type"), str
        ):
            missing.append("execution_output.execution_type (must be a string)")
        if _has_field(execution_output, "continue_workflow") and not isinstance(
            _field(execution_output, "continue_workflow"), bool
        ):
            missing.append("execution_output.continue_workflow (must be a boolean)")

    if missing:
        raise ResumeValidationError(
            f"Resume object is invalid: {', '.join(missing)}",
            metadata={"missing": missing},
        )

    if not isinstance(execution_output, ExecutionResult):
        execution_output = ExecutionResult.from_dict(execution_output)
    return ResumeObject(control=control, split_output=dict(split_output), execution_output=execution_output)


def resume_execution_output(
    workflow_results: Mapping[str, Any], metadata: Optional[Mapping[str, Any]] = None
) -> ExecutionResult:
    return initialize_output_execution(
        execution_type="external",
        workflow_results=workflow_results,
        params=None,
        specific_output=metadata,
        continue_workflow=True,
    )


def prepare_resume(
    output_dir: Union[str, Path],
    result_dir: Union[str, Path, None] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Load a checkpoint plus whatever split results exist into a validated resume mapping."""

    output_dir = Path(output_dir).expanduser()
    control, split_output, _ = load_checkpoint(output_dir)
    result_root = Path(result_dir).expanduser() if result_dir is not None else output_dir

    workflow_results: Dict[str, Any] = {}
    for index, split_key in enumerate(split_output["splits"]):
        path = result_file(result_root, index)
        if not path.exists():
            LOGGER.warning(
                "[resume] missing result file %s for split '%s'",
                path,
                split_key,
                extra={"extra_context": {"event": "resume_result_missing", "split": split_key}},
            )
            continue
        workflow_results[split_key] = read_pickle(path)

    if metadata is None:
        metadata = {"engine": "slurm_array", "timestamp": now_utc()}
    resume_object = {
        "control": control,
        "split_output": split_output,
        "execution_output": resume_execution_output(workflow_results, metadata),
    }
    validate_resume(resume_object)
    LOGGER.info(
        "[resume] loaded %d of %d split result(s) from %s",
        len(workflow_results),
        len(split_output["splits"]),
        result_root,
    )
    return resume_object


def resume(obj: Union[ResumeObject, Mapping[str, Any]], registry: Optional[EngineRegistry] = None) -> WorkflowResult:
    checked = validate_resume(obj)
    return continue_workflow(checked.control, checked.split_output, checked.execution_output, registry=registry)


__all__ = [
    "ResumeObject",
    "prepare_resume",
    "resume",
    "resume_execution_output",
    "validate_resume",
]
