"""Top-level workflow: split, execute, then aggregate, report and publish."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np

from ..config.loader import complete_control_with_defaults
from ..config.schema import ControlConfig
from ..core.logging import configure_logging, get_logger, get_run_id, silence_logging
from ..engines.outputs import ExecutionResult, initialize_output_report
from ..engines.registry import EngineRegistry, use_registry
from ..utils.seed import seed_everything

LOGGER = get_logger(__name__)


@dataclass
class WorkflowResult:
    """Everything a workflow run produced.

    ``aggregated_results`` and the reporting fields stay ``None`` when execution
    was handed off and the run has not been resumed yet.
    """

    split_output: Dict[str, Any]
    execution_output: ExecutionResult
    aggregated_results: Optional[Dict[str, Any]] = None
    reportelements: Optional[Dict[str, Any]] = None
    reports: Optional[Dict[str, Any]] = None
    publishing: Optional[Dict[str, Any]] = field(default=None)

    @property
    def deferred(self) -> bool:
        return self.execution_output.deferred

    def __getitem__(self, key: str) -> Any:
        return getattr(self, key)


def _apply_settings(control: ControlConfig) -> None:
    settings = control.settings
    configure_logging(settings.log_level, settings.log_dir, settings.json_logs)
    if not settings.log:
        silence_logging()


def _summarise(values: List[float]) -> Dict[str, float]:
    array = np.asarray(values, dtype=float)
    return {
        "mean": float(np.nanmean(array)),
        "sd": float(np.nanstd(array, ddof=1)) if array.size > 1 else float("nan"),
    }


def aggregate_results(workflow_results: Mapping[str, Any]) -> Dict[str, Any]:
    """Summarise every evaluation metric across splits.

    A scalar metric yields ``mean``, ``sd``, ``min`` and ``max``. A nested metric
    (for instance ``summary_stats``) yields ``mean`` and ``sd`` per sub-metric.
    """

    collected: Dict[str, List[Any]] = {}
    for result in workflow_results.values():
        output_eval = result.get("output_eval") if isinstance(result, Mapping) else None
        if not output_eval:
            continue
        for eval_output in output_eval.values():
            for metric_name, value in eval_output.get("metrics", {}).items():
                collected.setdefault(metric_name, []).append(value)

    aggregated: Dict[str, Any] = {}
    for metric_name, values in collected.items():
        if isinstance(values[0], Mapping):
            submetrics = list(values[0])
            aggregated[metric_name] = {
                sub: _summarise([value.get(sub, float("nan")) for value in values]) for sub in submetrics
            }
        else:
            array = np.asarray(values, dtype=float)
            aggregated[metric_name] = {
                **_summarise(values),
                "min": float(np.nanmin(array)),
                "max": float(np.nanmax(array)),
            }
    return aggregated


def run_reportelements(control, registry: EngineRegistry, workflow_results, split_output) -> Optional[Dict[str, Any]]:
    if not control.reportelement:
        return None
    outputs: Dict[str, Any] = {}
    for alias, engine_name in control.reportelement.items():
        if engine_name not in registry:
            LOGGER.warning("[workflow] reportelement engine '%s' not found; skipping alias '%s'", engine_name, alias)
            continue
        LOGGER.info("[workflow] running reportelement '%s' for alias '%s'", engine_name, alias)
        outputs[alias] = registry[engine_name](control, workflow_results, split_output, alias)
    return outputs


def run_reports(control, registry: EngineRegistry, reportelements) -> Optional[Dict[str, Any]]:
    if not control.report:
        return None
    outputs: Dict[str, Any] = {}
    for alias_report, engine_name in control.report.items():
        if engine_name not in registry:
            LOGGER.warning("[workflow] report engine '%s' not found; skipping alias '%s'", engine_name, alias_report)
            continue
        LOGGER.info("[workflow] running report '%s' for alias '%s'", engine_name, alias_report)
        outputs[alias_report] = registry[engine_name](control, reportelements, alias_report)
    return outputs


def run_publish(control, registry: EngineRegistry, reportelements, reports) -> Dict[str, Any]:
    outputs: Dict[str, Any] = {}
    for alias_publish, engine_name in (control.publish or {}).items():
        info = control.params.publish.params.get(alias_publish) or {}
        obj_type = info.get("obj_type", "report")
        obj_name = info.get("obj_name")
        if obj_type == "report":
            obj = (reports or {}).get(obj_name)
        elif obj_type == "reportelement":
            element = (reportelements or {}).get(obj_name)
            obj = None
            if element is not None:
                obj = initialize_output_report(
                    report_title=f"Export: {alias_publish}",
                    report_type="single_element",
                    sections=[{"heading": alias_publish, "content": [element]}],
                    compatible_formats=element.get("compatible_formats", ("json",)),
                )
        else:
            LOGGER.warning("[workflow] unknown publish type '%s' for alias '%s'; skipping", obj_type, alias_publish)
            continue
        if obj is None:
            LOGGER.warning("[workflow] %s '%s' for alias '%s' was not produced; skipping", obj_type, obj_name, alias_publish)
            continue
        if engine_name not in registry:
            LOGGER.warning("[workflow] publish engine '%s' not found; skipping alias '%s'", engine_name, alias_publish)
            continue
        file_path = Path(control.params.publish.output_folder) / alias_publish
        LOGGER.info("[workflow] publishing '%s' with '%s'", alias_publish, engine_name)
        outputs[alias_publish] = registry[engine_name](control, obj, str(file_path), alias_publish)
    return outputs


def continue_workflow(
    control: ControlConfig,
    split_output: Mapping[str, Any],
    execution_output: Union[ExecutionResult, Mapping[str, Any]],
    registry: Optional[EngineRegistry] = None,
) -> WorkflowResult:
    """Post-execution phase: aggregate metrics, then run reporting and publishing."""

    if not isinstance(execution_output, ExecutionResult):
        execution_output = ExecutionResult.from_dict(execution_output)
    with use_registry(registry) as active:
        workflow_results = execution_output.workflow_results
        aggregated = aggregate_results(workflow_results)
        reportelements = run_reportelements(control, active, workflow_results, split_output)
        reports = run_reports(control, active, reportelements)
        publishing = run_publish(control, active, reportelements, reports)

    LOGGER.info(
        "[workflow] finished with %d split result(s)",
        len(workflow_results),
        extra={"extra_context": {"event": "workflow_completed", "metrics": sorted(aggregated)}},
    )
    return WorkflowResult(
        split_output=dict(split_output),
        execution_output=execution_output,
        aggregated_results=aggregated,
        reportelements=reportelements,
        reports=reports,
        publishing=publishing,
    )


def run_workflow(
    control: Union[ControlConfig, Mapping[str, Any], None] = None,
    registry: Optional[EngineRegistry] = None,
) -> WorkflowResult:
    """Run a complete workflow, returning early when execution was handed off."""

    control = complete_control_with_defaults(control)
    _apply_settings(control)
    seed_everything(control.global_seed)

    with use_registry(registry) as active:
        LOGGER.info(
            "[workflow] split=%s execution=%s workflow=%s",
            control.split_method,
            control.execution,
            control.workflow,
            extra={"extra_context": {"event": "workflow_started", "run_id": get_run_id()}},
        )
        split_output = active[control.split_method](control)
        execution_output = active[control.execution](control, split_output)

        # adaptive strategies draw their own splits
        if "split_output" in execution_output.specific_output:
            split_output = execution_output.specific_output.pop("split_output")

        if execution_output.deferred:
            LOGGER.info(
                "[workflow] execution '%s' handed off; resume once the external jobs finish",
                control.execution,
                extra={"extra_context": {"event": "workflow_deferred", **execution_output.specific_output}},
            )
            return WorkflowResult(split_output=split_output, execution_output=execution_output)

        return continue_workflow(control, split_output, execution_output, registry=active)


__all__ = [
    "WorkflowResult",
    "aggregate_results",
    "continue_workflow",
    "run_publish",
    "run_reportelements",
    "run_reports",
    "run_workflow",
]
