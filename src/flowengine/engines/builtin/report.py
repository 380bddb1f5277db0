"""Built-in report element, report and publish engines."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping

import numpy as np

from ...config.loader import merge_with_defaults
from ...core.logging import get_logger
from ..outputs import initialize_output_publish, initialize_output_report, initialize_output_reportelement

LOGGER = get_logger(__name__)


def engine_reportelement_text_msesummary(workflow_results: Mapping[str, Any], metric_source: str) -> str:
    values = []
    for result in workflow_results.values():
        metrics = result.get("output_eval", {}).get(metric_source, {}).get("metrics", {})
        if "mse" in metrics:
            values.append(float(metrics["mse"]))
    if not values:
        return "No MSE values were recorded."
    return f"The mean MSE across {len(values)} splits is {np.mean(values):.4f}."


def wrapper_reportelement_text_msesummary(control, workflow_results, split_output, alias):
    params = merge_with_defaults(
        control.params.reportelement.params.get(alias), default_params_reportelement_text_msesummary()
    )
    text = engine_reportelement_text_msesummary(workflow_results, params["metric_source"])
    LOGGER.info("[reportelement] %s: %s", alias, text)

    return initialize_output_reportelement(
        type="text",
        content=text,
        compatible_formats=("json", "markdown"),
        input_data=list(workflow_results),
        params=params,
    )


def default_params_reportelement_text_msesummary() -> Dict[str, Any]:
    return {"metric_source": "eval_mse"}


def engine_report_summary(reportelements: Mapping[str, Mapping[str, Any]], include: List[str]) -> List[Dict[str, Any]]:
    aliases = include or list(reportelements)
    return [{"heading": alias, "content": [reportelements[alias]]} for alias in aliases if alias in reportelements]


def wrapper_report_summary(control, reportelements, alias_report):
    params = merge_with_defaults(control.params.report.params.get(alias_report), default_params_report_summary())
    sections = engine_report_summary(reportelements or {}, list(params["include"]))

    return initialize_output_report(
        report_title=params["title"] or alias_report,
        report_type="summary",
        sections=sections,
        compatible_formats=("json",),
        params=params,
    )


def default_params_report_summary() -> Dict[str, Any]:
    return {"title": None, "include": []}


def engine_publish_json(obj: Any, file_path: Path) -> Path:
    target = Path(file_path).with_suffix(".json")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(obj, indent=2, default=str), encoding="utf-8")
    return target


def wrapper_publish_json(control, object, file_path, alias_publish):
    params = merge_with_defaults(control.params.publish.params.get(alias_publish), default_params_publish_json())
    target = engine_publish_json(object, Path(file_path))
    LOGGER.info("[publish] %s written to %s", alias_publish, target)

    return initialize_output_publish(path=str(target), success=target.exists(), format="json", params=params)


def default_params_publish_json() -> Dict[str, Any]:
    return {"obj_type": "report", "obj_name": None}
