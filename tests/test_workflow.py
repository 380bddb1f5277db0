"""
End-to-end workflow runs: aggregation, reporting and publishing.
"""

import json
import math
from pathlib import Path

import pytest

from flowengine.engines.outputs import initialize_output_reportelement
from flowengine.orchestration.workflow import (
    WorkflowResult,
    aggregate_results,
    run_publish,
    run_reportelements,
    run_workflow,
)


def _eval_result(mse, stats=None):
    metrics = {"mse": mse}
    output_eval = {"eval_mse": {"metrics": metrics}}
    if stats is not None:
        output_eval["eval_summarystats"] = {"metrics": {"summary_stats": stats}}
    return {"output_eval": output_eval}


def test_run_workflow_with_defaults_uses_synthetic_data():
    result = run_workflow()

    assert isinstance(result, WorkflowResult)
    assert not result.deferred
    assert list(result.split_output["splits"]) == ["random"]
    assert result.execution_output.execution_type == "basic_sequential"
    assert result["aggregated_results"]["mse"]["mean"] >= 0
    # one split has no spread
    assert math.isnan(result.aggregated_results["mse"]["sd"])
    assert result.reportelements is None
    assert result.reports is None
    assert result.publishing == {}


def test_run_workflow_accepts_plain_mapping(credit_frame):
    frame, vars_payload = credit_frame
    result = run_workflow(
        {
            "settings": {"log": False},
            "data": {"full": frame, "vars": vars_payload},
            "split_method": "split_cv",
            "params": {"split": {"params": {"cv_folds": 4}}},
        }
    )
    assert list(result.execution_output.workflow_results) == ["fold1", "fold2", "fold3", "fold4"]


def test_aggregate_scalar_metrics():
    aggregated = aggregate_results({"a": _eval_result(1.0), "b": _eval_result(3.0), "c": _eval_result(2.0)})
    assert aggregated["mse"] == {
        "mean": pytest.approx(2.0),
        "sd": pytest.approx(1.0),
        "min": 1.0,
        "max": 3.0,
    }


def test_aggregate_nested_metrics():
    aggregated = aggregate_results(
        {
            "a": _eval_result(1.0, {"mean": 0.2, "max": 0.9}),
            "b": _eval_result(2.0, {"mean": 0.4, "max": 0.7}),
        }
    )
    assert set(aggregated["summary_stats"]) == {"mean", "max"}
    assert aggregated["summary_stats"]["mean"]["mean"] == pytest.approx(0.3)
    assert aggregated["summary_stats"]["max"]["sd"] == pytest.approx(0.1414213, rel=1e-5)


def test_aggregate_skips_results_without_eval():
    assert aggregate_results({"a": {"output_train": {}}}) == {}


def test_reporting_and_publishing_chain(control):
    control.split_method = "split_cv"
    control.params.split.params = {"cv_folds": 3}
    control.reportelement = {"mse_text": "reportelement_text_msesummary"}
    control.report = {"overview": "report_summary"}
    control.publish = {"overview_json": "publish_json", "element_json": "publish_json"}
    control.params.publish.params = {
        "overview_json": {"obj_type": "report", "obj_name": "overview"},
        "element_json": {"obj_type": "reportelement", "obj_name": "mse_text"},
    }

    result = run_workflow(control)

    assert result.reportelements["mse_text"]["type"] == "text"
    assert result.reports["overview"]["sections"][0]["heading"] == "mse_text"
    report_path = Path(result.publishing["overview_json"]["path"])
    assert report_path == Path("publish") / "overview_json.json"
    assert json.loads(report_path.read_text())["report_type"] == "summary"
    element = json.loads(Path(result.publishing["element_json"]["path"]).read_text())
    assert element["report_type"] == "single_element"
    assert element["sections"][0]["content"][0]["content"].startswith("The mean MSE across 3 splits")


def test_unknown_engines_are_skipped(control, registry):
    control.reportelement = {"ghost": "reportelement_missing", "mse_text": "reportelement_text_msesummary"}
    outputs = run_reportelements(control, registry, {"a": _eval_result(1.5)}, {"splits": {}})
    assert list(outputs) == ["mse_text"]


def test_publish_skips_objects_that_were_not_produced(control, registry):
    control.publish = {"out": "publish_json"}
    control.params.publish.params = {"out": {"obj_type": "report", "obj_name": "never_built"}}
    assert run_publish(control, registry, {}, {}) == {}


def test_publish_unknown_type_is_skipped(control, registry):
    element = initialize_output_reportelement(type="text", content="x")
    control.publish = {"out": "publish_json"}
    control.params.publish.params = {"out": {"obj_type": "chart", "obj_name": "x"}}
    assert run_publish(control, registry, {"x": element}, None) == {}


def test_adaptive_run_replaces_split_output(control):
    control.execution = "execution_adaptive_output_sequential"
    control.params.execution.params = {
        "stability_strategy": "mean_absolute",
        "threshold": 1e6,
        "window": 2,
        "min_splits": 3,
        "max_splits": 5,
    }
    result = run_workflow(control)

    assert list(result.split_output["splits"]) == ["split1", "split2", "split3"]
    assert "split_output" not in result.execution_output.specific_output
    assert result.aggregated_results["mse"]["min"] <= result.aggregated_results["mse"]["max"]


def test_custom_registry_is_used(control, registry):
    calls = []

    def wrapper_execution_counting(control, split_output):
        from flowengine.engines.outputs import initialize_output_execution

        calls.append(list(split_output["splits"]))
        return initialize_output_execution(execution_type="counting", workflow_results={})

    registry.register(
        "execution_counting",
        {
            "wrapper": wrapper_execution_counting,
            "engine": lambda: None,
            "default_params": lambda: {},
        },
    )
    control.execution = "execution_counting"
    result = run_workflow(control, registry=registry)

    assert calls == [["random"]]
    assert result.aggregated_results == {}
