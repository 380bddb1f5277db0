"""Typer CLI entrypoint for flowengine runs, batch jobs and handoff resumes."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer

from ..config.loader import load_control, save_control
from ..core.artifacts import write_json
from ..core.logging import get_logger
from ..engines.registry import get_default_registry
from ..execution.batch import run_job as execute_job
from ..execution.handoff import run_handoff_split
from ..orchestration.resume import prepare_resume, resume as resume_workflow
from ..orchestration.workflow import WorkflowResult, run_workflow

LOGGER = get_logger(__name__)

app = typer.Typer(help="flowengine orchestration CLI")


def _summary(result: WorkflowResult) -> dict:
    execution = result.execution_output
    return {
        "execution_type": execution.execution_type,
        "deferred": execution.deferred,
        "n_results": len(execution.workflow_results),
        "aggregated_results": result.aggregated_results,
        "publishing": result.publishing,
        "specific_output": {
            key: value for key, value in execution.specific_output.items() if key not in {"best_result"}
        },
    }


def _emit(result: WorkflowResult, output_dir: Optional[Path]) -> None:
    summary = _summary(result)
    if output_dir is not None:
        write_json(output_dir / "summary.json", json.loads(json.dumps(summary, default=str)))
    typer.echo(json.dumps(summary, indent=2, default=str))


@app.command()
def run(
    config: Path = typer.Argument(..., exists=True, dir_okay=False, help="Control YAML file"),
    override: List[str] = typer.Option([], "--override", "-o", help="Override as dotted.key=json"),
    output_dir: Optional[Path] = typer.Option(None, help="Where to write the resolved control and summary"),
) -> None:
    """Run a full workflow from a control file."""

    control = load_control(config, override)
    if output_dir is not None:
        save_control(control, output_dir)
    result = run_workflow(control)
    if result.deferred:
        typer.echo(result.execution_output.specific_output.get("message", "Execution handed off."))
    _emit(result, output_dir)


@app.command()
def resume(
    handoff_dir: Path = typer.Argument(..., exists=True, file_okay=False, help="Checkpoint directory"),
    result_dir: Optional[Path] = typer.Option(None, help="Directory holding result_split_<i>.pkl files"),
    output_dir: Optional[Path] = typer.Option(None, help="Where to write the summary"),
) -> None:
    """Resume a handed-off run once its split results exist."""

    resume_object = prepare_resume(handoff_dir, result_dir)
    _emit(resume_workflow(resume_object), output_dir)


@app.command("run-job")
def run_job(
    registry_dir: Path = typer.Argument(..., exists=True, file_okay=False),
    index: int = typer.Argument(..., min=0),
) -> None:
    """Execute one job of a batch job registry."""

    path = execute_job(registry_dir, index)
    typer.echo(str(path))


@app.command("run-split")
def run_split(
    handoff_dir: Path = typer.Argument(..., exists=True, file_okay=False),
    index: int = typer.Argument(..., min=0),
    result_dir: Optional[Path] = typer.Option(None),
) -> None:
    """Execute one split of a handoff checkpoint."""

    path = run_handoff_split(handoff_dir, index, result_dir)
    typer.echo(str(path))


@app.command()
def engines(role: Optional[str] = typer.Option(None, help="Only list engines of this role")) -> None:
    """List the registered engines."""

    registry = get_default_registry()
    if role is not None:
        for key in registry.list(role):
            typer.echo(key)
        return
    for role_name, bundles in registry.list().items():
        typer.echo(f"{role_name}:")
        for key in bundles:
            typer.echo(f"  - {key}")


if __name__ == "__main__":
    app()
