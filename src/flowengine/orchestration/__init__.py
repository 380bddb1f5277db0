"""Workflow orchestration: the pipeline body, the run/continue phases and resume."""

from .resume import ResumeObject, prepare_resume, resume, validate_resume
from .workflow import WorkflowResult, aggregate_results, continue_workflow, run_workflow

__all__ = [
    "ResumeObject",
    "WorkflowResult",
    "aggregate_results",
    "continue_workflow",
    "prepare_resume",
    "resume",
    "run_workflow",
    "validate_resume",
]
