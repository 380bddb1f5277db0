"""Execution strategies and the stability evaluator they share."""

from .batch import JobRegistry, ResourceSpec, run_batch, run_job
from .handoff import load_checkpoint, prepare_handoff, run_handoff_split
from .stability import STABILITY_STRATEGIES, StabilityResult, get_stability_strategy

__all__ = [
    "JobRegistry",
    "ResourceSpec",
    "STABILITY_STRATEGIES",
    "StabilityResult",
    "get_stability_strategy",
    "load_checkpoint",
    "prepare_handoff",
    "run_batch",
    "run_handoff_split",
    "run_job",
]
