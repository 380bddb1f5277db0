"""Built-in engines registered into every default registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Tuple

from . import evaluate, report, split, train

if TYPE_CHECKING:
    from ..registry import EngineRegistry

_MODULE_ENGINES = {
    split: ("split_random", "split_random_stratified", "split_cv"),
    train: ("train_lm", "train_glm"),
    evaluate: ("eval_mse", "eval_summarystats"),
    report: ("reportelement_text_msesummary", "report_summary", "publish_json"),
}


def _bundle(module, key: str) -> Dict[str, object]:
    return {
        "wrapper": getattr(module, f"wrapper_{key}"),
        "engine": getattr(module, f"engine_{key}"),
        "default_params": getattr(module, f"default_params_{key}"),
    }


def builtin_bundles() -> Dict[str, Dict[str, object]]:
    """Return every built-in engine bundle keyed by registry key."""

    from ...execution import adaptive, batch, handoff, sequential
    from ...orchestration import pipeline

    modules: Dict[object, Tuple[str, ...]] = dict(_MODULE_ENGINES)
    modules[pipeline] = ("workflow_single",)
    modules[sequential] = ("execution_basic_sequential",)
    modules[batch] = (
        "execution_basic_batch_local",
        "execution_basic_batch_multicore",
        "execution_basic_batch_slurm",
    )
    modules[adaptive] = (
        "execution_adaptive_output_sequential",
        "execution_adaptive_output_batch_multicore",
        "execution_adaptive_output_batch_slurm",
        "execution_adaptive_input_scalar_sequential",
    )
    modules[handoff] = ("execution_basic_slurm_array",)

    bundles: Dict[str, Dict[str, object]] = {}
    for module, keys in modules.items():
        for key in keys:
            bundles[key] = _bundle(module, key)
    return bundles


def register_builtin_engines(registry: "EngineRegistry") -> None:
    for key, bundle in builtin_bundles().items():
        registry.register(key, bundle)


__all__ = ["builtin_bundles", "register_builtin_engines"]
