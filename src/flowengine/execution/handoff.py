"""Hand execution off to an external scheduler through a three-file checkpoint.

The checkpoint directory holds exactly ``control_base.pkl``, ``split_output.pkl``
and ``n_splits.txt``. Array tasks call :func:`run_handoff_split` with their
index and write ``result_split_<index>.pkl`` next to the checkpoint (or into a
separate result directory); :mod:`flowengine.orchestration.resume` collects them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from ..config.loader import merge_with_defaults
from ..core.artifacts import read_pickle, write_pickle, write_text
from ..core.exceptions import PreconditionError
from ..core.logging import get_logger
from ..engines.outputs import initialize_output_execution
from ..utils.seed import seed_everything
from .sequential import run_split
from .slurm import SlurmJob, format_walltime, render_array_script

LOGGER = get_logger(__name__)

CONTROL_FILE = "control_base.pkl"
SPLIT_OUTPUT_FILE = "split_output.pkl"
N_SPLITS_FILE = "n_splits.txt"
SCRIPT_FILE = "job.sbatch"
HANDOFF_MESSAGE = "Slurm array preparation complete. Run the splits externally and resume later."


def result_file(result_dir: Path, index: int) -> Path:
    return Path(result_dir) / f"result_split_{index}.pkl"


def prepare_handoff(
    control,
    split_output: Mapping[str, Any],
    output_dir: str | Path,
    *,
    script: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Persist the checkpoint and optionally an sbatch array script over ``run-split``."""

    if not split_output.get("splits"):
        raise PreconditionError("Cannot hand off a split set without splits")
    output_dir = Path(output_dir).expanduser()
    output_dir.mkdir(parents=True, exist_ok=True)
    for stale in output_dir.glob("result_split_*.pkl"):
        LOGGER.debug("[handoff] removing stale result %s", stale)
        stale.unlink()

    n_splits = len(split_output["splits"])
    write_pickle(output_dir / CONTROL_FILE, control)
    write_pickle(output_dir / SPLIT_OUTPUT_FILE, dict(split_output))
    write_text(output_dir / N_SPLITS_FILE, f"{n_splits}\n")

    script_path: Optional[Path] = None
    if script is not None:
        job = SlurmJob(
            name=script.get("job_name", "flowengine-split"),
            time=format_walltime(int(script.get("walltime", 3600))),
            partition=script.get("partition"),
            account=script.get("account"),
            cpus_per_task=int(script.get("ncpus", 1)),
            memory=f"{int(script.get('memory', 2048))}M",
            output_dir=str(output_dir / "logs"),
            modules=list(script.get("modules") or []),
        )
        command = [script.get("python", "python3"), "-m", "flowengine.cli.main", "run-split", str(output_dir.resolve())]
        script_path = output_dir / SCRIPT_FILE
        write_text(script_path, render_array_script(job=job, job_count=n_splits, command=command))

    LOGGER.info(
        "[handoff] wrote checkpoint for %d split(s) to %s",
        n_splits,
        output_dir,
        extra={"extra_context": {"event": "handoff_prepared", "output_dir": str(output_dir)}},
    )
    return {
        "message": HANDOFF_MESSAGE,
        "output_dir": str(output_dir),
        "n_splits": n_splits,
        "script": str(script_path) if script_path is not None else None,
    }


def load_checkpoint(output_dir: str | Path) -> Tuple[Any, Dict[str, Any], int]:
    """Read the three checkpoint artifacts back as ``(control, split_output, n_splits)``."""

    output_dir = Path(output_dir).expanduser()
    missing = [name for name in (CONTROL_FILE, SPLIT_OUTPUT_FILE, N_SPLITS_FILE) if not (output_dir / name).exists()]
    if missing:
        raise PreconditionError(
            f"Checkpoint in {output_dir} is incomplete; missing {', '.join(missing)}",
            metadata={"output_dir": str(output_dir), "missing": missing},
        )
    control = read_pickle(output_dir / CONTROL_FILE)
    split_output = read_pickle(output_dir / SPLIT_OUTPUT_FILE)
    n_splits = int((output_dir / N_SPLITS_FILE).read_text(encoding="utf-8").strip())
    if n_splits != len(split_output["splits"]):
        raise PreconditionError(
            f"n_splits.txt says {n_splits} but split_output holds {len(split_output['splits'])} split(s)",
            metadata={"output_dir": str(output_dir)},
        )
    return control, split_output, n_splits


def run_handoff_split(output_dir: str | Path, index: int, result_dir: str | Path | None = None) -> Path:
    """Run split ``index`` of a checkpoint and write its result file."""

    control, split_output, n_splits = load_checkpoint(output_dir)
    if not 0 <= index < n_splits:
        raise PreconditionError(
            f"Split index {index} is out of range for {n_splits} split(s)",
            metadata={"index": index, "n_splits": n_splits},
        )
    split_key = list(split_output["splits"])[index]
    seed_everything(int(control.global_seed) + index)
    LOGGER.info("[handoff] running split %d ('%s')", index, split_key)
    result = run_split(control, split_output["splits"][split_key])
    target_dir = Path(result_dir).expanduser() if result_dir is not None else Path(output_dir).expanduser()
    return write_pickle(result_file(target_dir, index), result)


def engine_execution_basic_slurm_array(control, split_output, params: Mapping[str, Any]) -> Dict[str, Any]:
    script = None
    if params.get("write_script"):
        script = {"job_name": params.get("job_name", "flowengine-split"), "python": params.get("python", "python3")}
        script.update(params.get("resources") or {})
    return prepare_handoff(control, split_output, params["output_folder"], script=script)


def wrapper_execution_basic_slurm_array(control, split_output):
    params = merge_with_defaults(control.params.execution.params, default_params_execution_basic_slurm_array())
    specific_output = engine_execution_basic_slurm_array(control, split_output, params)

    return initialize_output_execution(
        execution_type="basic_slurm_array",
        workflow_results={},
        params=params,
        continue_workflow=False,
        specific_output=specific_output,
    )


def default_params_execution_basic_slurm_array() -> Dict[str, Any]:
    return {
        "output_folder": "handoff",
        "write_script": True,
        "job_name": "flowengine-split",
        "python": "python3",
        "resources": {"ncpus": 1, "memory": 2048, "walltime": 3600},
    }


__all__ = [
    "CONTROL_FILE",
    "N_SPLITS_FILE",
    "SPLIT_OUTPUT_FILE",
    "load_checkpoint",
    "prepare_handoff",
    "result_file",
    "run_handoff_split",
]
