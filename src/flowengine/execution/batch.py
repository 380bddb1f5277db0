"""Batch-parallel execution through a per-run job registry.

Each call owns one job-registry directory. The directory is wiped and
recreated, one job file is written per split (a deep copy of the control with
only that split bound), the jobs are handed to a backend, and the submitting
process blocks until every job has produced a result or an error file.

Backends:

* ``local``: jobs run one after another in the current process;
* ``multicore``: a fork-based process pool;
* ``slurm``: an ``sbatch`` job array whose tasks call ``flowengine run-job``.

A batch is never cancelled part-way. When any job fails, the whole call fails
with :class:`~flowengine.core.exceptions.BatchJobError` naming every failed
split; no partial results are returned.
"""

from __future__ import annotations

import importlib
import multiprocessing
import os
import sys
import time
import traceback
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, field_validator

from ..config.loader import merge_with_defaults
from ..core.artifacts import now_utc, read_json, read_pickle, reset_directory, write_json, write_pickle, write_text
from ..core.exceptions import BatchJobError, PreconditionError
from ..core.logging import get_logger, get_run_id
from ..engines.outputs import initialize_output_execution
from ..engines.registry import current_registry
from ..utils.seed import seed_everything
from .slurm import SlurmJob, format_walltime, parse_time_to_seconds, render_array_script, submit_script

LOGGER = get_logger(__name__)

REGISTRY_FILE = "registry.json"
DEFAULT_REGISTRY_ROOT = "batch_registry"


class ResourceSpec(BaseModel):
    """Resources requested per job. Passed through to the backend as-is."""

    ncpus: int = Field(1, ge=1)
    memory: int = Field(2048, ge=1, description="Memory ceiling in MB")
    walltime: int = Field(3600, ge=1, description="Wall-time ceiling in seconds")
    partition: Optional[str] = None
    account: Optional[str] = None
    modules: List[str] = Field(default_factory=list)

    @field_validator("walltime", mode="before")
    @classmethod
    def _parse_walltime(cls, value: Any) -> Any:
        if isinstance(value, str) and ":" in value:
            return parse_time_to_seconds(value)
        return value


@dataclass
class JobRegistry:
    """On-disk workspace coordinating one batch of jobs."""

    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    @property
    def jobs_dir(self) -> Path:
        return self.path / "jobs"

    @property
    def results_dir(self) -> Path:
        return self.path / "results"

    @property
    def errors_dir(self) -> Path:
        return self.path / "errors"

    def job_path(self, index: int) -> Path:
        return self.jobs_dir / f"{index}.pkl"

    def result_path(self, index: int) -> Path:
        return self.results_dir / f"{index}.pkl"

    def error_path(self, index: int) -> Path:
        return self.errors_dir / f"{index}.json"

    def reset(self, metadata: Mapping[str, Any]) -> None:
        """Discard any previous contents and start an empty registry.

        A non-empty folder without ``registry.json`` is not a job registry and
        is never wiped.
        """

        foreign = self.path.exists() and not self.path.is_dir()
        if foreign or (self.path.is_dir() and any(self.path.iterdir()) and not (self.path / REGISTRY_FILE).exists()):
            raise PreconditionError(
                f"Refusing to wipe '{self.path}': it is not an empty folder or a job registry",
                metadata={"registry_dir": str(self.path)},
            )
        reset_directory(self.path)
        for directory in (self.jobs_dir, self.results_dir, self.errors_dir):
            directory.mkdir(parents=True, exist_ok=True)
        write_json(self.path / REGISTRY_FILE, dict(metadata))

    def metadata(self) -> Dict[str, Any]:
        return read_json(self.path / REGISTRY_FILE)

    def write_job(self, index: int, split_key: str, control: Any) -> Path:
        return write_pickle(self.job_path(index), {"split_key": split_key, "control": control})

    def pending(self, n_jobs: int) -> List[int]:
        return [
            index
            for index in range(n_jobs)
            if not self.result_path(index).exists() and not self.error_path(index).exists()
        ]

    def collect(self, split_keys: Sequence[str]) -> Dict[str, Any]:
        """Load results keyed by split, raising if any job failed or is missing."""

        results: Dict[str, Any] = {}
        failed: Dict[str, str] = {}
        for index, split_key in enumerate(split_keys):
            if self.error_path(index).exists():
                failed[split_key] = read_json(self.error_path(index)).get("error", "unknown error")
            elif self.result_path(index).exists():
                results[split_key] = read_pickle(self.result_path(index))
            else:
                failed[split_key] = "no result was produced"
        if failed:
            raise BatchJobError(
                f"{len(failed)} of {len(split_keys)} job(s) failed: {', '.join(sorted(failed))}",
                metadata={"failed": failed, "registry": str(self.path)},
            )
        return results


def run_job(registry_dir: str | Path, index: int) -> Path:
    """Execute job ``index`` of the registry at ``registry_dir`` and persist its outcome."""

    registry = JobRegistry(Path(registry_dir))
    metadata = registry.metadata()
    for package in metadata.get("required_packages", []):
        importlib.import_module(package)
    payload = read_pickle(registry.job_path(index))
    split_key = payload["split_key"]
    control = payload["control"]
    seed_everything(int(metadata.get("seed", 0)) + index)

    try:
        result = current_registry()[control.workflow](control)
    except Exception as exc:
        write_json(
            registry.error_path(index),
            {
                "split_key": split_key,
                "error": f"{type(exc).__name__}: {exc}",
                "traceback": traceback.format_exc(),
            },
        )
        raise
    return write_pickle(registry.result_path(index), result)


class LocalBackend:
    """Run every job in the current process, one after another."""

    name = "local"

    def run(self, registry: JobRegistry, n_jobs: int) -> None:
        for index in range(n_jobs):
            try:
                run_job(registry.path, index)
            except Exception as exc:
                LOGGER.warning("[batch] local job %d failed: %s", index, exc)


def fork_available() -> bool:
    return "fork" in multiprocessing.get_all_start_methods()


class MulticoreBackend:
    """Run jobs on a pool of forked worker processes."""

    name = "multicore"

    def __init__(self, ncpus: int) -> None:
        if not fork_available():
            raise PreconditionError(
                "The multicore backend needs process fork support, which this platform lacks; "
                "use 'execution_basic_batch_local' or 'execution_basic_batch_slurm' instead.",
                metadata={"platform": sys.platform},
            )
        self.ncpus = max(1, int(ncpus))

    def run(self, registry: JobRegistry, n_jobs: int) -> None:
        context = multiprocessing.get_context("fork")
        workers = min(self.ncpus, n_jobs)
        with ProcessPoolExecutor(max_workers=workers, mp_context=context) as executor:
            futures = {executor.submit(run_job, str(registry.path), index): index for index in range(n_jobs)}
            for future in as_completed(futures):
                index = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    LOGGER.warning("[batch] multicore job %d failed: %s", index, exc)
                    if not registry.error_path(index).exists():
                        write_json(registry.error_path(index), {"error": f"{type(exc).__name__}: {exc}"})


class SlurmBackend:
    """Submit jobs as one Slurm array and poll the registry for their outcomes."""

    name = "slurm"

    def __init__(
        self,
        resources: ResourceSpec,
        *,
        job_name: str = "flowengine",
        python: str = "python3",
        poll_interval: float = 10.0,
        poll_timeout: Optional[float] = None,
        pre_commands: Optional[List[str]] = None,
    ) -> None:
        self.resources = resources
        self.job_name = job_name
        self.python = python
        self.poll_interval = float(poll_interval)
        self.poll_timeout = float(poll_timeout) if poll_timeout is not None else float(resources.walltime + 60)
        self.pre_commands = list(pre_commands or [])

    def render(self, registry: JobRegistry, n_jobs: int) -> Path:
        job = SlurmJob(
            name=self.job_name,
            time=format_walltime(self.resources.walltime),
            partition=self.resources.partition,
            account=self.resources.account,
            cpus_per_task=self.resources.ncpus,
            memory=f"{self.resources.memory}M",
            output_dir=str(registry.path / "logs"),
            modules=list(self.resources.modules),
            pre_commands=self.pre_commands,
        )
        command = [self.python, "-m", "flowengine.cli.main", "run-job", str(registry.path.resolve())]
        script_path = registry.path / "job.sbatch"
        write_text(script_path, render_array_script(job=job, job_count=n_jobs, command=command))
        return script_path

    def run(self, registry: JobRegistry, n_jobs: int) -> None:
        script_path = self.render(registry, n_jobs)
        job_id = submit_script(script_path)
        deadline = time.monotonic() + self.poll_timeout
        while True:
            pending = registry.pending(n_jobs)
            if not pending:
                return
            if time.monotonic() >= deadline:
                raise BatchJobError(
                    f"Timed out after {self.poll_timeout:.0f}s waiting for {len(pending)} slurm job(s)",
                    metadata={"job_id": job_id, "pending": pending, "registry": str(registry.path)},
                )
            LOGGER.debug("[slurm] job %s: %d of %d task(s) pending", job_id, len(pending), n_jobs)
            time.sleep(self.poll_interval)


def make_backend(name: str, params: Mapping[str, Any], resources: ResourceSpec):
    if name == "local":
        return LocalBackend()
    if name == "multicore":
        return MulticoreBackend(resources.ncpus)
    if name == "slurm":
        return SlurmBackend(
            resources,
            job_name=params.get("job_name", "flowengine"),
            python=params.get("python", "python3"),
            poll_interval=params.get("poll_interval", 10.0),
            poll_timeout=params.get("poll_timeout"),
            pre_commands=params.get("pre_commands"),
        )
    raise PreconditionError(f"Unknown batch backend '{name}'", metadata={"backend": name})


def run_batch(
    control: Any,
    splits: Mapping[str, Mapping[str, Any]],
    *,
    backend: str,
    params: Mapping[str, Any],
    registry_dir: Path,
) -> Tuple[Dict[str, Any], JobRegistry]:
    """Run the pipeline body for every split through ``backend``; results keep split order."""

    if not splits:
        raise PreconditionError("Cannot run a batch without splits")
    resources = ResourceSpec.model_validate(params.get("resources") or {})
    runner = make_backend(backend, params, resources)
    split_keys = list(splits)

    registry = JobRegistry(registry_dir)
    registry.reset(
        {
            "backend": backend,
            "seed": int(params.get("seed", 0)),
            "required_packages": list(params.get("required_packages") or []),
            "resources": resources.model_dump(),
            "split_keys": split_keys,
            "created_at": now_utc(),
            "run_id": get_run_id(),
        }
    )
    for index, split_key in enumerate(split_keys):
        split = splits[split_key]
        job_control = control.copy_for_split(split["train"], split["test"])
        # callables in execution params (custom stability functions) stay with the submitter
        job_control.params.execution.params = {
            key: value for key, value in job_control.params.execution.params.items() if not callable(value)
        }
        registry.write_job(index, split_key, job_control)

    LOGGER.info(
        "[batch] submitting %d job(s) to the %s backend",
        len(split_keys),
        backend,
        extra={"extra_context": {"event": "batch_submitted", "registry": str(registry.path)}},
    )
    runner.run(registry, len(split_keys))
    results = registry.collect(split_keys)
    return {key: results[key] for key in split_keys}, registry


def registry_dir_for(params: Mapping[str, Any]) -> Path:
    """Explicit ``registry_folder`` wins; otherwise one directory per run seed."""

    folder = params.get("registry_folder")
    if folder:
        return Path(folder).expanduser()
    return Path(DEFAULT_REGISTRY_ROOT) / f"seed_{params['seed']}"


def _basic_batch(control, split_output, backend: str, defaults: Mapping[str, Any]):
    params = merge_with_defaults(control.params.execution.params, defaults)
    splits = split_output["splits"]
    workflow_results, registry = run_batch(
        control,
        splits,
        backend=backend,
        params=params,
        registry_dir=registry_dir_for(params),
    )
    return workflow_results, params, registry


def _batch_defaults(**extra: Any) -> Dict[str, Any]:
    defaults: Dict[str, Any] = {
        "registry_folder": None,
        "seed": 123,
        "required_packages": [],
        "resources": {"ncpus": 1, "memory": 2048, "walltime": 3600},
    }
    defaults.update(extra)
    return defaults


def engine_execution_basic_batch_local(control, split_output):
    return _basic_batch(control, split_output, "local", default_params_execution_basic_batch_local())


def wrapper_execution_basic_batch_local(control, split_output):
    workflow_results, params, registry = engine_execution_basic_batch_local(control, split_output)
    return initialize_output_execution(
        execution_type="basic_batch_local",
        workflow_results=workflow_results,
        params=params,
        continue_workflow=True,
        specific_output={"n_splits": len(workflow_results), "registry": str(registry.path), "backend": "local"},
    )


def default_params_execution_basic_batch_local() -> Dict[str, Any]:
    return _batch_defaults()


def engine_execution_basic_batch_multicore(control, split_output):
    return _basic_batch(
        control, split_output, "multicore", default_params_execution_basic_batch_multicore()
    )


def wrapper_execution_basic_batch_multicore(control, split_output):
    workflow_results, params, registry = engine_execution_basic_batch_multicore(control, split_output)
    return initialize_output_execution(
        execution_type="basic_batch_multicore",
        workflow_results=workflow_results,
        params=params,
        continue_workflow=True,
        specific_output={"n_splits": len(workflow_results), "registry": str(registry.path), "backend": "multicore"},
    )


def default_params_execution_basic_batch_multicore() -> Dict[str, Any]:
    return _batch_defaults(resources={"ncpus": os.cpu_count() or 1, "memory": 2048, "walltime": 3600})


def engine_execution_basic_batch_slurm(control, split_output):
    return _basic_batch(control, split_output, "slurm", default_params_execution_basic_batch_slurm())


def wrapper_execution_basic_batch_slurm(control, split_output):
    workflow_results, params, registry = engine_execution_basic_batch_slurm(control, split_output)
    return initialize_output_execution(
        execution_type="basic_batch_slurm",
        workflow_results=workflow_results,
        params=params,
        continue_workflow=True,
        specific_output={"n_splits": len(workflow_results), "registry": str(registry.path), "backend": "slurm"},
    )


def default_params_execution_basic_batch_slurm() -> Dict[str, Any]:
    return _batch_defaults(job_name="flowengine", python="python3", poll_interval=10.0, poll_timeout=None)


__all__ = [
    "JobRegistry",
    "LocalBackend",
    "MulticoreBackend",
    "ResourceSpec",
    "SlurmBackend",
    "fork_available",
    "make_backend",
    "registry_dir_for",
    "run_batch",
    "run_job",
]
