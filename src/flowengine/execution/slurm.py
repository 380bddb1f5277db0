"""Utilities for rendering and submitting Slurm job arrays."""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..core.exceptions import PreconditionError
from ..core.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class SlurmJob:
    """High-level Slurm array configuration."""

    name: str
    time: str = "01:00:00"
    partition: Optional[str] = None
    nodes: int = 1
    cpus_per_task: int = 1
    memory: Optional[str] = None
    qos: Optional[str] = None
    account: Optional[str] = None
    constraint: Optional[str] = None
    output_dir: str = "logs/slurm"
    array_parallelism: Optional[int] = None
    modules: List[str] = field(default_factory=list)
    pre_commands: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)


def parse_time_to_seconds(time_str: str) -> int:
    parts = time_str.split(":")
    if len(parts) not in {2, 3}:
        raise ValueError(f"Invalid time format '{time_str}', expected HH:MM[:SS]")
    if len(parts) == 2:
        hours, minutes = parts
        seconds = 0
    else:
        hours, minutes, seconds = parts
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds)


def format_walltime(seconds: int) -> str:
    seconds = int(seconds)
    if seconds <= 0:
        raise ValueError(f"walltime must be positive, got {seconds}")
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def render_array_script(*, job: SlurmJob, job_count: int, command: Sequence[str]) -> str:
    """Render an sbatch script running ``command`` followed by the array task id."""

    if job_count < 1:
        raise ValueError("job_count must be >= 1")
    lines: List[str] = ["#!/usr/bin/env bash"]
    lines.append(f"#SBATCH --job-name={job.name}")
    if job.partition:
        lines.append(f"#SBATCH --partition={job.partition}")
    lines.append(f"#SBATCH --nodes={job.nodes}")
    lines.append(f"#SBATCH --cpus-per-task={job.cpus_per_task}")
    lines.append(f"#SBATCH --time={job.time}")
    output_dir = Path(job.output_dir).resolve()
    output_dir.mkdir(parents=True, exist_ok=True)
    lines.append(f"#SBATCH --output={output_dir}/%x-%A_%a.out")
    if job.memory:
        lines.append(f"#SBATCH --mem={job.memory}")
    if job.account:
        lines.append(f"#SBATCH --account={job.account}")
    if job.qos:
        lines.append(f"#SBATCH --qos={job.qos}")
    if job.constraint:
        lines.append(f"#SBATCH --constraint={job.constraint}")

    array_line = f"#SBATCH --array=0-{job_count - 1}"
    if job.array_parallelism:
        array_line += f"%{job.array_parallelism}"
    lines.append(array_line)

    lines.append("")
    lines.append("set -euo pipefail")
    lines.append("export PYTHONUNBUFFERED=1")
    for key, value in job.env.items():
        lines.append(f"export {key}={shlex.quote(str(value))}")

    for module in job.modules:
        lines.append(f"module load {module}")

    for pre_command in job.pre_commands:
        lines.append(pre_command)

    lines.append("")
    lines.append(" ".join(shlex.quote(token) for token in command) + ' "$SLURM_ARRAY_TASK_ID"')
    return "\n".join(lines) + "\n"


def submit_script(script_path: Path) -> str:
    """Submit ``script_path`` with ``sbatch --parsable`` and return the job id."""

    try:
        completed = subprocess.run(
            ["sbatch", "--parsable", str(script_path)],
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as exc:
        raise PreconditionError(
            "sbatch was not found on PATH; the slurm backend needs a Slurm submit host",
            metadata={"script": str(script_path)},
        ) from exc
    job_id = (completed.stdout or "").strip().split(";")[0]
    LOGGER.info("[slurm] submitted %s as job %s", script_path, job_id or "<unknown>")
    return job_id


__all__ = ["SlurmJob", "format_walltime", "parse_time_to_seconds", "render_array_script", "submit_script"]
