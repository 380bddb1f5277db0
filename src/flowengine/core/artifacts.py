"""Atomic writes for checkpoint and job-registry artifacts.

Every payload is written to a temporary sibling, synchronised to stable storage
and renamed into place, so a reader never observes a half-written file. This
matters for the job registry, where the submitting process polls for result
files written by workers it does not control.
"""

from __future__ import annotations

import json
import os
import pickle
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

TEMP_SUFFIX = ".tmp"


class ArtifactError(RuntimeError):
    """Raised when an artifact cannot be written or read back."""


def now_utc() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _tmp_path(final_path: Path) -> Path:
    return final_path.with_name(f"{final_path.name}{TEMP_SUFFIX}")


def _ensure_removed(path: Path) -> None:
    if path.exists():
        if path.is_file():
            path.unlink()
        else:
            shutil.rmtree(path)


def _fsync_path(path: Path) -> None:
    with path.open("rb") as handle:
        os.fsync(handle.fileno())


def _write_atomic(path: Path, payload: bytes) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _tmp_path(path)
    _ensure_removed(tmp)
    try:
        tmp.write_bytes(payload)
        _fsync_path(tmp)
        tmp.replace(path)
    except Exception:
        _ensure_removed(tmp)
        raise
    return path


def reset_directory(path: Path) -> Path:
    """Discard ``path`` and everything below it, then recreate it empty."""

    path = Path(path)
    _ensure_removed(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def write_pickle(path: Path, obj: Any) -> Path:
    return _write_atomic(path, pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL))


def read_pickle(path: Path) -> Any:
    path = Path(path)
    if not path.exists():
        raise ArtifactError(f"missing artifact: {path}")
    with path.open("rb") as handle:
        return pickle.load(handle)


def write_text(path: Path, text: str) -> Path:
    return _write_atomic(path, text.encode("utf-8"))


def write_json(path: Path, payload: Mapping[str, Any]) -> Path:
    return _write_atomic(path, json.dumps(payload, indent=2, sort_keys=True, default=str).encode("utf-8"))


def read_json(path: Path) -> Any:
    path = Path(path)
    if not path.exists():
        raise ArtifactError(f"missing artifact: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


__all__ = [
    "ArtifactError",
    "now_utc",
    "read_json",
    "read_pickle",
    "reset_directory",
    "write_json",
    "write_pickle",
    "write_text",
]
