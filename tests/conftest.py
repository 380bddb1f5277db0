import logging
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from flowengine.config.loader import complete_control_with_defaults  # noqa: E402
from flowengine.core.artifacts import read_json  # noqa: E402
from flowengine.engines.registry import create_registry  # noqa: E402
from flowengine.execution.batch import run_job  # noqa: E402
from flowengine.utils.datasets import make_credit_dataset  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slurm: tests that drive the slurm backends against a faked sbatch")
    config.addinivalue_line("markers", "multicore: tests that fork worker processes")


@pytest.fixture(autouse=True)
def isolated_workdir(tmp_path, monkeypatch):
    """Run every test inside its own directory so relative registries and handoffs stay local."""
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield tmp_path
    # run_workflow reconfigures the root logger
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("flowengine").setLevel(logging.NOTSET)


@pytest.fixture(scope="session")
def builtin_registry():
    return create_registry("tests")


@pytest.fixture
def registry():
    """A private registry with the built-ins, safe to mutate."""
    return create_registry("scratch")


@pytest.fixture
def credit_frame():
    frame, vars_payload = make_credit_dataset(n_rows=240, seed=7)
    return frame, vars_payload


@pytest.fixture
def control(credit_frame):
    frame, vars_payload = credit_frame
    payload = {
        "settings": {"log": False},
        "data": {"full": frame, "vars": vars_payload},
    }
    return complete_control_with_defaults(payload)


@pytest.fixture
def fake_sbatch(monkeypatch):
    """Replace ``sbatch`` with an in-process scheduler that runs every array task immediately."""

    submitted = []

    def _run(cmd, **kwargs):
        script = Path(cmd[-1])
        submitted.append(script)
        metadata = read_json(script.parent / "registry.json")
        for index in range(len(metadata["split_keys"])):
            try:
                run_job(script.parent, index)
            except Exception:
                # the task's error file is what the poller sees
                continue
        return subprocess.CompletedProcess(cmd, 0, stdout="12345\n", stderr="")

    monkeypatch.setattr("flowengine.execution.slurm.subprocess.run", _run)
    return submitted
