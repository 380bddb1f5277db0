"""
Batch-parallel execution through the job registry.
"""

import subprocess
from pathlib import Path

import pytest

from flowengine.config.loader import merge_with_defaults
from flowengine.core.artifacts import read_json
from flowengine.core.exceptions import BatchJobError, PreconditionError
from flowengine.engines.registry import get_default_registry
from flowengine.execution import batch
from flowengine.execution.batch import JobRegistry, ResourceSpec, registry_dir_for, run_batch


@pytest.fixture
def cv_setup(control):
    control.split_method = "split_cv"
    control.params.split.params = {"cv_folds": 3}
    registry = get_default_registry()
    split_output = registry["split_cv"](control)
    return control, split_output, registry


def test_resource_spec_defaults_and_validation():
    spec = ResourceSpec()
    assert (spec.ncpus, spec.memory, spec.walltime) == (1, 2048, 3600)
    assert ResourceSpec(walltime="02:00:00").walltime == 7200
    with pytest.raises(ValueError):
        ResourceSpec(ncpus=0)
    with pytest.raises(ValueError):
        ResourceSpec(memory=-1)


def test_registry_dir_defaults_to_seed_folder():
    assert registry_dir_for({"registry_folder": None, "seed": 7}) == Path("batch_registry") / "seed_7"
    assert registry_dir_for({"registry_folder": "custom/reg", "seed": 7}) == Path("custom/reg")


def test_local_batch_matches_split_order(cv_setup):
    control, split_output, registry = cv_setup
    control.params.execution.params = {"seed": 5}
    result = registry["execution_basic_batch_local"](control, split_output)

    assert result.execution_type == "basic_batch_local"
    assert list(result.workflow_results) == ["fold1", "fold2", "fold3"]
    assert result.specific_output["backend"] == "local"
    assert result.specific_output["n_splits"] == 3

    registry_dir = Path(result.specific_output["registry"])
    assert registry_dir == Path("batch_registry") / "seed_5"
    metadata = read_json(registry_dir / "registry.json")
    assert metadata["split_keys"] == ["fold1", "fold2", "fold3"]
    assert metadata["backend"] == "local"
    assert sorted(p.name for p in (registry_dir / "jobs").iterdir()) == ["0.pkl", "1.pkl", "2.pkl"]


def test_batch_results_equal_sequential(cv_setup):
    control, split_output, registry = cv_setup
    sequential = registry["execution_basic_sequential"](control, split_output)
    local = registry["execution_basic_batch_local"](control, split_output)
    for key in split_output["splits"]:
        assert (
            local.workflow_results[key]["output_eval"]["eval_mse"]["metrics"]["mse"]
            == pytest.approx(sequential.workflow_results[key]["output_eval"]["eval_mse"]["metrics"]["mse"])
        )


def test_registry_is_wiped_between_calls(cv_setup, tmp_path):
    control, split_output, registry = cv_setup
    folder = tmp_path / "reg"
    control.params.execution.params = {"registry_folder": str(folder)}
    registry["execution_basic_batch_local"](control, split_output)
    (folder / "leftover.txt").write_text("stale")
    registry["execution_basic_batch_local"](control, split_output)
    assert not (folder / "leftover.txt").exists()
    assert (folder / "registry.json").exists()


def test_refuses_to_wipe_foreign_folder(cv_setup, tmp_path):
    control, split_output, registry = cv_setup
    folder = tmp_path / "notes"
    folder.mkdir()
    (folder / "thesis.txt").write_text("keep me")
    control.params.execution.params = {"registry_folder": str(folder)}
    with pytest.raises(PreconditionError, match="Refusing to wipe"):
        registry["execution_basic_batch_local"](control, split_output)
    assert (folder / "thesis.txt").read_text() == "keep me"


def test_empty_folder_is_used_as_registry(tmp_path):
    folder = tmp_path / "empty"
    folder.mkdir()
    JobRegistry(folder).reset({"split_keys": []})
    assert read_json(folder / "registry.json") == {"split_keys": []}


def test_failed_job_fails_whole_batch(cv_setup, tmp_path):
    control, split_output, _ = cv_setup
    control.params.train.formula = "default ~ missing_column"
    with pytest.raises(BatchJobError) as excinfo:
        run_batch(
            control,
            split_output["splits"],
            backend="local",
            params={"seed": 1},
            registry_dir=tmp_path / "failing",
        )
    assert set(excinfo.value.metadata["failed"]) == {"fold1", "fold2", "fold3"}
    error = read_json(tmp_path / "failing" / "errors" / "0.json")
    assert "missing_column" in error["error"]
    assert "Traceback" in error["traceback"]


def test_collect_reports_missing_results(tmp_path):
    registry = JobRegistry(tmp_path / "reg")
    registry.reset({"seed": 1, "split_keys": ["a", "b"]})
    with pytest.raises(BatchJobError) as excinfo:
        registry.collect(["a", "b"])
    assert excinfo.value.metadata["failed"] == {"a": "no result was produced", "b": "no result was produced"}


def test_unknown_backend(cv_setup, tmp_path):
    control, split_output, _ = cv_setup
    with pytest.raises(PreconditionError, match="Unknown batch backend"):
        run_batch(control, split_output["splits"], backend="cloud", params={}, registry_dir=tmp_path / "x")


def test_multicore_worker_count_comes_from_resources(monkeypatch):
    monkeypatch.setattr(batch, "fork_available", lambda: True)
    params = merge_with_defaults({"resources": {"ncpus": 3}}, batch.default_params_execution_basic_batch_multicore())
    backend = batch.make_backend("multicore", params, ResourceSpec.model_validate(params["resources"]))
    assert backend.ncpus == 3
    assert "ncpus" not in params


def test_multicore_without_fork_is_rejected(cv_setup, monkeypatch):
    control, split_output, registry = cv_setup
    monkeypatch.setattr(batch, "fork_available", lambda: False)
    with pytest.raises(PreconditionError, match="execution_basic_batch_local"):
        registry["execution_basic_batch_multicore"](control, split_output)


@pytest.mark.multicore
@pytest.mark.skipif(not batch.fork_available(), reason="fork start method unavailable")
def test_multicore_batch(cv_setup):
    control, split_output, registry = cv_setup
    control.params.execution.params = {"resources": {"ncpus": 2}}
    result = registry["execution_basic_batch_multicore"](control, split_output)
    assert result.execution_type == "basic_batch_multicore"
    assert list(result.workflow_results) == ["fold1", "fold2", "fold3"]
    assert result.specific_output["backend"] == "multicore"


@pytest.mark.slurm
def test_slurm_batch_with_fake_sbatch(cv_setup, fake_sbatch):
    control, split_output, registry = cv_setup
    control.params.execution.params = {
        "poll_interval": 0,
        "resources": {"ncpus": 2, "memory": 4096, "walltime": 600, "partition": "short", "modules": ["python/3.11"]},
    }
    result = registry["execution_basic_batch_slurm"](control, split_output)

    assert list(result.workflow_results) == ["fold1", "fold2", "fold3"]
    assert result.specific_output["backend"] == "slurm"
    script = fake_sbatch[0].read_text()
    assert "#SBATCH --array=0-2" in script
    assert "#SBATCH --mem=4096M" in script
    assert "#SBATCH --time=00:10:00" in script
    assert "#SBATCH --cpus-per-task=2" in script
    assert "#SBATCH --partition=short" in script
    assert "module load python/3.11" in script
    assert "flowengine.cli.main run-job" in script
    assert '"$SLURM_ARRAY_TASK_ID"' in script


@pytest.mark.slurm
def test_slurm_poll_timeout(cv_setup, monkeypatch, tmp_path):
    control, split_output, _ = cv_setup

    def _submit_only(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout="999\n", stderr="")

    monkeypatch.setattr("flowengine.execution.slurm.subprocess.run", _submit_only)
    with pytest.raises(BatchJobError, match="Timed out"):
        run_batch(
            control,
            split_output["splits"],
            backend="slurm",
            params={"poll_interval": 0, "poll_timeout": 0},
            registry_dir=tmp_path / "slow",
        )


def test_sbatch_missing_is_a_precondition_error(cv_setup, monkeypatch, tmp_path):
    control, split_output, _ = cv_setup

    def _missing(cmd, **kwargs):
        raise FileNotFoundError("sbatch")

    monkeypatch.setattr("flowengine.execution.slurm.subprocess.run", _missing)
    with pytest.raises(PreconditionError, match="sbatch"):
        run_batch(control, split_output["splits"], backend="slurm", params={}, registry_dir=tmp_path / "nosb")
