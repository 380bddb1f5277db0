"""
Test suite for flowengine.

Run all tests:
    pytest tests/ -v

Run specific test suites:
    pytest tests/test_batch.py -v         # batch-parallel execution
    pytest tests/test_adaptive.py -v      # adaptive execution
    pytest tests/test_handoff_resume.py   # slurm-array handoff and resume

Run with markers:
    pytest -m "not multicore" -v   # skip tests that fork workers
    pytest -m slurm -v             # slurm backends against a faked sbatch
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
