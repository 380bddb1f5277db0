"""Core primitives shared by every flowengine subsystem."""

from .exceptions import (
    BatchJobError,
    ConfigError,
    EngineNotFound,
    EngineValidationError,
    FlowEngineError,
    PreconditionError,
    ResumeValidationError,
)
from .logging import configure_logging, get_logger, get_run_id, set_run_id

__all__ = [
    "BatchJobError",
    "ConfigError",
    "EngineNotFound",
    "EngineValidationError",
    "FlowEngineError",
    "PreconditionError",
    "ResumeValidationError",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "set_run_id",
]
