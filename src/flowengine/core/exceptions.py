"""Common exception hierarchy used across flowengine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class FlowEngineError(RuntimeError):
    message: str
    code: str = "flowengine_error"
    metadata: Dict[str, Any] = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.metadata is None:
            self.metadata = {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "metadata": self.metadata}


@dataclass
class EngineValidationError(FlowEngineError):
    """Raised when an engine bundle violates its role contract."""

    code: str = "engine_validation_error"


@dataclass
class EngineNotFound(FlowEngineError, KeyError):
    """Raised when a registry key has no binding."""

    code: str = "engine_not_found"

    def __str__(self) -> str:
        return self.message


@dataclass
class PreconditionError(FlowEngineError):
    """Raised when a call is made with inputs it cannot work with."""

    code: str = "precondition_error"


@dataclass
class BatchJobError(FlowEngineError):
    """Raised when one or more jobs of a parallel batch failed."""

    code: str = "batch_job_error"


@dataclass
class ResumeValidationError(FlowEngineError):
    """Raised when a resume object is missing required fields."""

    code: str = "resume_validation_error"


@dataclass
class ConfigError(FlowEngineError):
    """Raised when a control configuration cannot be completed."""

    code: str = "config_error"
