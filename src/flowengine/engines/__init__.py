"""Engine registry, role contracts and standardised outputs."""

from .outputs import ExecutionResult, initialize_output_execution, initialize_output_split
from .registry import (
    DEFAULT_REGISTRY,
    EngineBundle,
    EngineRegistry,
    create_registry,
    current_registry,
    get_default_registry,
    use_registry,
)
from .validation import ROLE_CONTRACTS, validate_engine

__all__ = [
    "DEFAULT_REGISTRY",
    "EngineBundle",
    "EngineRegistry",
    "ExecutionResult",
    "ROLE_CONTRACTS",
    "create_registry",
    "current_registry",
    "get_default_registry",
    "initialize_output_execution",
    "initialize_output_split",
    "use_registry",
    "validate_engine",
]
