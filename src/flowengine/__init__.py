"""flowengine: pluggable orchestration core for repeated-split ML workflows."""

from .config import ControlConfig, complete_control_with_defaults, load_control
from .engines import EngineRegistry, create_registry, get_default_registry, use_registry
from .orchestration import continue_workflow, prepare_resume, resume, run_workflow

__version__ = "0.1.0"

__all__ = [
    "ControlConfig",
    "EngineRegistry",
    "complete_control_with_defaults",
    "continue_workflow",
    "create_registry",
    "get_default_registry",
    "load_control",
    "prepare_resume",
    "resume",
    "run_workflow",
    "use_registry",
]
