"""Configuration loading utilities.

Responsibility: loads, validates and completes control configurations with
override support and schema validation using Pydantic.
"""

from .loader import complete_control_with_defaults, load_control, merge_with_defaults, save_control
from .schema import ControlConfig

__all__ = [
    "ControlConfig",
    "complete_control_with_defaults",
    "load_control",
    "merge_with_defaults",
    "save_control",
]
