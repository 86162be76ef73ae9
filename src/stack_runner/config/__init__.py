"""Configuration management for stack operations."""

from .models import StackConfig, DEFAULT_NO_CHANGE_MESSAGES
from .parser import ConfigValidationError, build_stack_config, load_stack_config

__all__ = [
    "StackConfig",
    "DEFAULT_NO_CHANGE_MESSAGES",
    "ConfigValidationError",
    "build_stack_config",
    "load_stack_config",
]
