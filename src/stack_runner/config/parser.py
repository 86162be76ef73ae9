"""YAML stack definition loader."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from stack_runner.config.models import StackConfig
from stack_runner.parsers.inputs import InputFileError, parse_parameter_file

# Keys in a stack definition naming files relative to the definition itself
PATH_KEYS = (
    "template_location",
    "stack_policy_location",
    "stack_policy_during_update_location",
    "resources_to_import",
)


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


def build_stack_config(
    values: Dict[str, Any],
    parameter_file: Optional[str] = None
) -> StackConfig:
    """Validate raw values into a StackConfig.

    Args:
        values: Field values. ``None`` values are dropped so that defaults apply.
        parameter_file: Optional path to a parameter file. Inline parameters win
            over values read from the file.

    Returns:
        Validated configuration

    Raises:
        ConfigValidationError: If the values or parameter file are invalid
    """
    values = {k: v for k, v in values.items() if v is not None}

    if parameter_file:
        try:
            file_parameters = parse_parameter_file(Path(parameter_file).read_text(encoding="utf-8"))
        except (OSError, InputFileError) as e:
            raise ConfigValidationError(f"Failed to read parameter file {parameter_file}: {e}")

        values["parameters"] = {**file_parameters, **(values.get("parameters") or {})}

    try:
        return StackConfig(**values)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Stack configuration validation failed with {e.error_count()} error(s)",
            [{"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()],
        )


def load_stack_config(config_path: str, overrides: Optional[Dict[str, Any]] = None) -> StackConfig:
    """Load a stack definition from a YAML file.

    Relative paths in the definition are taken relative to the file, and
    ``parameter_file`` may name a parameter file to merge in.

    Args:
        config_path: Path to the stack definition
        overrides: Values that replace those read from the file

    Returns:
        Validated configuration

    Raises:
        ConfigValidationError: If the definition is invalid
        FileNotFoundError: If the definition does not exist
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse YAML: {e}")

    if not isinstance(data, dict):
        raise ConfigValidationError("Stack definition must be a mapping")

    base_dir = path.parent

    for key in PATH_KEYS:
        value = data.get(key)
        if isinstance(value, str) and "\n" not in value and (base_dir / value).is_file():
            data[key] = str(base_dir / value)

    parameter_file = data.pop("parameter_file", None)
    if parameter_file:
        parameter_file = str(base_dir / parameter_file)

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key in ("parameters", "tags") and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value

    return build_stack_config(data, parameter_file=parameter_file)
