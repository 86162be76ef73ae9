"""Parsers for parameter files and resource import files.

Both accept JSON or YAML holding a list of objects in the shape the
CloudFormation API uses.
"""

import json
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator


class InputFileError(ValueError):
    """Raised when a parameter or resource import file is malformed."""


class ParameterFileEntry(BaseModel):
    """One entry of a parameter file."""

    ParameterKey: str = Field(..., min_length=1)
    ParameterValue: str = ''

    @field_validator('ParameterValue', mode='before')
    @classmethod
    def stringify_value(cls, v: Any) -> str:
        """YAML reads numbers and booleans natively; the API wants text."""
        if v is None:
            return ''
        if isinstance(v, bool):
            return str(v).lower()
        if isinstance(v, list):
            return ','.join(str(item) for item in v)
        return str(v)


class ResourceToImport(BaseModel):
    """One entry of a resource import file."""

    ResourceType: str = Field(..., min_length=1)
    LogicalResourceId: str = Field(..., min_length=1)
    ResourceIdentifier: Dict[str, Any] = Field(..., min_length=1)


def _load_document(content: str, description: str) -> Any:
    if content is None or not content.strip():
        raise InputFileError(f"{description} is empty")

    text = content.strip()

    try:
        if text.startswith('[') or text.startswith('{'):
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise InputFileError(f"Failed to parse {description.lower()}: {e}")


def parse_parameter_file(content: str) -> Dict[str, str]:
    """Parse a parameter file into a name to value mapping.

    Args:
        content: JSON or YAML list of ``{ParameterKey, ParameterValue}``

    Returns:
        Parameter values keyed by name

    Raises:
        InputFileError: If the file is empty or malformed
    """
    document = _load_document(content, "Parameter file")

    if not isinstance(document, list):
        raise InputFileError("Parameter file must contain a list of ParameterKey/ParameterValue entries")

    try:
        entries = [ParameterFileEntry(**item) for item in document]
    except (TypeError, ValidationError) as e:
        raise InputFileError(f"Invalid parameter file entry: {e}")

    return {entry.ParameterKey: entry.ParameterValue for entry in entries}


def parse_resource_import_file(content: str) -> List[Dict[str, Any]]:
    """Parse a resource import file into ResourcesToImport request entries.

    Args:
        content: JSON or YAML list of ``{ResourceType, LogicalResourceId, ResourceIdentifier}``

    Returns:
        Entries ready to pass as ResourcesToImport

    Raises:
        InputFileError: If the file is empty or malformed
    """
    document = _load_document(content, "Resource import file")

    if not isinstance(document, list) or not document:
        raise InputFileError("Resource import file must contain a non-empty list of resources")

    try:
        return [ResourceToImport(**item).model_dump() for item in document]
    except (TypeError, ValidationError) as e:
        raise InputFileError(f"Invalid resource import entry: {e}")
