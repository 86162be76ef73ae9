"""Template document parser.

Reads JSON or YAML templates into plain structures so callers never branch
on serialization format. Short form intrinsic functions (``!Ref``,
``!GetAtt``, ``!Sub`` ...) are loaded as their long form mappings.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

from stack_runner.state.models import NESTED_STACK_TYPE

# Padding added to nested stack names to approximate the suffix the control plane appends
NESTED_STACK_PAD_WIDTH = 14


class TemplateParseError(ValueError):
    """Raised when template text is neither valid JSON nor valid YAML."""


class _TemplateLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation short form tags."""


def _construct_intrinsic(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Dict[str, Any]:
    if tag_suffix == 'Ref':
        name = 'Ref'
    else:
        name = f'Fn::{tag_suffix}'

    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        if tag_suffix == 'GetAtt' and isinstance(value, str):
            value = value.split('.', 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    return {name: value}


_TemplateLoader.add_multi_constructor('!', _construct_intrinsic)


@dataclass
class TemplateParameter:
    """A parameter declared by a template."""
    name: str
    type: str = 'String'
    default: Optional[str] = None
    description: Optional[str] = None
    no_echo: bool = False


@dataclass
class TemplateResource:
    """A resource declared by a template."""
    logical_id: str
    type: str

    @property
    def is_nested_stack(self) -> bool:
        """Check whether the resource is a nested stack."""
        return self.type == NESTED_STACK_TYPE


class TemplateParser:
    """Extracts parameters, resources and description from a template."""

    def __init__(self, document: Dict[str, Any]):
        """Initialize the parser with an already-loaded template document.

        Args:
            document: Template as a mapping
        """
        self.document = document or {}

    @classmethod
    def from_string(cls, template_body: str) -> 'TemplateParser':
        """Parse template text in either JSON or YAML.

        Args:
            template_body: Template text

        Returns:
            Parser over the template

        Raises:
            TemplateParseError: If the text cannot be parsed as a mapping
        """
        if template_body is None or not template_body.strip():
            raise TemplateParseError("Template is empty")

        text = template_body.strip()

        if text.startswith('{'):
            try:
                document = json.loads(text)
            except json.JSONDecodeError as e:
                raise TemplateParseError(f"Failed to parse JSON template: {e}")
        else:
            try:
                document = yaml.load(text, Loader=_TemplateLoader)
            except yaml.YAMLError as e:
                raise TemplateParseError(f"Failed to parse YAML template: {e}")

        if not isinstance(document, dict):
            raise TemplateParseError("Template must be a mapping at its top level")

        return cls(document)

    def get_description(self) -> Optional[str]:
        """Get the template's Description, if any."""
        description = self.document.get('Description')
        return str(description) if description is not None else None

    def get_parameters(self) -> List[TemplateParameter]:
        """Get the parameters declared by the template."""
        parameters = []

        for name, definition in (self.document.get('Parameters') or {}).items():
            definition = definition or {}
            default = definition.get('Default')
            parameters.append(
                TemplateParameter(
                    name=name,
                    type=definition.get('Type', 'String'),
                    default=str(default) if default is not None else None,
                    description=definition.get('Description'),
                    no_echo=str(definition.get('NoEcho', 'false')).lower() == 'true'
                )
            )

        return parameters

    def get_resources(self) -> List[TemplateResource]:
        """Get the resources declared by the template."""
        return [
            TemplateResource(logical_id=name, type=(definition or {}).get('Type', ''))
            for name, definition in (self.document.get('Resources') or {}).items()
        ]

    def get_nested_stack_names(self, base_stack_name: Optional[str] = None) -> List[str]:
        """Get names of the template's nested stacks.

        Args:
            base_stack_name: If given, names are estimated as they would appear
                on the control plane: ``<base>-<logical id>`` plus padding for
                the generated suffix.

        Returns:
            Nested stack names
        """
        names = []

        for resource in self.get_resources():
            if not resource.is_nested_stack:
                continue
            if base_stack_name:
                names.append(f"{base_stack_name}-{resource.logical_id}" + ' ' * NESTED_STACK_PAD_WIDTH)
            else:
                names.append(resource.logical_id)

        return names

    def get_logical_resource_names(self, stack_name: str) -> List[str]:
        """Get every name that may appear in the resource column of a stack event listing."""
        names = [stack_name]

        for resource in self.get_resources():
            if resource.is_nested_stack:
                names.append(f"{stack_name}-{resource.logical_id}" + ' ' * NESTED_STACK_PAD_WIDTH)
            else:
                names.append(resource.logical_id)

        return names
