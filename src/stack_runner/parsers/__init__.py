"""Parsers for templates and input files."""

from stack_runner.parsers.template import (
    TemplateParser,
    TemplateParameter,
    TemplateResource,
    TemplateParseError,
    NESTED_STACK_PAD_WIDTH,
)
from stack_runner.parsers.inputs import (
    InputFileError,
    parse_parameter_file,
    parse_resource_import_file,
)

__all__ = [
    'TemplateParser',
    'TemplateParameter',
    'TemplateResource',
    'TemplateParseError',
    'NESTED_STACK_PAD_WIDTH',
    'InputFileError',
    'parse_parameter_file',
    'parse_resource_import_file',
]
