"""Resolution of template and policy artifacts."""

from stack_runner.resolvers.models import InputFileSource, ResolvedArtifact, RAW_STRING_NAME
from stack_runner.resolvers.base import ArtifactResolver
from stack_runner.resolvers.template import TemplateResolver, StackPolicyResolver

__all__ = [
    'InputFileSource',
    'ResolvedArtifact',
    'RAW_STRING_NAME',
    'ArtifactResolver',
    'TemplateResolver',
    'StackPolicyResolver',
]
