"""Artifact resolution result types."""

from dataclasses import dataclass, field
from enum import Flag
from typing import FrozenSet, Optional

from stack_runner.storage.base import ArtifactKind


class InputFileSource(Flag):
    """Where a resolved artifact lives. Values combine, e.g. FILE | OVERSIZE."""
    NONE = 0
    FILE = 1
    STRING = 2
    S3 = 4
    USE_PREVIOUS_TEMPLATE = 8
    OVERSIZE = 16


# Input name recorded for artifacts passed as raw text
RAW_STRING_NAME = "RawString"


@dataclass(frozen=True)
class ResolvedArtifact:
    """A template or policy document after its location has been resolved.
    
    ``content`` is the document text wherever it came from, kept so that it
    can be parsed. ``body`` is what may be sent inline to the control plane
    and is None once the artifact lives in S3 or is the previous template.
    """
    source: InputFileSource
    content: Optional[str] = None
    url: Optional[str] = None
    input_name: Optional[str] = None
    kind: Optional[ArtifactKind] = None
    no_echo_parameters: FrozenSet[str] = field(default_factory=frozenset)
    
    @property
    def body(self) -> Optional[str]:
        """Content to pass inline, or None if the artifact must be referenced another way."""
        if self.source & (InputFileSource.S3 | InputFileSource.USE_PREVIOUS_TEMPLATE):
            return None
        return self.content
    
    @property
    def is_oversize(self) -> bool:
        """Check whether the artifact must be staged in S3 before use."""
        return bool(self.source & InputFileSource.OVERSIZE)
    
    @property
    def is_previous_template(self) -> bool:
        """Check whether the artifact is the template already deployed with the stack."""
        return bool(self.source & InputFileSource.USE_PREVIOUS_TEMPLATE)
