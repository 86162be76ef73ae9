"""Blob store contract used to stage artifacts too large to send inline."""

from abc import ABC, abstractmethod
from enum import Enum


class ArtifactKind(Enum):
    """Kind of artifact being staged."""
    TEMPLATE = "template"
    POLICY = "policy"


class ArtifactStore(ABC):
    """Uploads oversize artifacts and fetches artifacts located in S3."""
    
    @abstractmethod
    def upload(self, stack_name: str, body: str, original_name: str, kind: ArtifactKind) -> str:
        """Upload oversize content.
        
        Args:
            stack_name: Name of the stack, used to form part of the key
            body: Content to upload
            original_name: Base name of the original input, or "RawString"
            kind: Whether the content is a template or a policy
            
        Returns:
            HTTPS URL of the uploaded object
        """
        pass
    
    @abstractmethod
    def fetch(self, bucket: str, key: str) -> str:
        """Get the content of an object.
        
        Args:
            bucket: Bucket name
            key: Object key
            
        Returns:
            Object content as text
        """
        pass
