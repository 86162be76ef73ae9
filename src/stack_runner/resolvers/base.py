"""Resolution of artifact locations given as text, local paths or S3 URLs."""

import os
import re
from dataclasses import replace
from pathlib import PurePosixPath
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

from stack_runner.resolvers.models import InputFileSource, RAW_STRING_NAME, ResolvedArtifact
from stack_runner.storage.base import ArtifactKind, ArtifactStore
from stack_runner.utils.errors import InvalidLocationError, MissingCollaboratorError
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)

# Host of a path style S3 URL, e.g. s3.amazonaws.com or s3-us-east-2.amazonaws.com
PATH_STYLE_HOST = re.compile(r'^s3[.-]', re.IGNORECASE)


class ArtifactResolver:
    """Resolves where an artifact lives and whether it must be staged in S3.
    
    Input classification, in order:
    
    - empty or None: nothing to resolve
    - contains a line break: raw text
    - names an existing local file: file
    - absolute URI: S3 object (https path style, https virtual host style, or s3://)
    - anything else: raw text
    
    File and text artifacts whose UTF-8 size reaches ``max_size`` (or all of
    them if ``force_s3`` is set) are flagged OVERSIZE and must go through
    :meth:`promote_if_oversize` before use.
    """
    
    kind: Optional[ArtifactKind] = None
    max_size: Optional[int] = None
    
    def __init__(self, artifact_store: Optional[ArtifactStore] = None, force_s3: bool = False):
        """Initialize the resolver.
        
        Args:
            artifact_store: Blob store used for S3 locations and oversize artifacts
            force_s3: Flag every file or text artifact as oversize regardless of its size
        """
        self.artifact_store = artifact_store
        self.force_s3 = force_s3
    
    def resolve(self, location: Optional[str]) -> Optional[ResolvedArtifact]:
        """Resolve an artifact location.
        
        Args:
            location: Raw text, path to a local file, or S3 URL
            
        Returns:
            The resolved artifact, or None if no location was given
            
        Raises:
            InvalidLocationError: If the location is a malformed or unsupported URI
            MissingCollaboratorError: If the location is in S3 and no artifact store is configured
        """
        if not location:
            return None
        
        if '\r' in location or '\n' in location:
            return self._from_string(location)
        
        if os.path.isfile(location):
            return self._from_file(location)
        
        if self._looks_like_uri(location):
            return self._from_uri(location)
        
        return self._from_string(location)
    
    def promote_if_oversize(self, artifact: Optional[ResolvedArtifact], stack_name: str) -> Optional[ResolvedArtifact]:
        """Upload an oversize artifact to S3 and repoint the result at the uploaded object.
        
        Args:
            artifact: Result of :meth:`resolve`
            stack_name: Stack the artifact belongs to, used to build the object key
            
        Returns:
            The artifact unchanged if not oversize, else a copy sourced from S3
            
        Raises:
            MissingCollaboratorError: If no artifact store is configured
        """
        if artifact is None or not artifact.is_oversize:
            return artifact
        
        if self.artifact_store is None:
            raise MissingCollaboratorError(
                f"Unable to upload oversize {self._kind_name()} to S3. No artifact store has been provided."
            )
        
        url = self.artifact_store.upload(
            stack_name,
            artifact.content,
            artifact.input_name or RAW_STRING_NAME,
            self.kind or ArtifactKind.TEMPLATE
        )
        
        return replace(artifact, source=InputFileSource.S3, url=url)
    
    def resolve_and_promote(self, location: Optional[str], stack_name: str) -> Optional[ResolvedArtifact]:
        """Resolve a location and stage it in S3 if it is oversize."""
        return self.promote_if_oversize(self.resolve(location), stack_name)
    
    def _is_oversize(self, size: int) -> bool:
        if self.force_s3:
            return True
        return self.max_size is not None and size >= self.max_size
    
    def _from_string(self, content: str) -> ResolvedArtifact:
        source = InputFileSource.STRING
        
        if self._is_oversize(len(content.encode('utf-8'))):
            source |= InputFileSource.OVERSIZE
        
        return ResolvedArtifact(
            source=source,
            content=content,
            input_name=RAW_STRING_NAME,
            kind=self.kind
        )
    
    def _from_file(self, path: str) -> ResolvedArtifact:
        source = InputFileSource.FILE
        
        if self._is_oversize(os.path.getsize(path)):
            source |= InputFileSource.OVERSIZE
        
        with open(path, 'r', encoding='utf-8') as f:
            content = f.read()
        
        logger.debug(f"Read {self._kind_name()} from {path}")
        
        return ResolvedArtifact(
            source=source,
            content=content,
            input_name=PurePosixPath(path.replace('\\', '/')).stem,
            kind=self.kind
        )
    
    def _from_uri(self, location: str) -> ResolvedArtifact:
        bucket, key, url = self.parse_s3_location(location)
        
        if self.artifact_store is None:
            raise MissingCollaboratorError(
                f"Unable to read {self._kind_name()} from {location}. No artifact store has been provided."
            )
        
        return ResolvedArtifact(
            source=InputFileSource.S3,
            content=self.artifact_store.fetch(bucket, key),
            url=url,
            input_name=PurePosixPath(key).stem,
            kind=self.kind
        )
    
    @staticmethod
    def parse_s3_location(location: str) -> Tuple[str, str, str]:
        """Split an S3 location into bucket, key and the HTTPS URL to hand to the control plane.
        
        Args:
            location: https path style, https virtual host style, or s3:// URL
            
        Returns:
            Tuple of (bucket, key, url)
            
        Raises:
            InvalidLocationError: If the URL is malformed or its scheme is unsupported
        """
        uri = urlparse(location)
        scheme = uri.scheme.lower()
        
        if scheme == 'https':
            segments = uri.path.split('/')[1:]
            
            if PATH_STYLE_HOST.match(uri.hostname or ''):
                if len(segments) < 2 or not segments[0] or not ''.join(segments[1:]):
                    raise InvalidLocationError(
                        "'Path' style S3 URLs must have at least 3 path segments (bucketname/key)"
                    )
                
                return segments[0], unquote('/'.join(segments[1:])), location
            
            if not ''.join(segments):
                raise InvalidLocationError(
                    "'Virtual Host' style S3 URLs must have at least 1 path segment (key)"
                )
            
            return uri.hostname.split('.')[0], unquote(uri.path.lstrip('/')), location
        
        if scheme == 's3':
            bucket = uri.netloc
            key = uri.path.lstrip('/')
            
            if not bucket or not key:
                raise InvalidLocationError("S3 URLs must name both a bucket and a key (s3://bucket/key)")
            
            return bucket, key, f"https://{bucket}.s3.amazonaws.com/{key}"
        
        if scheme == 'file':
            # An existing file would have been picked up before URI parsing
            raise InvalidLocationError(f"File does not exist: {location}")
        
        raise InvalidLocationError(f"Unsupported URI scheme '{uri.scheme}'")
    
    @staticmethod
    def _looks_like_uri(location: str) -> bool:
        if any(c.isspace() for c in location):
            return False
        
        uri = urlparse(location)
        return bool(uri.scheme) and (bool(uri.netloc) or uri.scheme.lower() == 'file')
    
    def _kind_name(self) -> str:
        return self.kind.value if self.kind else 'artifact'
