"""Blob storage for artifacts staged outside the control plane API."""

from stack_runner.storage.base import ArtifactKind, ArtifactStore
from stack_runner.storage.s3 import S3ArtifactStore

__all__ = [
    'ArtifactKind',
    'ArtifactStore',
    'S3ArtifactStore',
]
