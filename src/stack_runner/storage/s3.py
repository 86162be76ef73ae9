"""S3-backed artifact store."""

from typing import Optional
from urllib.parse import quote

from botocore.exceptions import ClientError

from stack_runner.storage.base import ArtifactKind, ArtifactStore
from stack_runner.utils.errors import MissingCollaboratorError
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)


class S3ArtifactStore(ArtifactStore):
    """Stages artifacts in a single bucket with keys derived from the stack name."""
    
    def __init__(self, s3_client, bucket_name: Optional[str] = None, key_prefix: Optional[str] = None):
        """Initialize the store.
        
        Args:
            s3_client: boto3 S3 client
            bucket_name: Bucket to upload oversize artifacts to. Without one, the store can only fetch.
            key_prefix: Optional prefix prepended to every uploaded key
        """
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.key_prefix = key_prefix.strip('/') + '/' if key_prefix else ''
    
    def make_key(self, stack_name: str, original_name: str, kind: ArtifactKind) -> str:
        """Build the object key for an artifact."""
        return f"{self.key_prefix}{stack_name}_{kind.value}_{original_name}"
    
    def upload(self, stack_name: str, body: str, original_name: str, kind: ArtifactKind) -> str:
        """Upload oversize content to the bucket.
        
        Args:
            stack_name: Name of the stack
            body: Content to upload
            original_name: Base name of the original input
            kind: Template or policy
            
        Returns:
            Virtual host style HTTPS URL of the object
        """
        if not self.bucket_name:
            raise MissingCollaboratorError(
                f"Unable to upload oversize {kind.value} to S3. No artifact bucket has been configured."
            )
        
        if body is None:
            raise ValueError("Cannot upload an artifact with no content")
        
        key = self.make_key(stack_name, original_name, kind)
        url = f"https://{self.bucket_name}.s3.amazonaws.com/{quote(key)}"
        
        logger.info(f"Copying oversize {kind.value} to {url}")
        
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=body.encode('utf-8')
        )
        
        return url
    
    def fetch(self, bucket: str, key: str) -> str:
        """Get the content of an S3 object as UTF-8 text."""
        logger.debug(f"Fetching s3://{bucket}/{key}")
        
        try:
            response = self.s3_client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            logger.error(f"Unable to read s3://{bucket}/{key}: {e}")
            raise
        
        return response['Body'].read().decode('utf-8')
