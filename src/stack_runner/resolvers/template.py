"""Template and stack policy resolvers."""

import json
from typing import Optional

from stack_runner.resolvers.base import ArtifactResolver
from stack_runner.resolvers.models import InputFileSource, ResolvedArtifact
from stack_runner.storage.base import ArtifactKind, ArtifactStore
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)


class TemplateResolver(ArtifactResolver):
    """Resolves stack templates, including the template already deployed with a stack."""

    kind = ArtifactKind.TEMPLATE

    # Largest TemplateBody the control plane accepts inline
    max_size = 51200

    def __init__(
        self,
        cloudformation_client=None,
        stack_name: Optional[str] = None,
        use_previous_template: bool = False,
        artifact_store: Optional[ArtifactStore] = None,
        force_s3: bool = False
    ):
        """Initialize the template resolver.

        Args:
            cloudformation_client: boto3 CloudFormation client, needed to reuse the previous template
            stack_name: Stack whose deployed template is reused
            use_previous_template: Resolve the template deployed with the stack instead of the location
            artifact_store: Blob store for S3 locations and oversize templates
            force_s3: Stage every local template in S3 regardless of size
        """
        super().__init__(artifact_store=artifact_store, force_s3=force_s3)
        self.client = cloudformation_client
        self.stack_name = stack_name
        self.use_previous_template = use_previous_template

    def resolve(self, location: Optional[str]) -> Optional[ResolvedArtifact]:
        """Resolve a template location, or fetch the deployed template in previous-template mode."""
        if self.use_previous_template:
            return self.resolve_previous()

        return super().resolve(location)

    def resolve_previous(self) -> ResolvedArtifact:
        """Fetch the template currently deployed with the stack.

        Also records which of its parameters are NoEcho so that their values
        are never redisplayed.

        Returns:
            Artifact sourced as USE_PREVIOUS_TEMPLATE
        """
        if self.client is None or not self.stack_name:
            raise ValueError("A CloudFormation client and stack name are required to reuse the previous template")

        response = self.client.get_template(StackName=self.stack_name, TemplateStage='Original')
        body = response.get('TemplateBody')

        # boto3 hands back JSON templates already decoded
        if not isinstance(body, str):
            body = json.dumps(body, indent=2)

        summary = self.client.get_template_summary(StackName=self.stack_name)
        no_echo = frozenset(
            p['ParameterKey'] for p in summary.get('Parameters', []) if p.get('NoEcho')
        )

        logger.debug(f"Using template deployed with {self.stack_name}")

        return ResolvedArtifact(
            source=InputFileSource.USE_PREVIOUS_TEMPLATE,
            content=body,
            input_name=self.stack_name,
            kind=self.kind,
            no_echo_parameters=no_echo
        )


class StackPolicyResolver(ArtifactResolver):
    """Resolves stack policy documents."""

    kind = ArtifactKind.POLICY

    # Largest StackPolicyBody the control plane accepts inline
    max_size = 16384
