"""Pydantic models for stack configuration."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Reasons the control plane gives when a changeset holds no changes
DEFAULT_NO_CHANGE_MESSAGES = [
    "The submitted information didn't contain changes",
    "No updates are to be performed",
]

VALID_CAPABILITIES = {
    "CAPABILITY_IAM",
    "CAPABILITY_NAMED_IAM",
    "CAPABILITY_AUTO_EXPAND",
}

VALID_ON_FAILURE = {"DO_NOTHING", "ROLLBACK", "DELETE"}


class StackConfig(BaseModel):
    """Everything needed to operate on one named stack.

    Immutable once constructed. Only ``stack_name`` is always required;
    create and update additionally require ``template_location`` unless
    ``use_previous_template`` is set for an update.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    stack_name: str = Field(
        ..., pattern="^[A-Za-z][A-Za-z0-9-]{0,127}$", description="Name of the stack"
    )
    template_location: Optional[str] = Field(
        None, description="Template as raw text, a local path, or an S3 URL"
    )
    parameters: Dict[str, str] = Field(
        default_factory=dict, description="Stack parameter values keyed by name"
    )
    capabilities: List[str] = Field(
        default_factory=list, description="Capabilities acknowledged for the template"
    )
    tags: Dict[str, str] = Field(default_factory=dict, description="Stack level tags")
    role_arn: Optional[str] = Field(
        None, pattern="^arn:", description="Service role CloudFormation assumes"
    )
    client_token: Optional[str] = Field(
        None, max_length=128, description="Idempotency token passed on mutating calls"
    )
    notification_arns: List[str] = Field(
        default_factory=list, max_length=5, description="SNS topics receiving stack events"
    )
    rollback_configuration: Optional[Dict[str, Any]] = Field(
        None, description="Rollback triggers and monitoring time, in API shape"
    )
    stack_policy_location: Optional[str] = Field(
        None, description="Stack policy as raw text, a local path, or an S3 URL"
    )
    stack_policy_during_update_location: Optional[str] = Field(
        None, description="Temporary stack policy applied for the duration of an update"
    )
    resource_types: List[str] = Field(
        default_factory=list, description="Resource types the operation may work with"
    )
    termination_protection: bool = Field(
        False, description="Enable termination protection on create"
    )
    timeout_in_minutes: Optional[int] = Field(
        None, gt=0, description="Minutes before a create fails"
    )
    on_failure: Optional[str] = Field(None, description="Action when a create fails")
    disable_rollback: bool = Field(False, description="Leave resources in place when a create fails")
    retain_resources: List[str] = Field(
        default_factory=list,
        description="Logical IDs to retain when deleting a stack in DELETE_FAILED state"
    )
    resources_to_import: Optional[str] = Field(
        None, description="Location of a resource import file. Turns an update into an import."
    )
    use_previous_template: bool = Field(
        False, description="Update with the template already deployed with the stack"
    )
    force_s3: bool = Field(
        False, description="Stage the template in S3 even when it is small enough to send inline"
    )
    include_nested_stacks: bool = Field(
        False, description="Create changesets for nested stacks and show their changes"
    )
    follow_operation: bool = Field(
        False, description="Wait for the operation to complete, relaying stack events"
    )
    wait_for_in_progress_update: bool = Field(
        False, description="On update, wait out another operation already in progress"
    )
    changeset_only: bool = Field(
        False, description="On update, create and show the changeset without applying it"
    )
    delete_noop_changeset: bool = Field(
        True, description="Delete changesets that contain no changes"
    )
    changeset_prefix: str = Field(
        "stack-runner", pattern="^[A-Za-z][A-Za-z0-9-]{0,100}$",
        description="Prefix of generated changeset names"
    )
    poll_interval: float = Field(
        5.0, ge=0, description="Seconds between polls of a stack or changeset"
    )
    no_change_messages: List[str] = Field(
        default_factory=lambda: list(DEFAULT_NO_CHANGE_MESSAGES),
        description="Changeset status reasons that mean there was nothing to change"
    )

    @field_validator("capabilities")
    @classmethod
    def validate_capabilities(cls, v: List[str]) -> List[str]:
        """Validate capability names."""
        for capability in v:
            if capability not in VALID_CAPABILITIES:
                raise ValueError(
                    f"Invalid capability: {capability}. Must be one of: {', '.join(sorted(VALID_CAPABILITIES))}"
                )
        return v

    @field_validator("on_failure")
    @classmethod
    def validate_on_failure(cls, v: Optional[str]) -> Optional[str]:
        """Validate the on-failure action."""
        if v is not None and v not in VALID_ON_FAILURE:
            raise ValueError(
                f"Invalid on_failure: {v}. Must be one of: {', '.join(sorted(VALID_ON_FAILURE))}"
            )
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate tag keys and values."""
        if len(v) > 50:
            raise ValueError("A stack can have at most 50 tags")
        for key, value in v.items():
            if not key:
                raise ValueError("Tag key must be a non-empty string")
            if len(key) > 128:
                raise ValueError(f"Tag key exceeds 128 characters: {key}")
            if len(value) > 256:
                raise ValueError(f"Tag value exceeds 256 characters for key '{key}'")
        return v

    @model_validator(mode="after")
    def validate_failure_handling(self):
        """DisableRollback and OnFailure are mutually exclusive."""
        if self.disable_rollback and self.on_failure:
            raise ValueError("Cannot set both disable_rollback and on_failure")
        return self

    def tags_as_list(self) -> List[Dict[str, str]]:
        """Tags in the Key/Value list shape the API expects."""
        return [{"Key": k, "Value": v} for k, v in self.tags.items()]
