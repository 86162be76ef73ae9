import pytest

from conftest import resource_change
from stack_runner.orchestrator.results import StackOperationResult
from stack_runner.orchestrator.runner import StackRunner
from stack_runner.state.models import OperationalState
from stack_runner.utils.errors import (
    MissingCollaboratorError,
    NotFoundError,
    StackOperationFailedError,
    StateConflictError,
)

NESTED_WIDTH = len("test-stack-Network") + 14


# Create

def test_create_followed_to_completion(cfn, observer, make_runner):
    result = make_runner(follow_operation=True).create()

    assert result.result == StackOperationResult.STACK_CREATED
    assert result.stack_arn == cfn.stack_id
    assert result.changeset is None
    assert [e["ResourceStatus"] for e in observer.events] == ["CREATE_IN_PROGRESS", "CREATE_COMPLETE"]
    assert "Creating stack 'test-stack' (Test stack)" in observer.messages
    assert observer.column_widths == (NESTED_WIDTH, NESTED_WIDTH)


def test_create_without_following(cfn, make_runner):
    result = make_runner().create()

    assert result.result == StackOperationResult.STACK_CREATE_IN_PROGRESS
    assert cfn.calls_to("describe_stack_events") == []


def test_create_request(cfn, make_runner):
    make_runner(
        parameters={"Environment": "prod"},
        capabilities=["CAPABILITY_NAMED_IAM"],
        tags={"team": "platform"},
        timeout_in_minutes=30,
        on_failure="DELETE",
        resource_types=["AWS::S3::*"],
        termination_protection=True,
        stack_policy_location='{"Statement":[]}',
        client_token="token-1",
    ).create()

    request = cfn.calls_to("create_stack")[0]
    assert request["StackName"] == "test-stack"
    assert request["TemplateBody"].startswith("AWSTemplateFormatVersion")
    assert request["Parameters"] == [{"ParameterKey": "Environment", "ParameterValue": "prod"}]
    assert request["Capabilities"] == ["CAPABILITY_NAMED_IAM"]
    assert request["Tags"] == [{"Key": "team", "Value": "platform"}]
    assert request["TimeoutInMinutes"] == 30
    assert request["OnFailure"] == "DELETE"
    assert request["ResourceTypes"] == ["AWS::S3::*"]
    assert request["EnableTerminationProtection"] is True
    assert request["StackPolicyBody"] == '{"Statement":[]}'
    assert request["ClientRequestToken"] == "token-1"
    assert "DisableRollback" not in request


def test_create_request_leaves_out_unset_options(cfn, make_runner):
    make_runner().create()

    request = cfn.calls_to("create_stack")[0]
    for key in ("TimeoutInMinutes", "ResourceTypes", "OnFailure", "RoleARN", "StackPolicyBody",
                "StackPolicyURL", "NotificationARNs", "RollbackConfiguration", "ClientRequestToken"):
        assert key not in request


def test_create_uploads_template_when_forced_to_s3(cfn, artifact_store, make_runner):
    make_runner(force_s3=True).create()

    request = cfn.calls_to("create_stack")[0]
    assert request["TemplateURL"] == "https://artifacts.s3.amazonaws.com/test-stack_template_RawString"
    assert "TemplateBody" not in request
    assert len(artifact_store.uploads) == 1


def test_forcing_s3_leaves_small_policies_inline(cfn, artifact_store, make_runner):
    make_runner(force_s3=True, stack_policy_location='{"Statement":[]}').create()

    request = cfn.calls_to("create_stack")[0]
    assert request["StackPolicyBody"] == '{"Statement":[]}'
    assert "StackPolicyURL" not in request
    assert [upload["kind"].value for upload in artifact_store.uploads] == ["template"]


def test_forcing_s3_on_update_leaves_policies_inline(cfn, artifact_store, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    make_runner(
        force_s3=True,
        stack_policy_location='{"Statement":["keep"]}',
        stack_policy_during_update_location='{"Statement":["allow"]}',
    ).update()

    request = cfn.calls_to("update_stack")[0]
    assert "TemplateURL" in request
    assert request["StackPolicyBody"] == '{"Statement":["keep"]}'
    assert request["StackPolicyDuringUpdateBody"] == '{"Statement":["allow"]}'
    assert [upload["kind"].value for upload in artifact_store.uploads] == ["template"]


@pytest.mark.parametrize(
    "status, expected",
    [
        ("CREATE_COMPLETE", OperationalState.EXISTS),
        ("UPDATE_IN_PROGRESS", OperationalState.EXISTS),
        ("ROLLBACK_FAILED", OperationalState.EXISTS),
        ("DELETE_IN_PROGRESS", OperationalState.DELETING),
    ],
)
def test_create_requires_absent_stack(cfn, make_runner, status, expected):
    cfn.given_stack(status)

    with pytest.raises(StateConflictError) as exc_info:
        make_runner().create()

    assert exc_info.value.operational_state == expected
    assert exc_info.value.stack["StackStatus"] == status
    assert cfn.calls_to("create_stack") == []


def test_second_create_is_rejected(cfn, make_runner):
    runner = make_runner(follow_operation=True)
    runner.create()

    with pytest.raises(StateConflictError) as exc_info:
        runner.create()

    assert exc_info.value.operational_state == OperationalState.EXISTS
    assert len(cfn.calls_to("create_stack")) == 1


def test_failed_create_raises(cfn, make_runner):
    cfn.create_statuses = ["CREATE_IN_PROGRESS", "ROLLBACK_IN_PROGRESS", "ROLLBACK_COMPLETE"]

    with pytest.raises(StackOperationFailedError) as exc_info:
        make_runner(follow_operation=True).create()

    assert str(exc_info.value) == "Stack 'test-stack': Operation failed. Status is ROLLBACK_COMPLETE"


def test_create_without_template(make_runner):
    with pytest.raises(MissingCollaboratorError):
        make_runner(template_location=None).create()


# Update

def test_update_applies_confirmed_changeset(cfn, observer, make_runner):
    cfn.given_stack("CREATE_COMPLETE")
    cfn.changeset_outcome = {"Status": "CREATE_COMPLETE", "Changes": [resource_change("Modify", "Bucket")]}
    seen = []

    def confirm(changeset):
        seen.append(changeset)
        return True

    result = make_runner(follow_operation=True).update(confirm=confirm)

    assert result.result == StackOperationResult.STACK_UPDATED
    assert result.stack_arn == cfn.stack_id
    assert result.changes == [resource_change("Modify", "Bucket")["ResourceChange"]]
    assert seen == [result.changeset]
    assert observer.changesets[0][1] is result.changeset
    assert "Updating stack 'test-stack' (Test stack)" in observer.messages
    assert [e["ResourceStatus"] for e in observer.events] == ["UPDATE_IN_PROGRESS", "UPDATE_COMPLETE"]

    request = cfn.calls_to("update_stack")[0]
    assert request["StackName"] == cfn.stack_id
    assert request["TemplateBody"].startswith("AWSTemplateFormatVersion")
    assert cfn.calls_to("execute_change_set") == []


def test_update_without_following(cfn, make_runner):
    cfn.given_stack("CREATE_COMPLETE")

    result = make_runner().update()

    assert result.result == StackOperationResult.STACK_UPDATE_IN_PROGRESS
    assert len(cfn.calls_to("update_stack")) == 1


def test_declined_update_changes_nothing(cfn, make_runner):
    cfn.given_stack("CREATE_COMPLETE")

    result = make_runner().update(confirm=lambda changeset: False)

    assert result.result == StackOperationResult.NO_CHANGE
    assert result.changeset is not None
    assert cfn.calls_to("update_stack") == []


def test_changeset_only_never_asks(cfn, make_runner):
    cfn.given_stack("CREATE_COMPLETE")

    def confirm(changeset):
        raise AssertionError("confirmation requested")

    result = make_runner(changeset_only=True).update(confirm=confirm)

    assert result.result == StackOperationResult.NO_CHANGE
    assert result.changeset["Status"] == "CREATE_COMPLETE"
    assert cfn.calls_to("update_stack") == []


def test_update_aborts_if_stack_became_busy_during_confirmation(cfn, make_runner):
    cfn.given_stack("CREATE_COMPLETE")

    def confirm(changeset):
        cfn.statuses = ["UPDATE_IN_PROGRESS"]
        return True

    with pytest.raises(StateConflictError) as exc_info:
        make_runner().update(confirm=confirm)

    assert exc_info.value.operational_state == OperationalState.BUSY
    assert exc_info.value.changeset is not None
    assert cfn.calls_to("update_stack") == []


def test_update_absent_stack(make_runner):
    with pytest.raises(NotFoundError):
        make_runner().update()


@pytest.mark.parametrize(
    "status, expected",
    [
        ("DELETE_IN_PROGRESS", OperationalState.DELETING),
        ("DELETE_FAILED", OperationalState.DELETE_FAILED),
        ("UPDATE_IN_PROGRESS", OperationalState.BUSY),
    ],
)
def test_update_rejected_states(cfn, make_runner, status, expected):
    cfn.given_stack(status)

    with pytest.raises(StateConflictError) as exc_info:
        make_runner().update()

    assert exc_info.value.operational_state == expected
    assert cfn.calls_to("create_change_set") == []


def test_busy_stack_message(cfn, make_runner):
    cfn.given_stack("UPDATE_IN_PROGRESS")

    with pytest.raises(StateConflictError) as exc_info:
        make_runner().update()

    assert str(exc_info.value) == "Stack is being modified by another process."


def test_update_of_broken_stack_warns_and_continues(cfn, observer, make_runner):
    cfn.given_stack("UPDATE_ROLLBACK_FAILED")

    result = make_runner(changeset_only=True).update()

    assert result.result == StackOperationResult.NO_CHANGE
    assert observer.warnings == ["Stack is in a failed state from previous operation. Update may fail."]
    assert len(cfn.calls_to("create_change_set")) == 1


def test_update_waits_out_operation_in_progress(cfn, observer, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")
    cfn.statuses = ["UPDATE_IN_PROGRESS", "UPDATE_COMPLETE"]

    result = make_runner(wait_for_in_progress_update=True, changeset_only=True).update()

    assert result.result == StackOperationResult.NO_CHANGE
    assert "Waiting for in-progress operation on stack 'test-stack' to complete" in observer.messages
    assert len(cfn.calls_to("create_change_set")) == 1


def test_waited_out_operation_must_leave_stack_ready(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")
    cfn.statuses = ["UPDATE_IN_PROGRESS", "UPDATE_ROLLBACK_FAILED"]

    with pytest.raises(StateConflictError) as exc_info:
        make_runner(wait_for_in_progress_update=True).update()

    assert exc_info.value.operational_state == OperationalState.BROKEN
    assert cfn.calls_to("create_change_set") == []


def test_update_parameters_reuse_existing_values(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE", parameters={"Environment": "prod", "DbPassword": "old", "Removed": "x"})

    make_runner(parameters={"DbPassword": "new"}, changeset_only=True).update()

    assert cfn.calls_to("create_change_set")[0]["Parameters"] == [
        {"ParameterKey": "Environment", "UsePreviousValue": True},
        {"ParameterKey": "DbPassword", "ParameterValue": "new"},
    ]


def test_update_parameters_left_to_template_defaults(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE", parameters={"DbPassword": "old"})

    make_runner(changeset_only=True).update()

    assert cfn.calls_to("create_change_set")[0]["Parameters"] == [
        {"ParameterKey": "DbPassword", "UsePreviousValue": True},
    ]


def test_update_with_policies(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    make_runner(
        stack_policy_location='{"Statement":["keep"]}',
        stack_policy_during_update_location='{"Statement":["allow"]}',
    ).update()

    request = cfn.calls_to("update_stack")[0]
    assert request["StackPolicyBody"] == '{"Statement":["keep"]}'
    assert request["StackPolicyDuringUpdateBody"] == '{"Statement":["allow"]}'


def test_update_with_previous_template(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    make_runner(use_previous_template=True, template_location=None).update()

    assert cfn.calls_to("create_change_set")[0]["UsePreviousTemplate"] is True
    request = cfn.calls_to("update_stack")[0]
    assert request["UsePreviousTemplate"] is True
    assert "TemplateBody" not in request


def test_import_executes_the_changeset(cfn, tmp_path, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")
    import_file = tmp_path / "import.yaml"
    import_file.write_text(
        "- ResourceType: AWS::S3::Bucket\n"
        "  LogicalResourceId: Bucket\n"
        "  ResourceIdentifier:\n"
        "    BucketName: existing\n"
    )

    result = make_runner(resources_to_import=str(import_file), follow_operation=True).update()

    request = cfn.calls_to("create_change_set")[0]
    assert request["ChangeSetType"] == "IMPORT"
    assert request["ResourcesToImport"][0]["LogicalResourceId"] == "Bucket"
    assert cfn.calls_to("execute_change_set")[0]["StackName"] == cfn.stack_id
    assert cfn.calls_to("update_stack") == []
    assert result.result == StackOperationResult.STACK_UPDATED


def test_update_without_template(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    with pytest.raises(MissingCollaboratorError):
        make_runner(template_location=None).update()


def test_no_echo_values_are_masked():
    parameters = [
        {"ParameterKey": "Environment", "ParameterValue": "prod"},
        {"ParameterKey": "DbPassword", "ParameterValue": "secret"},
        {"ParameterKey": "ApiKey", "UsePreviousValue": True},
    ]

    assert StackRunner.mask_parameters(parameters, frozenset({"DbPassword", "ApiKey"})) == {
        "Environment": "prod",
        "DbPassword": "****",
        "ApiKey": "(previous value)",
    }


def test_secret_values_are_not_logged(cfn, make_runner, caplog):
    caplog.set_level("INFO")

    make_runner(parameters={"DbPassword": "hunter2", "Environment": "prod"}).create()

    assert "hunter2" not in caplog.text
    assert "DbPassword=****" in caplog.text
    assert "Environment=prod" in caplog.text


# Delete

def test_delete_followed_to_completion(cfn, observer, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    result = make_runner(follow_operation=True).delete()

    assert result.result == StackOperationResult.STACK_DELETED
    assert cfn.calls_to("delete_stack") == [{"StackName": cfn.stack_id}]
    assert [e["ResourceStatus"] for e in observer.events] == ["DELETE_IN_PROGRESS"]
    assert "Deleting stack 'test-stack' (Test stack)" in observer.messages


def test_delete_without_following(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    assert make_runner().delete().result == StackOperationResult.STACK_DELETE_IN_PROGRESS


def test_delete_absent_stack(make_runner):
    with pytest.raises(NotFoundError):
        make_runner().delete()


@pytest.mark.parametrize("status", ["UPDATE_IN_PROGRESS", "DELETE_IN_PROGRESS"])
def test_delete_rejected_states(cfn, make_runner, status):
    cfn.given_stack(status)

    with pytest.raises(StateConflictError):
        make_runner().delete()

    assert cfn.calls_to("delete_stack") == []


def test_declined_delete(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    result = make_runner().delete(confirm_delete=lambda: False)

    assert result.result == StackOperationResult.NO_CHANGE
    assert cfn.calls_to("delete_stack") == []


def test_retained_resources_need_delete_failed_state(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")
    runner = make_runner(retain_resources=["Bucket"], role_arn="arn:aws:iam::123456789012:role/deployer")

    declined = runner.delete(confirm_retention_discard=lambda: False)
    assert declined.result == StackOperationResult.NO_CHANGE
    assert cfn.calls_to("delete_stack") == []

    runner.delete(confirm_retention_discard=lambda: True)
    assert cfn.calls_to("delete_stack") == [
        {"StackName": cfn.stack_id, "RoleARN": "arn:aws:iam::123456789012:role/deployer"}
    ]


def test_retained_resources_of_delete_failed_stack(cfn, make_runner):
    cfn.given_stack("DELETE_FAILED")

    def confirm_retention_discard():
        raise AssertionError("should not be asked")

    result = make_runner(retain_resources=["Bucket", "Table"], follow_operation=True).delete(
        confirm_retention_discard=confirm_retention_discard
    )

    assert result.result == StackOperationResult.STACK_DELETED
    assert cfn.calls_to("delete_stack")[0]["RetainResources"] == ["Bucket", "Table"]


def test_delete_of_broken_stack_warns(cfn, observer, make_runner):
    cfn.given_stack("CREATE_FAILED")

    make_runner().delete()

    assert observer.warnings == ["Stack is in a failed state from previous operation. Delete may fail."]
    assert len(cfn.calls_to("delete_stack")) == 1


def test_failed_delete_raises(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")
    cfn.delete_statuses = ["DELETE_IN_PROGRESS", "DELETE_FAILED"]

    with pytest.raises(StackOperationFailedError):
        make_runner(follow_operation=True).delete()


# Reset

def test_reset_replaces_stack(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    result = make_runner(follow_operation=True).reset()

    assert result.result == StackOperationResult.STACK_REPLACED
    assert len(cfn.calls_to("delete_stack")) == 1
    assert len(cfn.calls_to("create_stack")) == 1
    assert [name for name, _ in cfn.calls if name in ("delete_stack", "create_stack")] == [
        "delete_stack", "create_stack"
    ]


def test_reset_always_follows_the_delete(cfn, make_runner):
    cfn.given_stack("UPDATE_COMPLETE")

    result = make_runner(follow_operation=False).reset()

    assert result.result == StackOperationResult.STACK_CREATE_IN_PROGRESS
    assert len(cfn.calls_to("create_stack")) == 1


def test_reset_of_absent_stack(cfn, make_runner):
    with pytest.raises(NotFoundError):
        make_runner().reset()

    assert cfn.calls_to("create_stack") == []


def test_outputs_and_state(cfn, make_runner):
    cfn.given_stack("CREATE_COMPLETE", Outputs=[{"OutputKey": "Url", "OutputValue": "https://example.com"}])
    runner = make_runner()

    assert runner.get_state() == OperationalState.READY
    assert runner.get_outputs() == {"Url": "https://example.com"}
