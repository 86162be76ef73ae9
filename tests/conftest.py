"""Shared fixtures: an in-memory CloudFormation control plane, artifact store and observer."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

from stack_runner.config.models import StackConfig
from stack_runner.orchestrator.observer import StackObserver
from stack_runner.orchestrator.runner import StackRunner
from stack_runner.storage.base import ArtifactKind, ArtifactStore

STACK_NAME = "test-stack"

TEMPLATE = """\
AWSTemplateFormatVersion: '2010-09-09'
Description: Test stack
Parameters:
  Environment:
    Type: String
    Default: dev
  DbPassword:
    Type: String
    NoEcho: true
Resources:
  Bucket:
    Type: AWS::S3::Bucket
    Properties:
      BucketName: !Sub '${AWS::StackName}-bucket'
  Network:
    Type: AWS::CloudFormation::Stack
    Properties:
      TemplateURL: https://templates.s3.amazonaws.com/network.yaml
Outputs:
  BucketArn:
    Value: !GetAtt Bucket.Arn
"""


def client_error(message: str, operation: str, code: str = "ValidationError") -> ClientError:
    """Build a botocore ClientError as the control plane would raise it."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def stack_not_found(stack_name: str, operation: str = "DescribeStacks") -> ClientError:
    return client_error(f"Stack with id {stack_name} does not exist", operation)


class FakeCloudFormation:
    """Scripted stand-in for a boto3 CloudFormation client.

    Each describe_stacks call advances the stack through the next status in
    ``statuses`` (``None`` meaning the stack has gone), recording a stack
    event for every status change. Mutating calls start the scripts held in
    ``create_statuses``, ``update_statuses`` and ``delete_statuses``.
    """

    def __init__(self, stack_name: str = STACK_NAME):
        self.stack_name = stack_name
        self.stack_id = f"arn:aws:cloudformation:us-east-1:123456789012:stack/{stack_name}/0001"
        self.stack: Optional[Dict[str, Any]] = None
        self.statuses: List[Optional[str]] = []
        self.events: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.clock = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

        self.create_statuses = ["CREATE_IN_PROGRESS", "CREATE_COMPLETE"]
        self.update_statuses = ["UPDATE_IN_PROGRESS", "UPDATE_COMPLETE"]
        self.import_statuses = ["IMPORT_IN_PROGRESS", "IMPORT_COMPLETE"]
        self.delete_statuses = ["DELETE_IN_PROGRESS", None]

        self.changesets: Dict[str, Dict[str, Any]] = {}
        self.changeset_outcome: Dict[str, Any] = {"Status": "CREATE_COMPLETE", "Changes": []}
        self.changeset_pending_polls = 1
        self.nested_summaries: Dict[str, List[Dict[str, Any]]] = {}

        self.template_body: Any = TEMPLATE
        self.template_summary: Dict[str, Any] = {"Parameters": []}
        self.resources: List[Dict[str, Any]] = []

    # Scripting helpers

    def given_stack(self, status: str, parameters: Optional[Dict[str, str]] = None, **extra) -> Dict[str, Any]:
        self.stack = {
            "StackId": self.stack_id,
            "StackName": self.stack_name,
            "StackStatus": status,
            "CreationTime": self.clock,
            "Parameters": [
                {"ParameterKey": k, "ParameterValue": v} for k, v in (parameters or {}).items()
            ],
            **extra,
        }
        self.add_event(status)
        return self.stack

    def add_event(self, status: str, logical_id: Optional[str] = None, reason: Optional[str] = None):
        self.clock += timedelta(seconds=1)
        event = {
            "StackId": self.stack_id,
            "StackName": self.stack_name,
            "EventId": f"event-{len(self.events) + 1}",
            "LogicalResourceId": logical_id or self.stack_name,
            "ResourceType": "AWS::CloudFormation::Stack",
            "ResourceStatus": status,
            "Timestamp": self.clock,
        }
        if reason:
            event["ResourceStatusReason"] = reason
        self.events.insert(0, event)
        return event

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def _record(self, method: str, kwargs: Dict[str, Any]):
        self.calls.append((method, kwargs))

    def _set_status(self, status: Optional[str]):
        if status is None:
            self.stack = None
            return
        self.stack = {**self.stack, "StackStatus": status}
        self.add_event(status)

    def _start(self, statuses: List[Optional[str]]):
        self._set_status(statuses[0])
        self.statuses = list(statuses[1:])

    def _matches(self, stack_name: str) -> bool:
        return self.stack is not None and stack_name in (self.stack_name, self.stack_id)

    # Stacks

    def describe_stacks(self, StackName):
        self._record("describe_stacks", {"StackName": StackName})

        if self.statuses and self.stack is not None:
            self._set_status(self.statuses.pop(0))

        if not self._matches(StackName):
            raise stack_not_found(StackName)

        return {"Stacks": [dict(self.stack)]}

    def describe_stack_events(self, StackName, NextToken=None):
        self._record("describe_stack_events", {"StackName": StackName, "NextToken": NextToken})

        if not self._matches(StackName):
            raise stack_not_found(StackName, "DescribeStackEvents")

        return {"StackEvents": list(self.events)}

    def describe_stack_resources(self, StackName):
        self._record("describe_stack_resources", {"StackName": StackName})

        if not self._matches(StackName):
            raise stack_not_found(StackName, "DescribeStackResources")

        return {"StackResources": list(self.resources)}

    def create_stack(self, **kwargs):
        self._record("create_stack", kwargs)
        self.stack = {
            "StackId": self.stack_id,
            "StackName": kwargs["StackName"],
            "StackStatus": self.create_statuses[0],
            "Parameters": [
                {"ParameterKey": p["ParameterKey"], "ParameterValue": p.get("ParameterValue", "")}
                for p in kwargs.get("Parameters", [])
            ],
        }
        self._start(self.create_statuses)
        return {"StackId": self.stack_id}

    def update_stack(self, **kwargs):
        self._record("update_stack", kwargs)
        self._start(self.update_statuses)
        return {"StackId": self.stack_id}

    def delete_stack(self, **kwargs):
        self._record("delete_stack", kwargs)
        self._start(self.delete_statuses)
        return {}

    def get_template(self, StackName, TemplateStage=None):
        self._record("get_template", {"StackName": StackName, "TemplateStage": TemplateStage})
        return {"TemplateBody": self.template_body, "StagesAvailable": ["Original", "Processed"]}

    def get_template_summary(self, StackName=None, **kwargs):
        self._record("get_template_summary", {"StackName": StackName, **kwargs})
        return self.template_summary

    # Changesets

    def create_change_set(self, **kwargs):
        self._record("create_change_set", kwargs)
        changeset_id = (
            f"arn:aws:cloudformation:us-east-1:123456789012:changeSet/{kwargs['ChangeSetName']}/"
            f"{len(self.changesets) + 1:04d}"
        )
        self.changesets[changeset_id] = {
            "ChangeSetId": changeset_id,
            "ChangeSetName": kwargs["ChangeSetName"],
            "StackId": self.stack_id,
            "StackName": self.stack_name,
            "Status": "CREATE_PENDING",
            "_pending_polls": self.changeset_pending_polls,
            "Changes": [],
        }
        return {"Id": changeset_id, "StackId": self.stack_id}

    def add_changeset(self, changeset: Dict[str, Any]):
        """Register an already complete changeset, e.g. one of a nested stack."""
        self.changesets[changeset["ChangeSetId"]] = {"_pending_polls": 0, **changeset}

    def describe_change_set(self, ChangeSetName, StackName=None, NextToken=None):
        self._record("describe_change_set", {"ChangeSetName": ChangeSetName, "StackName": StackName})
        changeset = self.changesets[ChangeSetName]

        if changeset["_pending_polls"] > 0:
            changeset["_pending_polls"] -= 1
            return {k: v for k, v in changeset.items() if not k.startswith("_")}

        if changeset["Status"] == "CREATE_PENDING":
            changeset.update(self.changeset_outcome)

        return {k: v for k, v in changeset.items() if not k.startswith("_")}

    def delete_change_set(self, ChangeSetName, StackName=None):
        self._record("delete_change_set", {"ChangeSetName": ChangeSetName, "StackName": StackName})
        self.changesets.pop(ChangeSetName, None)
        return {}

    def execute_change_set(self, **kwargs):
        self._record("execute_change_set", kwargs)
        self._start(self.import_statuses)
        return {}

    def list_change_sets(self, StackName, NextToken=None):
        self._record("list_change_sets", {"StackName": StackName})
        return {"Summaries": list(self.nested_summaries.get(StackName, []))}


class FakeArtifactStore(ArtifactStore):
    """In-memory artifact store."""

    def __init__(self, objects: Optional[Dict[tuple, str]] = None):
        self.objects = objects or {}
        self.uploads: List[Dict[str, Any]] = []

    def upload(self, stack_name: str, body: str, original_name: str, kind: ArtifactKind) -> str:
        self.uploads.append({
            "stack_name": stack_name,
            "body": body,
            "original_name": original_name,
            "kind": kind,
        })
        return f"https://artifacts.s3.amazonaws.com/{stack_name}_{kind.value}_{original_name}"

    def fetch(self, bucket: str, key: str) -> str:
        return self.objects[(bucket, key)]


class RecordingObserver(StackObserver):
    """Observer that keeps every notification for inspection."""

    def __init__(self):
        self.messages: List[str] = []
        self.warnings: List[str] = []
        self.changesets: List[tuple] = []
        self.events: List[Dict[str, Any]] = []
        self.column_widths: Optional[tuple] = None

    def set_column_widths(self, stack_name_width: int, resource_name_width: int) -> None:
        self.column_widths = (stack_name_width, resource_name_width)

    def on_message(self, message: str) -> None:
        self.messages.append(message)

    def on_warning(self, message: str) -> None:
        self.warnings.append(message)

    def on_changeset(self, changeset: Dict[str, Any], title: Optional[str] = None) -> None:
        self.changesets.append((title, changeset))

    def on_stack_event(self, event: Dict[str, Any]) -> None:
        self.events.append(event)


def resource_change(action: str, logical_id: str, resource_type: str = "AWS::S3::Bucket",
                    physical_id: Optional[str] = None, replacement: str = "False") -> Dict[str, Any]:
    """Build a changeset Change entry."""
    change = {
        "Action": action,
        "LogicalResourceId": logical_id,
        "ResourceType": resource_type,
        "Replacement": replacement,
    }
    if physical_id:
        change["PhysicalResourceId"] = physical_id
    return {"Type": "Resource", "ResourceChange": change}


@pytest.fixture
def cfn():
    return FakeCloudFormation()


@pytest.fixture
def artifact_store():
    return FakeArtifactStore()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_config():
    def _make_config(**overrides) -> StackConfig:
        values = {
            "stack_name": STACK_NAME,
            "template_location": TEMPLATE,
            "poll_interval": 0,
        }
        values.update(overrides)
        return StackConfig(**values)

    return _make_config


@pytest.fixture
def make_runner(cfn, artifact_store, observer, sleeps, make_config):
    def _make_runner(**overrides) -> StackRunner:
        return StackRunner(
            make_config(**overrides),
            cfn,
            artifact_store=artifact_store,
            observer=observer,
            sleep=sleeps.append
        )

    return _make_runner
