"""Pydantic models for stacks, change sets and deployment requests."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AwsShape(BaseModel):
    """Base for models parsed straight from CloudFormation API responses."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChangeSetType(str, Enum):
    create = "CREATE"
    update = "UPDATE"


class WaiterReason(str, Enum):
    delete_existing = "DELETE_EXISTING"
    in_progress_existing = "IN_PROGRESS_EXISTING"
    executing = "EXECUTING"


class Capability(str, Enum):
    iam = "CAPABILITY_IAM"
    named_iam = "CAPABILITY_NAMED_IAM"
    auto_expand = "CAPABILITY_AUTO_EXPAND"


class DeployOutcome(str, Enum):
    deployed = "deployed"
    no_changes = "no_changes"
    skipped = "skipped"


# ---------------------------------------------------------------------------
# Remote state
# ---------------------------------------------------------------------------


class StackOutput(AwsShape):
    key: str = Field(alias="OutputKey")
    value: str = Field(default="", alias="OutputValue")
    description: Optional[str] = Field(default=None, alias="Description")


class StackSnapshot(AwsShape):
    """Point-in-time view of a stack as returned by DescribeStacks."""

    stack_name: str = Field(alias="StackName")
    stack_id: Optional[str] = Field(default=None, alias="StackId")
    status: str = Field(alias="StackStatus")
    status_reason: Optional[str] = Field(default=None, alias="StackStatusReason")
    outputs: List[StackOutput] = Field(default_factory=list, alias="Outputs")

    def output_map(self) -> Dict[str, str]:
        return {output.key: output.value for output in self.outputs}


class StackResource(AwsShape):
    logical_resource_id: str = Field(alias="LogicalResourceId")
    physical_resource_id: Optional[str] = Field(default=None, alias="PhysicalResourceId")
    resource_type: str = Field(alias="ResourceType")
    resource_status: str = Field(alias="ResourceStatus")
    resource_status_reason: Optional[str] = Field(default=None, alias="ResourceStatusReason")
    timestamp: Optional[datetime] = Field(default=None, alias="Timestamp")


class StackEvent(AwsShape):
    event_id: Optional[str] = Field(default=None, alias="EventId")
    stack_name: Optional[str] = Field(default=None, alias="StackName")
    logical_resource_id: Optional[str] = Field(default=None, alias="LogicalResourceId")
    physical_resource_id: Optional[str] = Field(default=None, alias="PhysicalResourceId")
    resource_type: Optional[str] = Field(default=None, alias="ResourceType")
    timestamp: datetime = Field(alias="Timestamp")
    resource_status: Optional[str] = Field(default=None, alias="ResourceStatus")
    resource_status_reason: Optional[str] = Field(default=None, alias="ResourceStatusReason")


class StackEventPage(BaseModel):
    """Events newest first, as DescribeStackEvents orders them."""

    events: List[StackEvent] = Field(default_factory=list)
    next_token: Optional[str] = None


class ResourceChange(AwsShape):
    action: Optional[str] = Field(default=None, alias="Action")
    logical_resource_id: Optional[str] = Field(default=None, alias="LogicalResourceId")
    physical_resource_id: Optional[str] = Field(default=None, alias="PhysicalResourceId")
    resource_type: Optional[str] = Field(default=None, alias="ResourceType")
    replacement: Optional[str] = Field(default=None, alias="Replacement")
    scope: List[str] = Field(default_factory=list, alias="Scope")
    details: List[Dict[str, Any]] = Field(default_factory=list, alias="Details")


class Change(AwsShape):
    type: str = Field(default="Resource", alias="Type")
    resource_change: Optional[ResourceChange] = Field(default=None, alias="ResourceChange")

    def describe(self) -> str:
        rc = self.resource_change
        if rc is None:
            return self.type
        parts = [rc.action or "?", rc.logical_resource_id or "?", f"({rc.resource_type})"]
        if rc.replacement and rc.replacement != "False":
            parts.append(f"replacement={rc.replacement}")
        return " ".join(parts)


class ChangeSetPage(AwsShape):
    """One DescribeChangeSet response; changes may continue behind next_token."""

    change_set_id: Optional[str] = Field(default=None, alias="ChangeSetId")
    change_set_name: Optional[str] = Field(default=None, alias="ChangeSetName")
    stack_id: Optional[str] = Field(default=None, alias="StackId")
    status: str = Field(alias="Status")
    execution_status: Optional[str] = Field(default=None, alias="ExecutionStatus")
    status_reason: Optional[str] = Field(default=None, alias="StatusReason")
    changes: List[Change] = Field(default_factory=list, alias="Changes")
    next_token: Optional[str] = Field(default=None, alias="NextToken")


class CreatedChangeSet(AwsShape):
    id: str = Field(alias="Id")
    stack_id: str = Field(alias="StackId")


# ---------------------------------------------------------------------------
# Deployment input / output
# ---------------------------------------------------------------------------


def stringify_value(value: Any) -> str:
    """Template parameters are strings; YAML booleans keep their lowercase spelling."""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _stringify_mapping(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): stringify_value(item) for key, item in value.items()}
    return value


def parameter_list_to_mapping(entries: List[Any]) -> Dict[str, str]:
    """Convert the CloudFormation CLI parameter list into a mapping.

    Entries without a ``ParameterValue`` (e.g. ``UsePreviousValue``) are
    rejected rather than sent as empty strings, and so are repeated keys.
    """
    parameters: Dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, dict) or "ParameterKey" not in entry:
            raise ValueError(f"Invalid parameter entry: {entry!r}")
        key = str(entry["ParameterKey"])
        if "ParameterValue" not in entry:
            raise ValueError(
                f"Parameter {key} has no ParameterValue; UsePreviousValue is not supported"
            )
        if key in parameters:
            raise ValueError(f"Parameter {key} is given more than once")
        parameters[key] = stringify_value(entry["ParameterValue"])
    return parameters


class Parameter(AwsShape):
    key: str = Field(alias="ParameterKey")
    value: str = Field(alias="ParameterValue")

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> str:
        return stringify_value(value)


class Tag(AwsShape):
    key: str = Field(alias="Key")
    value: str = Field(alias="Value")


class DeployRequest(BaseModel):
    stack_name: str = Field(min_length=1)
    template_body: str
    parameters: List[Parameter] = Field(default_factory=list)
    capabilities: Optional[List[Capability]] = None
    tags: List[Tag] = Field(default_factory=list)


class DeployResult(BaseModel):
    stack_name: str
    outcome: DeployOutcome
    change_set_type: ChangeSetType
    change_set_name: str
    change_set_id: Optional[str] = None
    stack_id: Optional[str] = None
    review_url: Optional[str] = None
    stack_status: Optional[str] = None
    changes: List[Change] = Field(default_factory=list)
    outputs: Dict[str, str] = Field(default_factory=dict)


class DeploymentConfig(BaseModel):
    """Contents of a deployment file; every field may be overridden on the CLI."""

    stack_name: Optional[str] = None
    region: Optional[str] = None
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None
    template_path: Optional[Path] = None
    parameters_file: Optional[Path] = None
    parameters: Dict[str, str] = Field(default_factory=dict)
    capabilities: List[Capability] = Field(default_factory=list)
    tags: Dict[str, str] = Field(default_factory=dict)
    template_vars: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def parameters_mapping(cls, value: Any) -> Any:
        if isinstance(value, list):
            return parameter_list_to_mapping(value)
        return _stringify_mapping(value)

    @field_validator("tags", mode="before")
    @classmethod
    def stringify_values(cls, value: Any) -> Any:
        return _stringify_mapping(value)


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------


class StageEvent(BaseModel):
    stage: str
    status: Literal["started", "progress", "ok", "failed"]
    detail: Optional[str] = None


class DeploymentRequest(BaseModel):
    stack_name: str = Field(min_length=1)
    template_body: str
    parameters: Dict[str, str] = Field(default_factory=dict)
    capabilities: List[Capability] = Field(default_factory=list)
    tags: Dict[str, str] = Field(default_factory=dict)
    template_vars: Dict[str, Any] = Field(default_factory=dict)
    approve: bool = True
    region: Optional[str] = None
    endpoint_url: Optional[str] = None


class DeploymentAccepted(BaseModel):
    run_id: str


class RunRecord(BaseModel):
    run_id: str
    stack_name: str
    ok: Optional[bool] = None
    outcome: Optional[DeployOutcome] = None
    events: List[StageEvent] = Field(default_factory=list)
    summary: Optional[str] = None
    changes: List[Change] = Field(default_factory=list)
    outputs: Dict[str, str] = Field(default_factory=dict)
