"""CloudFormation client backed by boto3."""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, List, Optional

import boto3
from botocore.exceptions import ClientError

from ..models import (
    ChangeSetPage,
    ChangeSetType,
    CreatedChangeSet,
    Parameter,
    StackEvent,
    StackEventPage,
    StackResource,
    StackSnapshot,
    Tag,
)

log = logging.getLogger(__name__)


def is_stack_missing(exc: ClientError, stack_name: str) -> bool:
    """Return True when ``exc`` is CloudFormation's "stack does not exist" error."""
    error = exc.response.get("Error", {})
    return (
        error.get("Code") == "ValidationError"
        and error.get("Message") == f"Stack with id {stack_name} does not exist"
    )


class CloudFormationClient:
    """Issue CloudFormation calls without blocking the event loop.

    boto3 is synchronous, so every call runs in the loop's default executor.
    Calls are never retried here beyond botocore's own transport handling.
    """

    def __init__(self, client: Any) -> None:
        self._client = client
        self.region: str = client.meta.region_name

    @classmethod
    def from_session(
        cls,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ) -> "CloudFormationClient":
        session = boto3.session.Session(
            profile_name=profile,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )
        client_kwargs: dict[str, Any] = {}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        return cls(session.client("cloudformation", **client_kwargs))

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        method = getattr(self._client, operation)
        log.debug("cloudformation.%s stack=%s", operation, kwargs.get("StackName"))
        return await loop.run_in_executor(None, functools.partial(method, **kwargs))

    # Stacks ----------------------------------------------------------------

    async def describe_stack(self, stack_name: str) -> Optional[StackSnapshot]:
        try:
            response = await self._call("describe_stacks", StackName=stack_name)
        except ClientError as exc:
            if is_stack_missing(exc, stack_name):
                return None
            raise
        stacks = response.get("Stacks") or []
        if not stacks:
            return None
        return StackSnapshot.model_validate(stacks[0])

    async def delete_stack(self, stack_name: str) -> None:
        await self._call("delete_stack", StackName=stack_name)

    async def describe_stack_resources(self, stack_name: str) -> List[StackResource]:
        response = await self._call("describe_stack_resources", StackName=stack_name)
        return [
            StackResource.model_validate(resource)
            for resource in response.get("StackResources", [])
        ]

    async def describe_stack_events(
        self,
        stack_name: str,
        next_token: Optional[str] = None,
    ) -> StackEventPage:
        kwargs: dict[str, Any] = {"StackName": stack_name}
        if next_token:
            kwargs["NextToken"] = next_token
        response = await self._call("describe_stack_events", **kwargs)
        return StackEventPage(
            events=[StackEvent.model_validate(event) for event in response.get("StackEvents", [])],
            next_token=response.get("NextToken"),
        )

    # Change sets -----------------------------------------------------------

    async def create_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        change_set_type: ChangeSetType,
        template_body: str,
        parameters: Optional[List[Parameter]] = None,
        capabilities: Optional[List[str]] = None,
        tags: Optional[List[Tag]] = None,
    ) -> CreatedChangeSet:
        kwargs: dict[str, Any] = {
            "StackName": stack_name,
            "ChangeSetName": change_set_name,
            "ChangeSetType": ChangeSetType(change_set_type).value,
            "TemplateBody": template_body,
        }
        if parameters is not None:
            kwargs["Parameters"] = [param.model_dump(by_alias=True) for param in parameters]
        if capabilities is not None:
            kwargs["Capabilities"] = [str(getattr(cap, "value", cap)) for cap in capabilities]
        if tags is not None:
            kwargs["Tags"] = [tag.model_dump(by_alias=True) for tag in tags]
        response = await self._call("create_change_set", **kwargs)
        return CreatedChangeSet.model_validate(response)

    async def describe_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        next_token: Optional[str] = None,
    ) -> ChangeSetPage:
        kwargs: dict[str, Any] = {"StackName": stack_name, "ChangeSetName": change_set_name}
        if next_token:
            kwargs["NextToken"] = next_token
        response = await self._call("describe_change_set", **kwargs)
        return ChangeSetPage.model_validate(response)

    async def execute_change_set(self, stack_name: str, change_set_name: str) -> None:
        await self._call(
            "execute_change_set", StackName=stack_name, ChangeSetName=change_set_name
        )

    async def delete_change_set(self, stack_name: str, change_set_name: str) -> None:
        await self._call(
            "delete_change_set", StackName=stack_name, ChangeSetName=change_set_name
        )
