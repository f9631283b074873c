"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Tuple
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from stackdeploy.app import app
from stackdeploy.constants import NO_CHANGES_REASON
from stackdeploy.deploy import StackDeployer
from stackdeploy.models import (
    Change,
    ChangeSetPage,
    ChangeSetType,
    CreatedChangeSet,
    ResourceChange,
    StackEventPage,
    StackOutput,
    StackResource,
    StackSnapshot,
)
from stackdeploy.prompt import auto_confirm
from stackdeploy.storage import RunRegistry
from stackdeploy.waiters.base import WaiterContext

STACK_NAME = "my-stack"
STACK_ID = "arn:aws:cloudformation:us-east-1:123456789012:stack/my-stack/abc"
CHANGE_SET_ID = "arn:aws:cloudformation:us-east-1:123456789012:changeSet/deploy-1/def"
FIXED_NOW = datetime(2024, 5, 1, 10, 20, 30, 123000, tzinfo=timezone.utc)


def make_stack(
    status: str,
    reason: Optional[str] = None,
    outputs: Optional[Dict[str, str]] = None,
    name: str = STACK_NAME,
) -> StackSnapshot:
    return StackSnapshot(
        stack_name=name,
        stack_id=STACK_ID,
        status=status,
        status_reason=reason,
        outputs=[StackOutput(key=k, value=v) for k, v in (outputs or {}).items()],
    )


def make_change(action: str, logical_id: str, resource_type: str) -> Change:
    return Change(
        resource_change=ResourceChange(
            action=action,
            logical_resource_id=logical_id,
            resource_type=resource_type,
        )
    )


def make_page(
    status: str = "CREATE_COMPLETE",
    execution_status: Optional[str] = "AVAILABLE",
    changes: Optional[List[Change]] = None,
    next_token: Optional[str] = None,
    reason: Optional[str] = None,
) -> ChangeSetPage:
    return ChangeSetPage(
        change_set_id=CHANGE_SET_ID,
        change_set_name="deploy-1",
        stack_id=STACK_ID,
        status=status,
        execution_status=execution_status,
        status_reason=reason,
        changes=changes or [],
        next_token=next_token,
    )


def no_changes_page() -> ChangeSetPage:
    return make_page(status="FAILED", execution_status="UNAVAILABLE", reason=NO_CHANGES_REASON)


class FakeStackClient:
    """Scripted in-memory stack client.

    ``stacks`` and ``pages`` are consumed one per describe call; the last
    entry keeps being returned once the script runs out. Every call is
    appended to ``calls`` as ``(operation, args)``.
    """

    def __init__(
        self,
        stacks: Optional[List[Optional[StackSnapshot]]] = None,
        pages: Optional[List[ChangeSetPage]] = None,
        region: str = "us-east-1",
    ) -> None:
        self.region = region
        self.stacks: List[Optional[StackSnapshot]] = list(stacks or [None])
        self.pages: List[ChangeSetPage] = list(pages or [make_page()])
        self.resources: List[StackResource] = []
        self.event_pages: Dict[Optional[str], StackEventPage] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def _record(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        if operation in self.errors:
            raise self.errors[operation]

    def operations(self) -> List[str]:
        return [operation for operation, _ in self.calls]

    def calls_to(self, operation: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    async def describe_stack(self, stack_name: str) -> Optional[StackSnapshot]:
        self._record("describe_stack", stack_name=stack_name)
        if len(self.stacks) > 1:
            return self.stacks.pop(0)
        return self.stacks[0]

    async def delete_stack(self, stack_name: str) -> None:
        self._record("delete_stack", stack_name=stack_name)

    async def create_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        change_set_type: ChangeSetType,
        template_body: str,
        parameters=None,
        capabilities=None,
        tags=None,
    ) -> CreatedChangeSet:
        self._record(
            "create_change_set",
            stack_name=stack_name,
            change_set_name=change_set_name,
            change_set_type=change_set_type,
            template_body=template_body,
            parameters=parameters,
            capabilities=capabilities,
            tags=tags,
        )
        return CreatedChangeSet(id=CHANGE_SET_ID, stack_id=STACK_ID)

    async def describe_change_set(
        self, stack_name: str, change_set_name: str, next_token: Optional[str] = None
    ) -> ChangeSetPage:
        self._record(
            "describe_change_set",
            stack_name=stack_name,
            change_set_name=change_set_name,
            next_token=next_token,
        )
        if len(self.pages) > 1:
            return self.pages.pop(0)
        return self.pages[0]

    async def execute_change_set(self, stack_name: str, change_set_name: str) -> None:
        self._record("execute_change_set", stack_name=stack_name, change_set_name=change_set_name)

    async def delete_change_set(self, stack_name: str, change_set_name: str) -> None:
        self._record("delete_change_set", stack_name=stack_name, change_set_name=change_set_name)

    async def describe_stack_resources(self, stack_name: str) -> List[StackResource]:
        self._record("describe_stack_resources", stack_name=stack_name)
        return list(self.resources)

    async def describe_stack_events(
        self, stack_name: str, next_token: Optional[str] = None
    ) -> StackEventPage:
        self._record("describe_stack_events", stack_name=stack_name, next_token=next_token)
        return self.event_pages.get(next_token, StackEventPage())


class CollectingWaiter:
    """Records every progress and complete call."""

    def __init__(self) -> None:
        self.seen: List[Tuple[str, WaiterContext]] = []

    def progress(self, context: WaiterContext) -> None:
        self.seen.append(("progress", context))

    def complete(self, context: WaiterContext) -> None:
        self.seen.append(("complete", context))

    def reasons(self, kind: str) -> List[str]:
        return [context.reason.value for seen_kind, context in self.seen if seen_kind == kind]


@pytest.fixture
def fake_client() -> FakeStackClient:
    return FakeStackClient()


@pytest.fixture
def waiter() -> CollectingWaiter:
    return CollectingWaiter()


@pytest.fixture
def deployer(fake_client: FakeStackClient, waiter: CollectingWaiter) -> StackDeployer:
    """Deployer with zero poll intervals and a fixed clock."""
    return StackDeployer(
        client=fake_client,
        waiter=waiter,
        prompt=auto_confirm,
        stack_poll_interval=0,
        change_set_poll_interval=0,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def registry() -> RunRegistry:
    return RunRegistry()


@pytest.fixture
def api_client(
    fake_client: FakeStackClient, registry: RunRegistry
) -> Generator[TestClient, None, None]:
    """Test client whose deployments run against ``fake_client``."""
    # Patch the module-level objects used by app routes
    with patch("stackdeploy.app.registry", registry), patch(
        "stackdeploy.app.client_factory", lambda region, endpoint_url: fake_client
    ), patch("stackdeploy.app.STACK_POLL_INTERVAL", 0), patch(
        "stackdeploy.app.CHANGE_SET_POLL_INTERVAL", 0
    ):
        with TestClient(app) as client:
            yield client
