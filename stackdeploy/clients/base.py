"""Base client definitions for the stack-management service."""
from __future__ import annotations

from typing import List, Optional, Protocol

from ..models import (
    ChangeSetPage,
    ChangeSetType,
    CreatedChangeSet,
    Parameter,
    StackEventPage,
    StackResource,
    StackSnapshot,
    Tag,
)


class StackClient(Protocol):
    """Protocol for the remote calls a deployment needs.

    Each method maps to exactly one remote call. ``describe_stack`` returns
    ``None`` for a stack that does not exist; every other failure is raised.
    """

    region: str

    async def describe_stack(self, stack_name: str) -> Optional[StackSnapshot]:
        ...

    async def delete_stack(self, stack_name: str) -> None:
        ...

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
        ...

    async def describe_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        next_token: Optional[str] = None,
    ) -> ChangeSetPage:
        ...

    async def execute_change_set(self, stack_name: str, change_set_name: str) -> None:
        ...

    async def delete_change_set(self, stack_name: str, change_set_name: str) -> None:
        ...

    async def describe_stack_resources(self, stack_name: str) -> List[StackResource]:
        ...

    async def describe_stack_events(
        self,
        stack_name: str,
        next_token: Optional[str] = None,
    ) -> StackEventPage:
        ...
