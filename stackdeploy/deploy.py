"""Change-set based stack deployment.

A deployment classifies the current stack, creates a change set, waits for it
to be computed, asks for confirmation, executes it and then polls the stack
until the operation settles. Every wait reports to an optional ``StackWaiter``.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional
from urllib.parse import urlencode

from .clients.base import StackClient
from .constants import (
    CHANGE_SET_FAILED,
    CHANGE_SET_PENDING_STATUSES,
    CHANGE_SET_POLL_INTERVAL,
    CHANGE_SET_PREFIX,
    COMPLETE_SUFFIX,
    CONSOLE_URL_TEMPLATE,
    DEAD_STACK_STATUSES,
    DELETE_COMPLETE,
    DELETE_OPERATION,
    DEPLOY_PROMPT,
    EXECUTION_AVAILABLE,
    IN_PROGRESS_SUFFIX,
    NO_CHANGES_REASON,
    REVIEW_IN_PROGRESS,
    STACK_POLL_INTERVAL,
)
from .errors import (
    ChangeSetNotAvailableError,
    InvalidCompleteStatusError,
    InvalidStatusBeforeUpdateError,
)
from .models import (
    Change,
    ChangeSetPage,
    ChangeSetType,
    DeployOutcome,
    DeployRequest,
    DeployResult,
    StackSnapshot,
    WaiterReason,
)
from .prompt import Prompt, create_prompt
from .waiters.base import StackWaiter, WaiterContext

log = logging.getLogger(__name__)


class Disposition(str, Enum):
    """What the current stack status means for a new deployment."""

    fresh = "FRESH"
    dead = "DEAD"
    existing = "EXISTING"
    busy = "BUSY"


def classify_stack(stack: Optional[StackSnapshot]) -> Disposition:
    """Map a stack snapshot to the action a deployment must take first.

    Raises ``InvalidStatusBeforeUpdateError`` for statuses no deployment can
    start from (e.g. ``UPDATE_ROLLBACK_FAILED``).
    """
    if stack is None or stack.status == REVIEW_IN_PROGRESS:
        return Disposition.fresh
    if stack.status == DELETE_COMPLETE:
        return Disposition.fresh
    if stack.status in DEAD_STACK_STATUSES:
        return Disposition.dead
    if stack.status.endswith(COMPLETE_SUFFIX):
        return Disposition.existing
    if stack.status.endswith(IN_PROGRESS_SUFFIX):
        return Disposition.busy
    raise InvalidStatusBeforeUpdateError(stack)


def change_set_name(now: Optional[datetime] = None) -> str:
    """Build a change set name from a UTC timestamp, e.g. ``deploy-2024-05-01T10-20-30-123Z``."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return CHANGE_SET_PREFIX + re.sub(r"[^-A-Za-z0-9]", "-", stamp)


def review_url(region: str, change_set_id: str, stack_id: str) -> str:
    """Console link where the change set can be inspected."""
    query = urlencode({"changeSetId": change_set_id, "stackId": stack_id})
    return CONSOLE_URL_TEMPLATE.format(region=region, query=query)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class _Attempt:
    change_set_type: ChangeSetType
    change_set_name: str
    change_set_id: Optional[str] = None
    stack_id: Optional[str] = None
    review_url: Optional[str] = None
    changes: Optional[List[Change]] = None


@dataclass
class StackDeployer:
    client: StackClient
    waiter: Optional[StackWaiter] = None
    prompt: Optional[Prompt] = None
    stack_poll_interval: float = STACK_POLL_INTERVAL
    change_set_poll_interval: float = CHANGE_SET_POLL_INTERVAL
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.prompt is None:
            self.prompt = create_prompt()

    async def deploy(self, request: DeployRequest) -> DeployResult:
        stack_name = request.stack_name
        change_set_type = await self._resolve_change_set_type(stack_name)

        # CreateChangeSet rejects an empty capability list.
        capabilities = [cap.value for cap in request.capabilities] if request.capabilities else None

        attempt = _Attempt(
            change_set_type=change_set_type,
            change_set_name=change_set_name(self.clock()),
        )
        log.info("Creating change set %s (%s)", attempt.change_set_name, change_set_type.value)
        created = await self.client.create_change_set(
            stack_name,
            attempt.change_set_name,
            change_set_type,
            request.template_body,
            parameters=request.parameters,
            capabilities=capabilities,
            tags=request.tags,
        )
        attempt.change_set_id = created.id
        attempt.stack_id = created.stack_id
        attempt.review_url = review_url(self.client.region, created.id, created.stack_id)
        log.info("Created change set %s", created.id)
        log.info("Review at %s", attempt.review_url)

        page = await self._wait_for_change_set(stack_name, attempt.change_set_name)

        if page.execution_status != EXECUTION_AVAILABLE:
            if page.status == CHANGE_SET_FAILED and page.status_reason == NO_CHANGES_REASON:
                log.info("No changes")
                await self._delete_change_set(stack_name, attempt.change_set_name)
                return self._result(stack_name, attempt, DeployOutcome.no_changes)
            raise ChangeSetNotAvailableError(page)

        attempt.changes = await self._collect_changes(stack_name, attempt.change_set_name, page)
        log.info(
            "Changes:\n%s",
            "\n".join(f"  {change.describe()}" for change in attempt.changes) or "  (none)",
        )

        if not await _maybe_await(self.prompt(DEPLOY_PROMPT)):
            await self._delete_change_set(stack_name, attempt.change_set_name)
            return self._result(stack_name, attempt, DeployOutcome.skipped)

        log.info("Executing change set...")
        await self.client.execute_change_set(stack_name, attempt.change_set_name)

        stack = await self._wait_until_done(stack_name, WaiterReason.executing, attempt.changes)
        expected = f"{change_set_type.value}{COMPLETE_SUFFIX}"
        if stack is None or stack.status != expected:
            raise InvalidCompleteStatusError(stack_name, stack, change_set_type.value)

        outputs = stack.output_map()
        if outputs:
            log.info("Outputs:")
            for key, value in outputs.items():
                log.info("  %s: %s", key, value)

        return self._result(
            stack_name,
            attempt,
            DeployOutcome.deployed,
            stack_status=stack.status,
            outputs=outputs,
        )

    # ------------------------------------------------------------------ helpers

    async def _resolve_change_set_type(self, stack_name: str) -> ChangeSetType:
        while True:
            stack = await self.client.describe_stack(stack_name)
            disposition = classify_stack(stack)

            if disposition is Disposition.fresh:
                if stack is not None and stack.status == DELETE_COMPLETE:
                    log.info("Stack was deleted, creating new...")
                else:
                    log.info("Stack does not exist, creating new...")
                return ChangeSetType.create

            if disposition is Disposition.dead:
                log.info("Stack failed to create, replacing...")
                log.info("Deleting stack %s", stack_name)
                await self.client.delete_stack(stack_name)
                stack = await self._wait_until_done(stack_name, WaiterReason.delete_existing)
                if stack is not None and stack.status != DELETE_COMPLETE:
                    raise InvalidCompleteStatusError(stack_name, stack, DELETE_OPERATION)
                return ChangeSetType.create

            if disposition is Disposition.existing:
                log.info("Stack exists with status %s, updating existing...", stack.status)
                return ChangeSetType.update

            log.info("Stack is in progress with status %s, waiting...", stack.status)
            await self._wait_until_done(stack_name, WaiterReason.in_progress_existing)

    async def _wait_for_change_set(self, stack_name: str, name: str) -> ChangeSetPage:
        while True:
            await asyncio.sleep(self.change_set_poll_interval)
            page = await self.client.describe_change_set(stack_name, name)
            if page.status not in CHANGE_SET_PENDING_STATUSES:
                return page

    async def _collect_changes(
        self, stack_name: str, name: str, first_page: ChangeSetPage
    ) -> List[Change]:
        changes = list(first_page.changes)
        page = first_page
        while page.next_token:
            page = await self.client.describe_change_set(stack_name, name, page.next_token)
            changes.extend(page.changes)
        return changes

    async def _wait_until_done(
        self,
        stack_name: str,
        reason: WaiterReason,
        changes: Optional[List[Change]] = None,
    ) -> Optional[StackSnapshot]:
        while True:
            await asyncio.sleep(self.stack_poll_interval)
            stack = await self.client.describe_stack(stack_name)
            context = WaiterContext(
                client=self.client,
                reason=reason,
                stack_name=stack_name,
                stack=stack,
                changes=changes,
            )
            if self.waiter is not None:
                await _maybe_await(self.waiter.progress(context))
            if stack is None or not stack.status.endswith(IN_PROGRESS_SUFFIX):
                break
        if self.waiter is not None:
            await _maybe_await(self.waiter.complete(context))
        return stack

    async def _delete_change_set(self, stack_name: str, name: str) -> None:
        log.info("Deleting change set...")
        await self.client.delete_change_set(stack_name, name)

    @staticmethod
    def _result(
        stack_name: str,
        attempt: _Attempt,
        outcome: DeployOutcome,
        stack_status: Optional[str] = None,
        outputs: Optional[dict[str, str]] = None,
    ) -> DeployResult:
        return DeployResult(
            stack_name=stack_name,
            outcome=outcome,
            change_set_type=attempt.change_set_type,
            change_set_name=attempt.change_set_name,
            change_set_id=attempt.change_set_id,
            stack_id=attempt.stack_id,
            review_url=attempt.review_url,
            stack_status=stack_status,
            changes=attempt.changes or [],
            outputs=outputs or {},
        )


async def deploy_stack(
    client: StackClient,
    request: DeployRequest,
    waiter: Optional[StackWaiter] = None,
    prompt: Optional[Prompt] = None,
) -> DeployResult:
    """Run a single deployment with default poll intervals."""
    deployer = StackDeployer(client=client, waiter=waiter, prompt=prompt)
    return await deployer.deploy(request)
