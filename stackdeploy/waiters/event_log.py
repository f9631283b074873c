"""Progress reporter that prints new stack events as log lines."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from rich.console import Console

from ..constants import ROOT_RESOURCE_TYPE
from ..models import StackEvent
from .base import WaiterContext

STATUS_WIDTH = 18


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_timestamp(value: datetime) -> str:
    """``2024-05-01T10:20:30.123Z`` style timestamp."""
    value = _as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def max_length(values: Iterable[Optional[str]], minimum: int = 0) -> int:
    return max([minimum, *(len(value) for value in values if value)])


class EventLogWaiter:
    """Prints each stack event once, oldest first.

    Only events newer than ``last_event_printed`` are shown; it starts at the
    time the reporter is built so history from earlier deployments is skipped.
    """

    def __init__(self, console: Optional[Console] = None, now: Optional[datetime] = None) -> None:
        self.console = console or Console(highlight=False)
        self.last_event_printed = _as_utc(now or datetime.now(timezone.utc))
        self.type_width: Optional[int] = None
        self.id_width: Optional[int] = None

    async def progress(self, context: WaiterContext) -> None:
        await self._print_new_events(context)

    async def complete(self, context: WaiterContext) -> None:
        await self._print_new_events(context)
        self.console.print(
            f"Waiting for {context.reason.value} complete", markup=False, soft_wrap=True
        )

    def format_event(self, event: StackEvent) -> str:
        return " | ".join(
            [
                iso_timestamp(event.timestamp).ljust(24),
                (event.resource_type or "").ljust(self.type_width or 0),
                (event.logical_resource_id or "").ljust(self.id_width or 0),
                (event.resource_status or "").ljust(STATUS_WIDTH),
                event.resource_status_reason or "",
            ]
        )

    async def _size_columns(self, context: WaiterContext) -> None:
        if self.id_width is not None:
            return
        if context.changes is not None:
            resource_changes = [
                change.resource_change
                for change in context.changes
                if change.type == "Resource" and change.resource_change is not None
            ]
            types = [rc.resource_type for rc in resource_changes]
            ids = [rc.logical_resource_id for rc in resource_changes]
        elif context.stack is not None:
            resources = await context.client.describe_stack_resources(context.stack_name)
            types = [resource.resource_type for resource in resources]
            ids = [resource.logical_resource_id for resource in resources]
        else:
            types, ids = [], []
        self.type_width = max_length(types, len(ROOT_RESOURCE_TYPE))
        self.id_width = max_length(ids, len(context.stack_name))

    async def _print_new_events(self, context: WaiterContext) -> None:
        if context.stack is None:
            return
        await self._size_columns(context)

        first_read: Optional[datetime] = None
        last_read: Optional[datetime] = None
        next_token: Optional[str] = None
        new_events: List[StackEvent] = []

        while True:
            page = await context.client.describe_stack_events(context.stack_name, next_token)
            if page.events:
                if first_read is None:
                    first_read = _as_utc(page.events[0].timestamp)
                last_read = _as_utc(page.events[-1].timestamp)
                new_events.extend(
                    event
                    for event in page.events
                    if _as_utc(event.timestamp) > self.last_event_printed
                )
            next_token = page.next_token
            # Pages run newest to oldest; stop once a page reaches printed events.
            if not next_token or last_read is None or last_read <= self.last_event_printed:
                break

        for event in reversed(new_events):
            self.console.print(self.format_event(event), markup=False, soft_wrap=True)

        if first_read is not None and first_read > self.last_event_printed:
            self.last_event_printed = first_read
