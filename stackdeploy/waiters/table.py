"""Live table of stack resources and recent events."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from ..models import StackEvent, StackResource, StackSnapshot, WaiterReason
from .base import WaiterContext


def render_table(header: Sequence[str], rows: Iterable[Sequence[object]]) -> Table:
    table = Table(box=None, show_edge=False, pad_edge=False, padding=(0, 1, 0, 0))
    for title in header:
        table.add_column(title, overflow="fold")
    for row in rows:
        table.add_row(*("" if value is None else str(value) for value in row))
    return table


def _age(now: datetime, timestamp: datetime) -> str:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return f"{(now - timestamp).total_seconds():.0f}s"


class TableWaiter:
    """Redraws stack status, resources and the last few events on every poll."""

    def __init__(self, console: Optional[Console] = None, event_limit: int = 5) -> None:
        self.console = console or Console()
        self.event_limit = event_limit
        self._live: Optional[Live] = None

    def render(
        self,
        stack: StackSnapshot,
        resources: List[StackResource],
        events: List[StackEvent],
        now: Optional[datetime] = None,
    ) -> Group:
        now = now or datetime.now(timezone.utc)
        resource_table = render_table(
            ["Logical", "Physical", "Type", "Status", "Reason"],
            (
                [
                    resource.logical_resource_id,
                    resource.physical_resource_id,
                    resource.resource_type,
                    resource.resource_status,
                    resource.resource_status_reason,
                ]
                for resource in resources
            ),
        )
        event_table = render_table(
            ["Age", "Logical", "Status", "Reason"],
            (
                [
                    _age(now, event.timestamp),
                    event.logical_resource_id,
                    event.resource_status,
                    event.resource_status_reason,
                ]
                for event in events[: self.event_limit]
            ),
        )
        return Group(
            Text(f"Stack status: {stack.status}: {stack.status_reason}"),
            Text("Resources:"),
            resource_table,
            Text(f"Last {self.event_limit} events:"),
            event_table,
        )

    async def progress(self, context: WaiterContext) -> None:
        stack = context.stack
        if stack is None:
            return
        resources = await context.client.describe_stack_resources(stack.stack_name)
        events = await context.client.describe_stack_events(stack.stack_name)
        renderable = self.render(stack, resources, events.events)
        if self._live is None:
            self._live = Live(renderable, console=self.console, auto_refresh=False)
            self._live.start()
        else:
            self._live.update(renderable, refresh=True)

    async def complete(self, context: WaiterContext) -> None:
        if self._live is None:
            return
        # Only the deployment's own apply stays on screen.
        if context.reason is not WaiterReason.executing:
            self._live.update(Text(""), refresh=True)
        self._live.stop()
        self._live = None
