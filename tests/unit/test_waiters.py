"""Tests for progress reporters."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from io import StringIO
from pathlib import Path
from typing import Optional

import pytest
from rich.console import Console

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from conftest import STACK_NAME, FakeStackClient, make_change, make_stack
from stackdeploy.models import StackEvent, StackEventPage, StackResource, WaiterReason
from stackdeploy.storage import RunRegistry
from stackdeploy.waiters.base import WaiterContext
from stackdeploy.waiters.event_log import EventLogWaiter, iso_timestamp, max_length
from stackdeploy.waiters.recording import RecordingWaiter
from stackdeploy.waiters.table import TableWaiter

T0 = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


def _console() -> Console:
    return Console(file=StringIO(), width=200, color_system=None)


def _event(seconds: int, logical_id: str, status: str, reason: Optional[str] = None) -> StackEvent:
    return StackEvent(
        event_id=f"{logical_id}-{seconds}",
        stack_name=STACK_NAME,
        logical_resource_id=logical_id,
        resource_type="AWS::S3::Bucket",
        timestamp=T0 + timedelta(seconds=seconds),
        resource_status=status,
        resource_status_reason=reason,
    )


def _resource(logical_id: str, resource_type: str = "AWS::S3::Bucket") -> StackResource:
    return StackResource(
        logical_resource_id=logical_id,
        physical_resource_id=f"{logical_id.lower()}-physical",
        resource_type=resource_type,
        resource_status="CREATE_IN_PROGRESS",
    )


def _context(client: FakeStackClient, reason: WaiterReason, status: Optional[str] = "CREATE_IN_PROGRESS",
             changes=None) -> WaiterContext:
    return WaiterContext(
        client=client,
        reason=reason,
        stack_name=STACK_NAME,
        stack=make_stack(status, "User Initiated") if status else None,
        changes=changes,
    )


class TestTableWaiter:
    """Tests for the live table reporter."""

    def test_render_layout(self):
        """The table shows status, resources and the latest events."""
        console = _console()
        waiter = TableWaiter(console=console)
        events = [_event(-30, "Bucket", "CREATE_IN_PROGRESS", "Resource creation Initiated")]

        console.print(
            waiter.render(
                make_stack("CREATE_IN_PROGRESS", "User Initiated"),
                [_resource("Bucket")],
                events,
                now=T0,
            )
        )

        output = console.file.getvalue()
        assert "Stack status: CREATE_IN_PROGRESS: User Initiated" in output
        assert "Resources:" in output
        assert "bucket-physical" in output
        assert "Last 5 events:" in output
        assert "30s" in output
        assert "Resource creation Initiated" in output

    def test_render_limits_events(self):
        """Only the configured number of events is rendered."""
        console = _console()
        waiter = TableWaiter(console=console, event_limit=2)
        events = [_event(-i, f"Res{i}", "CREATE_COMPLETE") for i in range(4)]

        console.print(waiter.render(make_stack("CREATE_IN_PROGRESS"), [], events, now=T0))

        output = console.file.getvalue()
        assert "Res0" in output and "Res1" in output
        assert "Res2" not in output

    @pytest.mark.asyncio
    async def test_missing_stack_skipped(self):
        """Nothing is fetched or drawn while the stack does not exist."""
        client = FakeStackClient()
        waiter = TableWaiter(console=_console())

        await waiter.progress(_context(client, WaiterReason.delete_existing, status=None))

        assert client.calls == []
        assert waiter._live is None

    @pytest.mark.asyncio
    async def test_executing_display_kept(self):
        """The executing wait leaves its final table on screen."""
        client = FakeStackClient()
        client.resources = [_resource("Bucket")]
        client.event_pages[None] = StackEventPage(events=[_event(0, "Bucket", "CREATE_COMPLETE")])
        console = _console()
        waiter = TableWaiter(console=console)

        await waiter.progress(_context(client, WaiterReason.executing))
        await waiter.progress(_context(client, WaiterReason.executing))
        await waiter.complete(_context(client, WaiterReason.executing, "CREATE_COMPLETE"))

        assert waiter._live is None
        assert client.operations() == [
            "describe_stack_resources",
            "describe_stack_events",
            "describe_stack_resources",
            "describe_stack_events",
        ]
        assert "bucket-physical" in console.file.getvalue()

    @pytest.mark.asyncio
    async def test_pre_deploy_display_cleared(self):
        """Waits before the deployment clear their display when done."""
        client = FakeStackClient()
        client.resources = [_resource("Bucket")]
        console = _console()
        waiter = TableWaiter(console=console)

        await waiter.progress(_context(client, WaiterReason.in_progress_existing))
        await waiter.complete(_context(client, WaiterReason.in_progress_existing, "UPDATE_COMPLETE"))

        assert waiter._live is None
        assert "bucket-physical" not in console.file.getvalue()


class TestEventLogWaiter:
    """Tests for the event log reporter."""

    def test_iso_timestamp(self):
        """Timestamps are printed in UTC with milliseconds."""
        value = datetime(2024, 5, 1, 12, 0, 0, 5000, tzinfo=timezone(timedelta(hours=2)))
        assert iso_timestamp(value) == "2024-05-01T10:00:00.005Z"

    def test_max_length(self):
        assert max_length(["a", None, "abc"], 2) == 3
        assert max_length([], 5) == 5

    @pytest.mark.asyncio
    async def test_prints_only_new_events_oldest_first(self):
        """History before the reporter started is skipped."""
        client = FakeStackClient()
        client.event_pages[None] = StackEventPage(
            events=[
                _event(2, "Bucket", "CREATE_COMPLETE"),
                _event(1, "Bucket", "CREATE_IN_PROGRESS", "Resource creation Initiated"),
                _event(-10, "Old", "DELETE_COMPLETE"),
            ]
        )
        console = _console()
        waiter = EventLogWaiter(console=console, now=T0)
        changes = [make_change("Add", "Bucket", "AWS::S3::Bucket")]

        await waiter.progress(_context(client, WaiterReason.executing, changes=changes))

        lines = console.file.getvalue().splitlines()
        assert len(lines) == 2
        assert "CREATE_IN_PROGRESS" in lines[0]
        assert lines[0].endswith("Resource creation Initiated")
        assert "CREATE_COMPLETE" in lines[1]
        assert lines[0].startswith("2024-05-01T10:00:01.000Z | ")
        assert "Old" not in console.file.getvalue()
        assert waiter.last_event_printed == T0 + timedelta(seconds=2)
        # Widths come from the change list, never from the resources call.
        assert "describe_stack_resources" not in client.operations()

    @pytest.mark.asyncio
    async def test_events_not_repeated(self):
        """A second poll prints nothing already shown."""
        client = FakeStackClient()
        client.event_pages[None] = StackEventPage(events=[_event(1, "Bucket", "CREATE_COMPLETE")])
        console = _console()
        waiter = EventLogWaiter(console=console, now=T0)

        await waiter.progress(_context(client, WaiterReason.executing, changes=[]))
        await waiter.progress(_context(client, WaiterReason.executing, changes=[]))

        assert len(console.file.getvalue().splitlines()) == 1

    @pytest.mark.asyncio
    async def test_pages_back_until_printed(self):
        """Older pages are read only until they reach printed events."""
        client = FakeStackClient()
        client.event_pages[None] = StackEventPage(
            events=[_event(5, "A", "CREATE_COMPLETE"), _event(4, "B", "CREATE_COMPLETE")],
            next_token="p2",
        )
        client.event_pages["p2"] = StackEventPage(
            events=[_event(3, "C", "CREATE_COMPLETE"), _event(-1, "D", "CREATE_COMPLETE")],
            next_token="p3",
        )
        console = _console()
        waiter = EventLogWaiter(console=console, now=T0)

        await waiter.progress(_context(client, WaiterReason.executing, changes=[]))

        tokens = [call["next_token"] for call in client.calls_to("describe_stack_events")]
        assert tokens == [None, "p2"]
        ids = [line.split(" | ")[2].strip() for line in console.file.getvalue().splitlines()]
        assert ids == ["C", "B", "A"]

    @pytest.mark.asyncio
    async def test_widths_from_resources_without_changes(self):
        """Without a change list the columns are sized from stack resources."""
        client = FakeStackClient()
        client.resources = [_resource("AVeryLongLogicalResourceIdentifier", "Custom::Thing")]
        waiter = EventLogWaiter(console=_console(), now=T0)

        await waiter.progress(_context(client, WaiterReason.in_progress_existing))

        assert waiter.id_width == len("AVeryLongLogicalResourceIdentifier")
        assert waiter.type_width == len("AWS::CloudFormation::Stack")

    @pytest.mark.asyncio
    async def test_complete_prints_wait_line(self):
        """Completion prints the reason it was waiting for."""
        client = FakeStackClient()
        console = _console()
        waiter = EventLogWaiter(console=console, now=T0)

        await waiter.complete(_context(client, WaiterReason.delete_existing, status=None))

        assert console.file.getvalue().strip() == "Waiting for DELETE_EXISTING complete"
        assert client.calls == []


class TestRecordingWaiter:
    """Tests for the run-record reporter."""

    def test_records_progress_and_outcome(self):
        registry = RunRegistry()
        registry.start_run("run-1", STACK_NAME)
        waiter = RecordingWaiter(registry, "run-1")
        client = FakeStackClient()

        waiter.progress(_context(client, WaiterReason.executing))
        waiter.complete(_context(client, WaiterReason.executing, "CREATE_COMPLETE"))

        events = registry.get_run("run-1").events
        assert [(e.stage, e.status) for e in events] == [
            ("wait.executing", "progress"),
            ("wait.executing", "ok"),
        ]
        assert events[0].detail == "CREATE_IN_PROGRESS: User Initiated"

    @pytest.mark.parametrize("status", ["UPDATE_ROLLBACK_COMPLETE", "DELETE_FAILED"])
    def test_failed_completion(self, status: str):
        """Rollbacks and failures are recorded as failed."""
        registry = RunRegistry()
        registry.start_run("run-1", STACK_NAME)
        waiter = RecordingWaiter(registry, "run-1")

        waiter.complete(_context(FakeStackClient(), WaiterReason.delete_existing, status))

        event = registry.get_run("run-1").events[0]
        assert event.stage == "wait.delete_existing"
        assert event.status == "failed"

    def test_missing_stack_detail(self):
        registry = RunRegistry()
        registry.start_run("run-1", STACK_NAME)
        waiter = RecordingWaiter(registry, "run-1")

        waiter.complete(_context(FakeStackClient(), WaiterReason.delete_existing, status=None))

        event = registry.get_run("run-1").events[0]
        assert event.status == "ok"
        assert event.detail == "stack not found"
