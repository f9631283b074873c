"""Reporter that records waits as run events for the HTTP API."""
from __future__ import annotations

from typing import Optional

from ..models import StackSnapshot, StageEvent
from ..storage import RunRegistry
from .base import WaiterContext


def _detail(stack: Optional[StackSnapshot]) -> str:
    if stack is None:
        return "stack not found"
    if stack.status_reason:
        return f"{stack.status}: {stack.status_reason}"
    return stack.status


class RecordingWaiter:
    def __init__(self, registry: RunRegistry, run_id: str) -> None:
        self.registry = registry
        self.run_id = run_id

    def progress(self, context: WaiterContext) -> None:
        self.registry.append_run_event(
            self.run_id,
            StageEvent(
                stage=f"wait.{context.reason.value.lower()}",
                status="progress",
                detail=_detail(context.stack),
            ),
        )

    def complete(self, context: WaiterContext) -> None:
        stack = context.stack
        failed = stack is not None and (
            stack.status.endswith("_FAILED") or "ROLLBACK" in stack.status
        )
        self.registry.append_run_event(
            self.run_id,
            StageEvent(
                stage=f"wait.{context.reason.value.lower()}",
                status="failed" if failed else "ok",
                detail=_detail(stack),
            ),
        )
