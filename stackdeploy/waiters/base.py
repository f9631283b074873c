"""Progress reporter contract used while a deployment waits on the stack."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, List, Optional, Protocol, Union

from ..clients.base import StackClient
from ..models import Change, StackSnapshot, WaiterReason


@dataclass
class WaiterContext:
    """Snapshot handed to a reporter on every poll."""

    client: StackClient
    reason: WaiterReason
    stack_name: str
    stack: Optional[StackSnapshot]
    # Only set once the change set's changes have been collected.
    changes: Optional[List[Change]] = None


class StackWaiter(Protocol):
    """Receives progress ticks and one completion per waiting phase.

    Either method may be a coroutine function; the deployer awaits each call
    before polling again, so a reporter never renders concurrently with itself.
    """

    def progress(self, context: WaiterContext) -> Union[None, Awaitable[None]]:
        ...

    def complete(self, context: WaiterContext) -> Union[None, Awaitable[None]]:
        ...
