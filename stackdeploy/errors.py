"""Errors raised when a deployment cannot proceed."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from .models import ChangeSetPage, StackSnapshot


class DeployErrorKind(str, Enum):
    invalid_status_before_update = "INVALID_STATUS_BEFORE_UPDATE"
    invalid_complete_status = "INVALID_COMPLETE_STATUS"
    change_set_not_available = "CHANGE_SET_NOT_AVAILABLE"


class DeployStackError(Exception):
    """Base class for expected deployment failures.

    Anything that is not a ``DeployStackError`` (botocore errors included) is
    an unexpected failure and is propagated untouched.
    """

    kind: DeployErrorKind


class InvalidStatusBeforeUpdateError(DeployStackError):
    """The stack exists in a status a deployment cannot start from."""

    kind = DeployErrorKind.invalid_status_before_update

    def __init__(self, stack: StackSnapshot) -> None:
        super().__init__(
            f"Stack '{stack.stack_name}' cannot be updated when it has status "
            f"{stack.status}: {stack.status_reason}"
        )
        self.stack = stack


class InvalidCompleteStatusError(DeployStackError):
    """A delete, create or update finished in an unexpected status."""

    kind = DeployErrorKind.invalid_complete_status

    def __init__(
        self,
        stack_name: str,
        stack: Optional[StackSnapshot],
        operation: str,
    ) -> None:
        if stack is None:
            message = f"Stack '{stack_name}' failed to {operation}, it no longer exists"
        else:
            message = (
                f"Stack '{stack.stack_name}' failed to {operation}, it now has status "
                f"{stack.status}: {stack.status_reason}"
            )
        super().__init__(message)
        self.stack_name = stack_name
        self.stack = stack
        self.operation = operation


class ChangeSetNotAvailableError(DeployStackError):
    """Change set creation finished but it cannot be executed."""

    kind = DeployErrorKind.change_set_not_available

    def __init__(self, change_set: ChangeSetPage) -> None:
        super().__init__(
            "Change set cannot be executed:\n"
            f"  execution status: {change_set.execution_status}\n"
            f"  status: {change_set.status}\n"
            f"  reason: {change_set.status_reason}"
        )
        self.change_set = change_set
