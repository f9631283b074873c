"""Centralized constants for stack deployments.

Status strings and reasons below are part of the CloudFormation API contract
and are matched exactly.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Polling intervals (seconds)
# ---------------------------------------------------------------------------
STACK_POLL_INTERVAL = 2.0
CHANGE_SET_POLL_INTERVAL = 1.0

# ---------------------------------------------------------------------------
# Stack statuses the classifier treats specially
# ---------------------------------------------------------------------------
REVIEW_IN_PROGRESS = "REVIEW_IN_PROGRESS"
DELETE_COMPLETE = "DELETE_COMPLETE"
DELETE_OPERATION = "DELETE"
DEAD_STACK_STATUSES: frozenset[str] = frozenset({"CREATE_FAILED", "ROLLBACK_COMPLETE"})
COMPLETE_SUFFIX = "_COMPLETE"
IN_PROGRESS_SUFFIX = "_IN_PROGRESS"

# ---------------------------------------------------------------------------
# Change set statuses
# ---------------------------------------------------------------------------
CHANGE_SET_PENDING_STATUSES: frozenset[str] = frozenset({"CREATE_PENDING", "CREATE_IN_PROGRESS"})
CHANGE_SET_FAILED = "FAILED"
EXECUTION_AVAILABLE = "AVAILABLE"

# Returned as StatusReason when a change set has nothing to apply.
NO_CHANGES_REASON = (
    "The submitted information didn't contain changes. "
    "Submit different information to create a change set."
)

# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------
DEPLOY_PROMPT = "Deploy?"
CHANGE_SET_PREFIX = "deploy-"

VALID_CAPABILITIES: tuple[str, ...] = (
    "CAPABILITY_IAM",
    "CAPABILITY_NAMED_IAM",
    "CAPABILITY_AUTO_EXPAND",
)

CONSOLE_URL_TEMPLATE = (
    "https://{region}.console.aws.amazon.com/cloudformation/home"
    "?region={region}#/changeset/detail?{query}"
)

# Sizing floor for event log columns.
ROOT_RESOURCE_TYPE = "AWS::CloudFormation::Stack"
