"""FastAPI entrypoint for starting deployments and following their progress."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional
from uuid import uuid4

from fastapi import BackgroundTasks, FastAPI, HTTPException
from sse_starlette.sse import EventSourceResponse

from .clients.base import StackClient
from .clients.cloudformation import CloudFormationClient
from .constants import CHANGE_SET_POLL_INTERVAL, STACK_POLL_INTERVAL
from .deploy import StackDeployer
from .errors import DeployStackError
from .models import (
    DeploymentAccepted,
    DeploymentRequest,
    DeployRequest,
    Parameter,
    RunRecord,
    StageEvent,
    Tag,
)
from .prompt import fixed_answer
from .rendering import TemplateRenderer
from .storage import RunRegistry
from .waiters.recording import RecordingWaiter

log = logging.getLogger(__name__)

app = FastAPI(title="Stack Deploy", version="0.1.0")
registry = RunRegistry()
renderer = TemplateRenderer()


def client_factory(region: Optional[str], endpoint_url: Optional[str]) -> StackClient:
    return CloudFormationClient.from_session(region=region, endpoint_url=endpoint_url)


async def run_deployment(run_id: str, request: DeploymentRequest) -> None:
    """Drive one deployment and record its outcome on the run."""
    registry.append_run_event(run_id, StageEvent(stage="deploy", status="started"))
    try:
        template_body = renderer.render(request.template_body, request.template_vars)
        deployer = StackDeployer(
            client=client_factory(request.region, request.endpoint_url),
            waiter=RecordingWaiter(registry, run_id),
            prompt=fixed_answer(request.approve),
            stack_poll_interval=STACK_POLL_INTERVAL,
            change_set_poll_interval=CHANGE_SET_POLL_INTERVAL,
        )
        result = await deployer.deploy(
            DeployRequest(
                stack_name=request.stack_name,
                template_body=template_body,
                parameters=[Parameter(key=k, value=v) for k, v in request.parameters.items()],
                capabilities=request.capabilities,
                tags=[Tag(key=k, value=v) for k, v in request.tags.items()],
            )
        )
    except DeployStackError as exc:
        registry.append_run_event(
            run_id, StageEvent(stage="deploy", status="failed", detail=exc.kind.value)
        )
        registry.finalize_run(run_id, ok=False, summary=str(exc))
        return
    except Exception as exc:
        log.exception("Deployment %s failed", run_id)
        registry.append_run_event(
            run_id, StageEvent(stage="deploy", status="failed", detail=type(exc).__name__)
        )
        registry.finalize_run(run_id, ok=False, summary=str(exc))
        return

    registry.append_run_event(
        run_id, StageEvent(stage="deploy", status="ok", detail=result.outcome.value)
    )
    registry.finalize_run(
        run_id,
        ok=True,
        summary=f"{result.outcome.value} ({result.change_set_name})",
        outcome=result.outcome,
        changes=result.changes,
        outputs=result.outputs,
    )


@app.post("/api/deployments", response_model=DeploymentAccepted, status_code=202)
def start_deployment(
    request: DeploymentRequest, background_tasks: BackgroundTasks
) -> DeploymentAccepted:
    """Start a deployment; ``approve=false`` only reviews the change set."""
    run_id = str(uuid4())
    registry.start_run(run_id, request.stack_name)
    background_tasks.add_task(run_deployment, run_id, request)
    return DeploymentAccepted(run_id=run_id)


@app.get(
    "/api/deployments/{run_id}", response_model=RunRecord, response_model_by_alias=False
)
def get_deployment(run_id: str) -> RunRecord:
    record = registry.get_run(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail="run_not_found")
    return record


def _sse(event: str, payload: Any) -> Dict[str, Any]:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return {"event": event, "data": data}


async def run_event_stream(run_id: str, interval: float = 0.5) -> AsyncIterator[Dict[str, Any]]:
    """Replay the run's stage events, then follow it until it is finalized.

    The last message is either ``status`` (with the outcome and summary) or
    ``error`` when the run id is unknown.
    """
    record = registry.get_run(run_id)
    if record is None:
        yield _sse("error", {"message": "run_not_found"})
        return

    cursor = 0
    while True:
        for event in record.events[cursor:]:
            yield _sse("stage", event.model_dump_json())
        cursor = len(record.events)

        if record.ok is not None:
            outcome = record.outcome.value if record.outcome is not None else None
            yield _sse(
                "status",
                {"ok": record.ok, "outcome": outcome, "summary": record.summary or ""},
            )
            return

        await asyncio.sleep(interval)
        # get_run returns a copy.
        record = registry.get_run(run_id) or record


@app.get("/api/deployments/{run_id}/events")
async def stream_run_events(run_id: str) -> EventSourceResponse:
    """Stream deployment events for a given run identifier."""
    return EventSourceResponse(run_event_stream(run_id))
