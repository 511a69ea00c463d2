from __future__ import annotations

from app.domain.models import HandleResult, InboundMessage, KeyEventType
from app.domain.state_machine import KeyOperation
from app.workers.handlers.common import apply_decision, decide_and_apply, load_claim, load_record, short_circuit
from app.workers.handlers.deps import WorkerDeps
from app.workers.schemas import parse_payload

COMPONENT_ID_OPENED = "worker.portability_request_cancel_opened.process_message"
COMPONENT_ID_STARTED = "worker.portability_request_cancel_started.process_message"
OPENED_EVENT_TYPE = KeyEventType.PORTABILITY_REQUEST_CANCEL_OPENED
STARTED_EVENT_TYPE = KeyEventType.PORTABILITY_REQUEST_CANCEL_STARTED


async def process_opened(deps: WorkerDeps, *, message: InboundMessage) -> HandleResult:
    """Ask the directory to cancel a portability claim against one of our keys.

    Replays against a record that already moved on are dropped silently.
    """
    payload = parse_payload(message)
    record = await load_record(deps, payload.id)
    skipped = short_circuit(deps, KeyOperation.PORTABILITY_REQUEST_CANCEL_OPENED, record)
    if skipped is not None:
        return skipped

    claim = await load_claim(deps, record, required=True)
    return await decide_and_apply(
        deps,
        message=message,
        decide=deps.machine.portability_request_cancel_opened(record, claim=claim, reason=payload.reason),
    )


async def process_started(deps: WorkerDeps, *, message: InboundMessage) -> HandleResult:
    payload = parse_payload(message)
    record = await load_record(deps, payload.id)
    skipped = short_circuit(deps, KeyOperation.PORTABILITY_REQUEST_CANCEL_STARTED, record)
    if skipped is not None:
        return skipped

    claim = await load_claim(deps, record, required=False)
    return await apply_decision(
        deps,
        deps.machine.portability_request_cancel_started(record, claim=claim, reason=payload.reason),
    )
