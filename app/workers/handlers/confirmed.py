from __future__ import annotations

from app.domain.models import HandleResult, InboundMessage, KeyEventType
from app.domain.state_machine import KeyOperation
from app.workers.handlers.common import decide_and_apply, load_record, short_circuit
from app.workers.handlers.deps import WorkerDeps
from app.workers.schemas import parse_payload

COMPONENT_ID = "worker.confirmed.process_message"
EVENT_TYPE = KeyEventType.CONFIRMED


async def process_message(deps: WorkerDeps, *, message: InboundMessage) -> HandleResult:
    """Register a confirmed key, locally against a counterpart or in the directory."""
    payload = parse_payload(message)
    record = await load_record(deps, payload.id)
    skipped = short_circuit(deps, KeyOperation.CONFIRM, record)
    if skipped is not None:
        return skipped

    counterpart = await deps.resolver.find_counterpart(record.value, record.id)
    return await decide_and_apply(
        deps,
        message=message,
        decide=deps.machine.confirm(record, counterpart=counterpart),
    )
