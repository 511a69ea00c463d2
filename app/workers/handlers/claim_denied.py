from __future__ import annotations

from app.domain.models import HandleResult, InboundMessage, KeyEventType
from app.domain.state_machine import KeyOperation
from app.workers.handlers.common import (
    decide_and_apply,
    load_claim,
    load_counterpart_claim,
    load_record,
    short_circuit,
)
from app.workers.handlers.deps import WorkerDeps
from app.workers.schemas import parse_payload

COMPONENT_ID = "worker.claim_denied.process_message"
EVENT_TYPE = KeyEventType.CLAIM_DENIED


async def process_message(deps: WorkerDeps, *, message: InboundMessage) -> HandleResult:
    """Deny an ownership claim; a record already back in READY is left alone."""
    payload = parse_payload(message)
    record = await load_record(deps, payload.id)
    skipped = short_circuit(deps, KeyOperation.CLAIM_DENIED, record)
    if skipped is not None:
        return skipped

    claim = await load_claim(deps, record, required=True)
    counterpart = await deps.resolver.find_counterpart(record.value, record.id)
    counterpart_claim = await load_counterpart_claim(deps, counterpart)
    return await decide_and_apply(
        deps,
        message=message,
        decide=deps.machine.claim_denied(
            record,
            claim=claim,
            counterpart=counterpart,
            counterpart_claim=counterpart_claim,
            reason=payload.reason,
        ),
    )
