from __future__ import annotations

from app.domain.models import ClaimReason, HandleResult
from app.domain.state_machine import KeyOperation
from app.workers.handlers.common import apply_decision, load_claim, load_record, short_circuit
from app.workers.handlers.deps import WorkerDeps

COMPONENT_ID = "worker.ownership_cancel_process.process_command"


async def process_command(
    deps: WorkerDeps,
    *,
    key_id: str,
    reason: ClaimReason | None = None,
) -> HandleResult:
    record = await load_record(deps, key_id)
    skipped = short_circuit(deps, KeyOperation.OWNERSHIP_CANCEL_PROCESS, record)
    if skipped is not None:
        return skipped

    claim = await load_claim(deps, record, required=False)
    return await apply_decision(
        deps,
        deps.machine.ownership_cancel_process(record, claim=claim, reason=reason),
    )
